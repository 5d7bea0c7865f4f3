import io
import sys
import logging
import asyncio
import traceback

from imapcore.core.logging.log_objects import LogEntry, ProtocolTrace, ConnectionOpened, ConnectionTerminated


class Logger:
	"""
	This class is used to provide a better logging experience for asyncio based classes/functions.
	If logQ is supplied the log objects are put on the queue and a consumer (eg. Logger.run of another
	Logger instance) has to drain it. Otherwise they go straight to python's logging module.
	"""
	def __init__(self, name, logQ = None, level = logging.DEBUG, connection = None):
		self.level = level
		self.name = name
		self.logQ = logQ
		self._connection = connection
		self.consumers = {}

	def with_connection(self, connection):
		"""
		Returns a logger writing to the same destination, tagging every message with the connection
		"""
		return Logger(self.name, logQ = self.logQ, level = self.level, connection = connection)

	async def run(self):
		"""
		Drains logQ into python's logging module. Only needed when a queue was supplied.
		"""
		if self.logQ is None:
			return
		while True:
			logmsg = await self.logQ.get()
			self.handle_logger(logmsg)
			if len(self.consumers) > 0:
				await self.handle_consumers(logmsg)

	def handle_logger(self, msg):
		logging.getLogger(msg.name).log(msg.level, str(msg))

	async def handle_consumers(self, msg):
		for consumer in list(self.consumers):
			try:
				await consumer.process_log(msg)
			except Exception:
				logging.getLogger(self.name).exception('Log consumer %r failed' % consumer)

	def emit(self, entry):
		"""
		Synchronous entry point, usable from callbacks and non-async code
		"""
		if entry.level < self.level:
			return
		if self.logQ is not None:
			self.logQ.put_nowait(entry)
		else:
			self.handle_logger(entry)

	async def debug(self, msg):
		self.emit(LogEntry(logging.DEBUG, self.name, msg, self._connection))

	async def info(self, msg):
		self.emit(LogEntry(logging.INFO, self.name, msg, self._connection))

	async def warning(self, msg):
		self.emit(LogEntry(logging.WARNING, self.name, msg, self._connection))

	async def error(self, msg):
		self.emit(LogEntry(logging.ERROR, self.name, msg, self._connection))

	async def exception(self, message = None):
		self.emit(LogEntry(logging.ERROR, self.name, format_exc(message), self._connection))

	async def log(self, level, msg):
		"""
		Level MUST be bigger than 0!!!
		"""
		self.emit(LogEntry(level, self.name, msg, self._connection))

	async def trace(self, direction, data):
		self.emit(ProtocolTrace(self.name, direction, data, self._connection))

	async def connection_opened(self):
		self.emit(ConnectionOpened(self.name, self._connection))

	async def connection_terminated(self, reason = None):
		self.emit(ConnectionTerminated(self.name, self._connection, reason))

	def add_consumer(self, consumer):
		self.consumers[consumer] = 0

	def del_consumer(self, consumer):
		if consumer in self.consumers:
			del self.consumers[consumer]


def format_exc(message = None):
	sio = io.StringIO()
	ei = sys.exc_info()
	traceback.print_exception(ei[0], ei[1], ei[2], None, sio)
	msg = sio.getvalue()
	sio.close()
	if msg[-1:] == '\n':
		msg = msg[:-1]
	if message is not None:
		msg = '%s : %s' % (message, msg)
	return msg
