import json
import enum
import logging
import datetime

from imapcore.core.commons import UniversalEncoder, hexdump


class LogObjectType(enum.Enum):
	LOGENTRY = 0
	PROTOCOLTRACE = 1
	CONNECTION_OPENED = 2
	CONNECTION_TERMINATED = 3


class LogEntry:
	"""
	Communications object that is used to pass log information to the consumer of the log queue
	"""
	def __init__(self, level, name, msg, connection = None):
		"""

		:param level: log level
		:type level: int
		:param name: name of the module emitting the message
		:type name: str
		:param msg: the message which will be logged
		:type msg: str
		:param connection: the transport the message relates to
		:type connection: IMAPTransport
		"""
		self.level = level
		self.name  = name
		self.msg   = msg
		self.connection = connection
		self.timestamp = datetime.datetime.now(datetime.timezone.utc)

	def to_dict(self):
		t = {}
		t['type'] = LogObjectType.LOGENTRY
		t['level'] = self.level
		t['name'] = self.name
		t['msg'] = self.msg
		t['connection'] = self.connection.get_remote_print_address() if self.connection else None
		t['timestamp'] = self.timestamp
		return t

	def to_json(self):
		return json.dumps(self.to_dict(), cls=UniversalEncoder)

	def __str__(self):
		t = '[%s]' % self.name
		if self.connection:
			t += '[%s]' % self.connection.get_remote_print_address()
		t += ' %s' % self.msg
		return t


class ProtocolTrace(LogEntry):
	"""
	One line (or literal) as it went over the wire.
	direction is 'C' for client to server and 'S' for server to client
	"""
	def __init__(self, name, direction, data, connection = None):
		LogEntry.__init__(self, logging.DEBUG, name, None, connection)
		self.direction = direction
		self.data = data

	def to_dict(self):
		t = LogEntry.to_dict(self)
		t['type'] = LogObjectType.PROTOCOLTRACE
		t['direction'] = self.direction
		t['data'] = self.data
		return t

	def __str__(self):
		t = '[%s]' % self.name
		if self.connection:
			t += '[%s]' % self.connection.get_remote_print_address()
		printable = all(0x20 <= c < 0x7F or c in b'\r\n\t' for c in self.data)
		if printable and self.data.count(b'\n') <= 1:
			t += ' %s: %s' % (self.direction, self.data.decode('ascii').rstrip('\r\n'))
		else:
			t += ' %s:\r\n%s' % (self.direction, hexdump(self.data))
		return t


class ConnectionOpened(LogEntry):
	def __init__(self, name, connection):
		LogEntry.__init__(self, logging.INFO, name, 'Connection opened', connection)

	def to_dict(self):
		t = LogEntry.to_dict(self)
		t['type'] = LogObjectType.CONNECTION_OPENED
		return t


class ConnectionTerminated(LogEntry):
	def __init__(self, name, connection, reason = None):
		msg = 'Connection closed'
		if reason is not None:
			msg += ' (%s)' % reason
		LogEntry.__init__(self, logging.INFO, name, msg, connection)
		self.reason = reason

	def to_dict(self):
		t = LogEntry.to_dict(self)
		t['type'] = LogObjectType.CONNECTION_TERMINATED
		t['reason'] = self.reason
		return t
