import json
import asyncio
import logging

import pytest

from imapcore.core.logging.logger import Logger
from imapcore.core.logging.log_objects import LogEntry, ProtocolTrace, ConnectionOpened, ConnectionTerminated


class FakeConnection:
	def get_remote_print_address(self):
		return '10.0.0.1:143'


class Collector:
	def __init__(self):
		self.entries = []

	async def process_log(self, entry):
		self.entries.append(entry)


@pytest.mark.asyncio
async def test_direct_logging(caplog):
	caplog.set_level(logging.DEBUG)
	logger = Logger('imapcore.test', connection = FakeConnection())
	await logger.info('hello')
	await logger.debug('details')
	assert '[imapcore.test][10.0.0.1:143] hello' in caplog.text
	assert 'details' in caplog.text

@pytest.mark.asyncio
async def test_level_filter():
	queue = asyncio.Queue()
	logger = Logger('imapcore.test', logQ = queue, level = logging.INFO)
	await logger.debug('dropped')
	await logger.warning('kept')
	assert queue.qsize() == 1
	assert queue.get_nowait().msg == 'kept'

@pytest.mark.asyncio
async def test_queue_consumer(caplog):
	caplog.set_level(logging.DEBUG)
	queue = asyncio.Queue()
	processor = Logger('imapcore.processor', logQ = queue)
	collector = Collector()
	processor.add_consumer(collector)

	logger = Logger('imapcore.test', logQ = queue).with_connection(FakeConnection())
	await logger.connection_opened()
	await logger.trace('S', b'* OK ready\r\n')
	await logger.connection_terminated('Logged out')

	task = asyncio.create_task(processor.run())
	while len(collector.entries) < 3:
		await asyncio.sleep(0.01)
	task.cancel()
	with pytest.raises(asyncio.CancelledError):
		await task

	opened, trace, terminated = collector.entries
	assert isinstance(opened, ConnectionOpened)
	assert isinstance(trace, ProtocolTrace)
	assert isinstance(terminated, ConnectionTerminated)
	assert 'S: * OK ready' in caplog.text
	assert 'Connection closed (Logged out)' in caplog.text

	processor.del_consumer(collector)
	assert processor.consumers == {}

@pytest.mark.asyncio
async def test_exception_formatting():
	queue = asyncio.Queue()
	logger = Logger('imapcore.test', logQ = queue)
	try:
		raise ValueError('broken')
	except ValueError:
		await logger.exception('Something failed')
	entry = queue.get_nowait()
	assert entry.level == logging.ERROR
	assert entry.msg.startswith('Something failed : Traceback')
	assert 'ValueError: broken' in entry.msg

def test_binary_trace_is_hexdumped():
	trace = ProtocolTrace('imapcore.test', 'S', b'\x00\x01binary\r\n')
	assert 'S:\r\n00000000:' in str(trace)

def test_log_entry_json():
	entry = LogEntry(logging.INFO, 'imapcore.test', 'hello', FakeConnection())
	data = json.loads(entry.to_json())
	assert data['type'] == 'LOGENTRY'
	assert data['connection'] == '10.0.0.1:143'
	assert data['msg'] == 'hello'

	data = json.loads(ProtocolTrace('imapcore.test', 'C', b'A1 NOOP\r\n').to_json())
	assert data['type'] == 'PROTOCOLTRACE'
	assert data['data'] == 'A1 NOOP\r\n'
