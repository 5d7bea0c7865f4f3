import re
import asyncio

import pytest
import pytest_asyncio

from imapcore.core.config import IMAPClientConfig

LITERAL = re.compile(rb'\{(\d+)\}\r\n$')

GREETING = '* OK [CAPABILITY IMAP4rev1 AUTH=PLAIN] imapcore test server ready'

SELECT_RESPONSES = [
	'* 42 EXISTS',
	'* 0 RECENT',
	'* FLAGS (\\Answered \\Flagged \\Deleted \\Seen \\Draft)',
	'* OK [PERMANENTFLAGS (\\Deleted \\Seen \\*)] Limited',
	'* OK [UIDVALIDITY 3857529045] UIDs valid',
	'* OK [UIDNEXT 4392] Predicted next UID',
	'{tag} OK [READ-WRITE] SELECT completed',
]

DEFAULT_RESPONSES = {
	'CAPABILITY'   : ['* CAPABILITY IMAP4rev1 AUTH=PLAIN', '{tag} OK CAPABILITY completed'],
	'NOOP'         : ['{tag} OK NOOP completed'],
	'LOGIN'        : ['{tag} OK LOGIN completed'],
	'AUTHENTICATE' : ['{tag} OK AUTHENTICATE completed'],
	'SELECT'       : SELECT_RESPONSES,
	'EXAMINE'      : SELECT_RESPONSES[:-1] + ['{tag} OK [READ-ONLY] EXAMINE completed'],
	'CLOSE'        : ['{tag} OK CLOSE completed'],
	'APPEND'       : ['{tag} OK APPEND completed'],
	'LOGOUT'       : ['* BYE IMAP4rev1 Server logging out', '{tag} OK LOGOUT completed'],
}


class ServerSession:
	"""
	Server side of one client connection
	"""
	def __init__(self, reader, writer):
		self.reader = reader
		self.writer = writer
		self.commands = []
		self.sasl = []

	async def send_line(self, line):
		if isinstance(line, str):
			line = line.encode()
		self.writer.write(line + b'\r\n')
		await self.writer.drain()

	async def read_command(self):
		"""
		Reads one full command, answering literal announcements with a continuation request
		:return: tuple of (tag, verb, raw command bytes)
		"""
		line = await self.reader.readline()
		if line == b'':
			raise ConnectionResetError('Client went away')
		data = line
		while True:
			m = LITERAL.search(line)
			if m is None:
				break
			await self.send_line('+ Ready for literal data')
			data += await self.reader.readexactly(int(m.group(1)))
			line = await self.reader.readline()
			data += line
		self.commands.append(data)
		parts = data.split(b' ', 2)
		return parts[0].decode(), parts[1].strip().decode().upper(), data

	def close(self):
		self.writer.close()


class ScriptedIMAPServer:
	"""
	Loopback IMAP server for the tests.
	responses maps a verb to the lines to answer with ('{tag}' is replaced) or to a
	coroutine function(session, tag, command) producing the answer itself.
	script replaces the whole conversation with a coroutine function(session).
	"""
	def __init__(self, responses = None, greeting = GREETING, script = None):
		self.responses = dict(DEFAULT_RESPONSES)
		if responses is not None:
			self.responses.update(responses)
		self.greeting = greeting
		self.script = script
		self.sessions = []
		self.server = None
		self.host = '127.0.0.1'
		self.port = None

	@property
	def commands(self):
		return [cmd for session in self.sessions for cmd in session.commands]

	async def start(self):
		self.server = await asyncio.start_server(self.handle_client, self.host, 0)
		self.port = self.server.sockets[0].getsockname()[1]
		return self

	async def stop(self):
		for session in self.sessions:
			session.close()
		self.server.close()
		await self.server.wait_closed()

	async def handle_client(self, reader, writer):
		session = ServerSession(reader, writer)
		self.sessions.append(session)
		try:
			if self.script is not None:
				await self.script(session)
			else:
				await self.serve(session)
		except (ConnectionError, asyncio.IncompleteReadError):
			pass
		finally:
			writer.close()

	async def serve(self, session):
		await session.send_line(self.greeting)
		while True:
			tag, verb, command = await session.read_command()
			if verb == 'AUTHENTICATE':
				await session.send_line('+ ')
				session.sasl.append(await session.reader.readline())

			responses = self.responses.get(verb)
			if responses is None:
				await session.send_line('%s BAD Unknown command' % tag)
			elif callable(responses):
				await responses(session, tag, command)
			else:
				for line in responses:
					await session.send_line(line.replace('{tag}', tag))

			if verb == 'LOGOUT':
				return


def make_config(server, **kwargs):
	kwargs.setdefault('timeout', 2)
	kwargs.setdefault('connect_timeout', 2)
	return IMAPClientConfig.construct('127.0.0.1', server.port, username = 'user', password = 'pass', **kwargs)


@pytest_asyncio.fixture
async def imap_server():
	"""
	Factory fixture, every server it starts is stopped at the end of the test
	"""
	servers = []

	async def factory(**kwargs):
		server = await ScriptedIMAPServer(**kwargs).start()
		servers.append(server)
		return server

	yield factory

	for server in servers:
		await server.stop()


@pytest.fixture
def config_factory():
	return make_config
