import asyncio

from imapcore.core.logging.logger import Logger
from imapcore.core.commons import get_mutual_preference
from imapcore.core.exceptions import IMAPException, ConnectError, ProtocolError, UnexpectedTag, \
	ConnectionClosed, IMAPTimeout, AuthError, InvalidState
from imapcore.core.transport import IMAPTransport
from imapcore.core.statemachine import IMAPStateMachine, MAILBOX_OPEN_COMMANDS, MAILBOX_CLOSE_COMMANDS
from imapcore.core.mailbox import MailboxTracker
from imapcore.core.dispatcher import RequestDispatcher, mark_retrieved
from imapcore.protocols.IMAP import IMAPCommand, IMAPState, IMAPStatus, IMAPResponse, IMAPSecurity, \
	IMAPAuthMethod, IMAPResponseParser, IMAPContinuationResp, IMAPUntaggedResp, IMAPLiteral, IMAPAtom, sasl_plain

# most preferred first
AUTH_PREFERENCE = [IMAPAuthMethod.PLAIN, IMAPAuthMethod.LOGIN]


class IMAPConnection:
	"""
	One IMAP session over an exclusively owned transport.
	A single read loop consumes every server response in order and feeds
	the state machine, the mailbox tracker and the dispatcher, in this order.
	"""
	def __init__(self, transport, config, log_queue = None):
		self.transport = transport
		self.config = config
		self.logger = Logger('IMAPConnection', logQ = log_queue).with_connection(transport)
		self.statemachine = IMAPStateMachine()
		self.tracker = MailboxTracker(self.logger)
		self.dispatcher = RequestDispatcher(config.tag_prefix, config.pipelining)
		self.parser = IMAPResponseParser()
		self.greeting = None
		self.bye = None
		self.close_reason = None
		self.protocol_errors = []
		self._capabilities = []
		self._greeting_fut = asyncio.get_running_loop().create_future()
		self._greeting_fut.add_done_callback(mark_retrieved)
		self._send_lock = asyncio.Lock()
		self._closed = False
		self._closed_evt = asyncio.Event()
		self._reader_task = None

	def __repr__(self):
		t  = '== IMAPConnection ==\r\n'
		t += 'remote: %s\r\n' % self.transport.get_remote_print_address()
		t += 'state: %s\r\n' % self.state.name
		t += 'capabilities: %s\r\n' % ' '.join(self._capabilities)
		t += 'mailbox: %s\r\n' % (self.mailbox.name if self.mailbox is not None else None)
		return t

	@property
	def state(self):
		return self.statemachine.state

	@property
	def mailbox(self):
		"""
		MailboxState of the selected mailbox, None unless the state is SELECTED
		"""
		return self.tracker.mailbox

	@property
	def capabilities(self):
		return list(self._capabilities)

	@property
	def closed(self):
		return self._closed

	def has_capability(self, name):
		return name.upper() in self._capabilities

	def subscribe(self, event, callback):
		return self.tracker.subscribe(event, callback)

	def unsubscribe(self, event, callback):
		self.tracker.unsubscribe(event, callback)

	async def start(self):
		"""
		Starts the read loop and waits for the server greeting.
		Raises ConnectError if the server rejects us or does not greet in time.
		"""
		await self.logger.connection_opened()
		self._reader_task = asyncio.create_task(self.read_loop())
		try:
			await asyncio.wait_for(asyncio.shield(self._greeting_fut), timeout = self.config.connect_timeout)
		except asyncio.TimeoutError:
			await self.close()
			raise ConnectError('No greeting from %s' % self.transport.get_remote_print_address())
		except IMAPException as e:
			await self.close()
			if isinstance(e, ConnectError):
				raise
			raise ConnectError('Server %s refused the connection: %s' % (self.transport.get_remote_print_address(), e)) from e

		if self.config.security == IMAPSecurity.STARTTLS:
			try:
				await self.starttls()
			except IMAPException as e:
				await self.close()
				if isinstance(e, ConnectError):
					raise
				raise ConnectError('STARTTLS failed: %s' % e) from e

	##### commands

	async def execute(self, verb, *args, sasl_response = None):
		"""
		Issues a command and waits for its tagged completion.
		:param verb: the command verb, IMAPCommand or its name
		:type verb: IMAPCommand
		:param args: command arguments, str, int, bytes, IMAPAtom, IMAPLiteral or lists of these
		:return: IMAPResult
		"""
		if isinstance(verb, str):
			if verb.upper() not in IMAPCommand.__members__ or verb.upper() == 'XXXX':
				raise ValueError('Unknown IMAP command %r' % verb)
			verb = IMAPCommand[verb.upper()]
		self.statemachine.check(verb)
		wanted = asyncio.get_running_loop().create_future()
		send = asyncio.ensure_future(self.send_command(verb, args, sasl_response, wanted = wanted))
		send.add_done_callback(mark_retrieved)
		# once registered a command is always written in full and its tag is never forgotten
		try:
			pending = await asyncio.shield(send)
		except asyncio.CancelledError:
			wanted.cancel()
			raise
		return await asyncio.shield(pending.future)

	async def send_command(self, verb, args, sasl_response = None, wanted = None):
		"""
		Registers the command and writes it to the wire.
		Literals are only sent after the server asked for them with a continuation request.
		:param wanted: future cancelled by the caller when it gives up, a command still queued then is dropped
		:return: PendingRequest, None if the command was dropped before it was sent
		"""
		async with self._send_lock:
			if not self.dispatcher.pipelining:
				await self.dispatcher.wait_idle()
			if wanted is not None and wanted.cancelled():
				await self.logger.debug('%s dropped, the caller gave up before it was sent' % verb.name)
				return None
			if self._closed:
				raise ConnectionClosed('Connection is closed')
			self.statemachine.check(verb)
			if verb in MAILBOX_OPEN_COMMANDS and self.tracker.is_opening:
				# only one SELECT/EXAMINE may be in flight, even when pipelining
				raise InvalidState(verb, 'OPENING')
			pending = self.dispatcher.register(verb, *args, sasl_response = sasl_response)
			if verb in MAILBOX_OPEN_COMMANDS:
				self.tracker.begin_open(self._mailbox_name(args[0]), verb == IMAPCommand.EXAMINE)

			if self.config.debug:
				await self.logger.trace('C', pending.command.to_trace())

			chunks = pending.command.to_chunks()
			for i, chunk in enumerate(chunks):
				waiter = None
				if i < len(chunks) - 1:
					waiter = self.dispatcher.expect_continuation(pending.tag)
				try:
					await self.transport.write(chunk, timeout = self.config.timeout)
				except ConnectionClosed as e:
					await self.shutdown(e)
					break
				if waiter is not None:
					try:
						await waiter
					except IMAPException:
						# the command completed (or the connection died) without asking for the rest
						break
			return pending

	@staticmethod
	def _mailbox_name(arg):
		if isinstance(arg, IMAPLiteral):
			return arg.data.decode('utf-8', 'replace')
		if isinstance(arg, bytes):
			return arg.decode('utf-8', 'replace')
		return str(arg)

	async def capability(self):
		await self.execute(IMAPCommand.CAPABILITY)
		return self.capabilities

	async def noop(self):
		return await self.execute(IMAPCommand.NOOP)

	async def starttls(self):
		"""
		Upgrades the connection to TLS. The capabilities are forgotten, they must be asked again.
		"""
		if self.transport.is_ssl:
			raise ConnectError('Connection is already encrypted')
		return await self.execute(IMAPCommand.STARTTLS)

	async def select_auth_method(self):
		if len(self._capabilities) == 0:
			await self.capability()
		offered = []
		if self.has_capability('AUTH=PLAIN'):
			offered.append(IMAPAuthMethod.PLAIN)
		if not self.has_capability('LOGINDISABLED'):
			offered.append(IMAPAuthMethod.LOGIN)
		method, _ = get_mutual_preference(AUTH_PREFERENCE, offered)
		if method is None:
			raise AuthError('No mutually supported authentication method')
		return method

	async def authenticate(self, credentials = None):
		"""
		Logs in with LOGIN or AUTHENTICATE PLAIN.
		:param credentials: defaults to the username/password of the configuration
		:type credentials: Credential
		:return: IMAPResult
		"""
		if credentials is None:
			credentials = self.config.get_credential()
		if credentials.username is None or credentials.password is None:
			raise AuthError('Username and password are required')

		method = credentials.auth_method
		if method is None or method == IMAPAuthMethod.AUTO:
			method = await self.select_auth_method()

		if method == IMAPAuthMethod.LOGIN:
			if self.has_capability('LOGINDISABLED'):
				raise AuthError('LOGIN is disabled by the server')
			result = await self.execute(IMAPCommand.LOGIN, credentials.username, credentials.password)
		else:
			result = await self.execute(
				IMAPCommand.AUTHENTICATE,
				IMAPAtom('PLAIN'),
				sasl_response = sasl_plain(credentials.username, credentials.password)
			)
		await self.logger.info('Authenticated as %s using %s' % (credentials.username, method.name))
		return result

	async def open_mailbox(self, name, read_only = False):
		"""
		SELECT (or EXAMINE if read_only) a mailbox.
		:return: MailboxState
		"""
		verb = IMAPCommand.EXAMINE if read_only else IMAPCommand.SELECT
		await self.execute(verb, name)
		return self.mailbox

	async def close_mailbox(self):
		return await self.execute(IMAPCommand.CLOSE)

	async def list_mailboxes(self, reference = '', pattern = '*'):
		"""
		:return: list of (attributes, delimiter, name) tuples
		"""
		result = await self.execute(IMAPCommand.LIST, reference, pattern)
		return [resp.data for resp in result.get(IMAPResponse.LIST)]

	async def status(self, name, items = ('MESSAGES', 'RECENT', 'UIDNEXT', 'UIDVALIDITY', 'UNSEEN')):
		"""
		:return: dict of status item name -> int
		"""
		result = await self.execute(IMAPCommand.STATUS, name, [IMAPAtom(item) for item in items])
		status = {}
		for resp in result.get(IMAPResponse.STATUS):
			status.update(resp.data[1])
		return status

	async def search(self, *criteria):
		"""
		:param criteria: search keys, numbers (eg. for LARGER) must be passed as int
		:return: list of message sequence numbers
		"""
		if len(criteria) == 0:
			criteria = (IMAPAtom('ALL'),)
		result = await self.execute(IMAPCommand.SEARCH, *criteria)
		numbers = []
		for resp in result.get(IMAPResponse.SEARCH):
			numbers += resp.data
		return numbers

	async def expunge(self):
		"""
		:return: list of the expunged sequence numbers in the order the server reported them
		"""
		result = await self.execute(IMAPCommand.EXPUNGE)
		return [resp.number for resp in result.get(IMAPResponse.EXPUNGE)]

	async def append(self, name, message, flags = None):
		args = [name]
		if flags:
			args.append([IMAPAtom(flag) for flag in flags])
		args.append(IMAPLiteral(message))
		return await self.execute(IMAPCommand.APPEND, *args)

	async def logout(self):
		if self.state == IMAPState.LOGOUT:
			return None
		try:
			result = await self.execute(IMAPCommand.LOGOUT)
		except ConnectionClosed:
			# some servers hang up right after the BYE
			if self.bye is None:
				raise
			result = None
		await self.wait_closed()
		return result

	async def close(self):
		"""
		Drops the connection without logging out. Pending commands fail with ConnectionClosed.
		"""
		if self._reader_task is not None and not self._reader_task.done():
			self._reader_task.cancel()
			try:
				await self._reader_task
			except asyncio.CancelledError:
				pass
		await self.shutdown(ConnectionClosed('Connection closed by client'))

	async def wait_closed(self):
		await self._closed_evt.wait()

	async def __aenter__(self):
		return self

	async def __aexit__(self, exc_type, exc, tb):
		try:
			if not self._closed and self.state != IMAPState.LOGOUT:
				await self.logout()
		except IMAPException as e:
			await self.logger.debug('Logout on exit failed: %s' % e)
		finally:
			await self.close()

	##### reading

	def read_timeout(self):
		"""
		Seconds the next read may wait. The deadline only runs while a request is pending.
		"""
		if self.config.timeout is None:
			return None
		if len(self.dispatcher.pending) == 0 or self.dispatcher.last_activity is None:
			return self.config.timeout
		now = asyncio.get_running_loop().time()
		return max(0, self.dispatcher.last_activity + self.config.timeout - now)

	def deadline_expired(self):
		if self.config.timeout is None or len(self.dispatcher.pending) == 0:
			return False
		now = asyncio.get_running_loop().time()
		return now >= self.dispatcher.last_activity + self.config.timeout

	async def read_line(self):
		while True:
			try:
				return await self.transport.readline(timeout = self.read_timeout())
			except IMAPTimeout:
				if self.deadline_expired():
					raise

	async def read_loop(self):
		reason = None
		try:
			while True:
				line = await self.read_line()
				raw = await self.parser.from_transport(self.transport, timeout = self.config.timeout, first_line = line)
				self.dispatcher.touch()
				if not await self.handle_response(raw):
					reason = ConnectionClosed('Logged out')
					break

		except asyncio.CancelledError:
			reason = ConnectionClosed('Connection closed by client')
			raise
		except IMAPTimeout as e:
			await self.logger.warning('Server did not answer in %s seconds' % self.config.timeout)
			reason = e
		except (ConnectionClosed, ConnectError) as e:
			reason = e
		except ProtocolError as e:
			await self.logger.error('Lost track of the server responses: %s' % e)
			reason = ConnectionClosed('Protocol error: %s' % e)
			reason.__cause__ = e
		except Exception as e:
			await self.logger.exception('Read loop crashed')
			reason = ConnectionClosed('Read loop crashed: %s' % e)
			reason.__cause__ = e
		finally:
			await self.shutdown(reason)

	async def handle_response(self, raw):
		"""
		:return: False if the session is over and the read loop must stop
		"""
		if self.config.debug:
			await self.logger.trace('S', raw)
		try:
			resp = self.parser.from_bytes(raw)
		except ProtocolError as e:
			if e.fatal:
				raise
			await self.protocol_error(e)
			return True

		if self.state == IMAPState.CONNECTING and not isinstance(resp, IMAPUntaggedResp):
			raise ProtocolError('Expected greeting, got %r' % raw[:80], fatal = True, data = raw)

		if isinstance(resp, IMAPContinuationResp):
			try:
				self.dispatcher.continuation(resp)
			except ProtocolError as e:
				await self.protocol_error(e)
			return True

		if isinstance(resp, IMAPUntaggedResp):
			await self.handle_untagged(resp)
			return True

		return await self.handle_tagged(resp)

	def update_capabilities(self, capabilities):
		self._capabilities = [cap.upper() for cap in capabilities if isinstance(cap, str)]

	async def handle_untagged(self, resp):
		if self.state == IMAPState.CONNECTING:
			self.greeting = resp
			accepted = self.statemachine.on_greeting(resp)
			if resp.code is not None and resp.code[0] == 'CAPABILITY':
				self.update_capabilities(resp.code[1])
			if not accepted:
				raise ConnectionClosed('Server greeted with %s %s' % (resp.kind.name, resp.text))
			await self.logger.debug('Greeting: %s %s' % (resp.kind.name, resp.text))
			if not self._greeting_fut.done():
				self._greeting_fut.set_result(resp)
			return

		if resp.kind == IMAPResponse.CAPABILITY:
			self.update_capabilities(resp.data)
		elif resp.code is not None and resp.code[0] == 'CAPABILITY':
			self.update_capabilities(resp.code[1])
		if resp.kind == IMAPResponse.BYE:
			self.bye = resp
			await self.logger.info('Server said goodbye: %s' % resp.text)

		self.tracker.apply(resp)
		self.dispatcher.feed_untagged(resp)

	async def handle_tagged(self, resp):
		try:
			pending = self.dispatcher.lookup(resp.tag)
		except UnexpectedTag as e:
			await self.protocol_error(e)
			return True

		verb = pending.command.verb
		prev_state = self.state
		self.statemachine.on_completion(pending.command, resp)
		if resp.code is not None and resp.code[0] == 'CAPABILITY':
			self.update_capabilities(resp.code[1])

		if verb in MAILBOX_OPEN_COMMANDS:
			if resp.status == IMAPStatus.OK:
				self.tracker.commit_open(resp)
			elif prev_state == IMAPState.SELECTED:
				self.tracker.close()
			else:
				self.tracker.abort_open()
		elif verb in MAILBOX_CLOSE_COMMANDS and resp.status == IMAPStatus.OK:
			self.tracker.close()
		elif verb == IMAPCommand.STARTTLS and resp.status == IMAPStatus.OK:
			await self.transport.starttls(self.config.get_ssl_context(), timeout = self.config.connect_timeout)
			self._capabilities = []
			await self.logger.debug('TLS established')

		self.dispatcher.resolve(resp)
		if verb == IMAPCommand.LOGOUT and resp.status == IMAPStatus.OK:
			return False
		return True

	async def protocol_error(self, exc):
		"""
		Non fatal protocol errors are blamed on the request they belong to, the connection stays open
		"""
		self.protocol_errors.append(exc)
		await self.logger.warning('Protocol error: %s' % exc)
		tag = getattr(exc, 'tag', None)
		if tag is not None:
			if tag in self.dispatcher.pending:
				pending = self.dispatcher.fail(tag, exc)
				if pending.command.verb in MAILBOX_OPEN_COMMANDS:
					self.tracker.abort_open()
			return
		self.dispatcher.note_protocol_error(exc)

	async def shutdown(self, reason = None):
		if self._closed:
			return
		self._closed = True
		if reason is None:
			reason = ConnectionClosed('Connection closed')
		self.close_reason = reason
		self.statemachine.on_closed()
		self.tracker.close()
		self.dispatcher.fail_all(reason)
		if not self._greeting_fut.done():
			self._greeting_fut.set_exception(reason)
		await self.transport.close()
		await self.logger.connection_terminated(str(reason))
		self._closed_evt.set()


async def connect(config, log_queue = None):
	"""
	Opens a session to the server described by config.
	:type config: IMAPClientConfig
	:param log_queue: optional asyncio.Queue receiving the log objects
	:return: IMAPConnection in NOTAUTHENTICATED or AUTHENTICATED (PREAUTH) state
	"""
	ssl_ctx = None
	if config.security == IMAPSecurity.IMPLICIT_TLS:
		ssl_ctx = config.get_ssl_context()
	transport = await IMAPTransport.open(
		config.host,
		config.get_port(),
		security = config.security,
		ssl_ctx = ssl_ctx,
		timeout = config.connect_timeout
	)
	connection = IMAPConnection(transport, config, log_queue)
	await connection.start()
	return connection
