import asyncio

from imapcore.protocols.IMAP import IMAPCommandMsg, IMAPStatus
from imapcore.core.statemachine import AUTH_COMMANDS
from imapcore.core.exceptions import ProtocolError, UnexpectedTag, ServerError, AuthError


class IMAPResult:
	"""
	Outcome of a completed command: the tagged response plus every untagged response received while it was in flight
	"""
	def __init__(self, tag, status, text = '', code = None, untagged = None):
		self.tag = tag
		self.status = status
		self.text = text
		self.code = code
		self.untagged = untagged if untagged is not None else []

	def get(self, kind):
		return [resp for resp in self.untagged if resp.kind == kind]

	def __repr__(self):
		return 'IMAPResult(%s %s %r)' % (self.tag, self.status.name, self.text)


class PendingRequest:
	def __init__(self, command, future):
		self.tag = command.tag
		self.command = command
		self.future = future
		self.untagged = []
		self.protocol_errors = []

	@property
	def done(self):
		return self.future.done()

	def __repr__(self):
		return 'PendingRequest(%s %s)' % (self.tag, self.command.verb.name)


def mark_retrieved(future):
	# the caller may have stopped waiting, keep asyncio from complaining about lost exceptions
	if not future.cancelled():
		future.exception()


class RequestDispatcher:
	"""
	Allocates tags and pairs tagged completions with the command that was issued under that tag.
	Without pipelining at most one request can be unresolved at any time.
	"""
	def __init__(self, tag_prefix = 'A', pipelining = False):
		self.tag_prefix = tag_prefix
		self.pipelining = pipelining
		self.tag_counter = 0
		self.pending = {}
		self.last_activity = None
		self._continuation = None
		self._idle = asyncio.Event()
		self._idle.set()

	def new_tag(self):
		self.tag_counter += 1
		return '%s%04d' % (self.tag_prefix, self.tag_counter)

	def touch(self):
		self.last_activity = asyncio.get_running_loop().time()

	def register(self, verb, *args, sasl_response = None):
		"""
		Creates the command under a fresh tag and stores it as pending.
		:return: PendingRequest
		"""
		if not self.pipelining and len(self.pending) > 0:
			raise ProtocolError('Command %s is still in flight' % next(iter(self.pending)))
		command = IMAPCommandMsg(self.new_tag(), verb, args, sasl_response = sasl_response)
		future = asyncio.get_running_loop().create_future()
		future.add_done_callback(mark_retrieved)
		pending = PendingRequest(command, future)
		self.pending[command.tag] = pending
		self._idle.clear()
		self.touch()
		return pending

	async def wait_idle(self):
		while len(self.pending) > 0:
			self._idle.clear()
			await self._idle.wait()

	def lookup(self, tag):
		if tag not in self.pending:
			raise UnexpectedTag(tag)
		return self.pending[tag]

	def _remove(self, tag):
		pending = self.pending.pop(tag)
		if self._continuation is not None and self._continuation[0] == tag:
			waiter = self._continuation[1]
			self._continuation = None
			if not waiter.done():
				waiter.set_exception(ProtocolError('Command %s completed before the continuation request' % tag))
				waiter.exception()
		if len(self.pending) == 0:
			self._idle.set()
		return pending

	def resolve(self, resp):
		"""
		Completes the pending request of a tagged response
		:type resp: IMAPTaggedResp
		:return: PendingRequest
		"""
		self.lookup(resp.tag)
		pending = self._remove(resp.tag)
		result = IMAPResult(resp.tag, resp.status, resp.text, resp.code, pending.untagged)
		if pending.future.done():
			return pending

		if resp.status == IMAPStatus.OK:
			if len(pending.protocol_errors) > 0:
				pending.future.set_exception(pending.protocol_errors[0])
			else:
				pending.future.set_result(result)
		else:
			error_class = AuthError if pending.command.verb in AUTH_COMMANDS else ServerError
			pending.future.set_exception(error_class(resp.text, resp.status, resp.code, result))
		return pending

	def fail(self, tag, exc):
		"""
		Completes the request with exc, used when the tagged response itself was malformed
		"""
		self.lookup(tag)
		pending = self._remove(tag)
		if not pending.future.done():
			pending.future.set_exception(exc)
		return pending

	def feed_untagged(self, resp):
		for pending in self.pending.values():
			pending.untagged.append(resp)

	def note_protocol_error(self, exc):
		"""
		Attaches a non fatal protocol error to the requests in flight
		:return: True if there was a request to blame
		"""
		for pending in self.pending.values():
			pending.protocol_errors.append(exc)
		return len(self.pending) > 0

	def expect_continuation(self, tag):
		waiter = asyncio.get_running_loop().create_future()
		self._continuation = (tag, waiter)
		return waiter

	def continuation(self, resp):
		if self._continuation is None:
			raise ProtocolError('Continuation request without a command waiting for it', data = resp.text)
		waiter = self._continuation[1]
		self._continuation = None
		if not waiter.done():
			waiter.set_result(resp)

	def fail_all(self, exc):
		if self._continuation is not None:
			waiter = self._continuation[1]
			self._continuation = None
			if not waiter.done():
				waiter.set_exception(exc)
				waiter.exception()
		for pending in self.pending.values():
			if not pending.future.done():
				pending.future.set_exception(exc)
		self.pending = {}
		self._idle.set()
