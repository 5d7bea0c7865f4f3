import enum
import json
import logging

from imapcore.core.commons import UniversalEncoder
from imapcore.core.exceptions import InvalidState
from imapcore.core.logging.log_objects import LogEntry
from imapcore.core.logging.logger import format_exc
from imapcore.protocols.IMAP import IMAPResponse


class MailboxEvent(enum.Enum):
	EXISTS      = enum.auto()
	EXPUNGE     = enum.auto()
	RECENT      = enum.auto()
	FLAGS       = enum.auto()
	FETCH       = enum.auto()
	UIDVALIDITY = enum.auto()


class MailboxState:
	def __init__(self, name, read_only = False):
		"""
		Metadata of the selected mailbox as reported by the server
		"""
		self.name = name
		self.exists = 0
		self.recent = 0
		self.uid_validity = None
		self.uid_next = None
		self.unseen = None
		self.flags = set()
		self.permanent_flags = set()
		self.read_only = read_only
		self.selected = False

	@property
	def message_count(self):
		return self.exists

	def to_dict(self):
		t = {}
		t['name'] = self.name
		t['exists'] = self.exists
		t['recent'] = self.recent
		t['uid_validity'] = self.uid_validity
		t['uid_next'] = self.uid_next
		t['unseen'] = self.unseen
		t['flags'] = self.flags
		t['permanent_flags'] = self.permanent_flags
		t['read_only'] = self.read_only
		t['selected'] = self.selected
		return t

	def to_json(self):
		return json.dumps(self.to_dict(), cls=UniversalEncoder)

	def __repr__(self):
		t  = '== MailboxState ==\r\n'
		t += 'name:         %s\r\n' % self.name
		t += 'exists:       %s\r\n' % self.exists
		t += 'recent:       %s\r\n' % self.recent
		t += 'uid_validity: %s\r\n' % self.uid_validity
		t += 'uid_next:     %s\r\n' % self.uid_next
		t += 'flags:        %s\r\n' % ' '.join(sorted(self.flags))
		t += 'read_only:    %s\r\n' % self.read_only
		return t


class MailboxTracker:
	"""
	Keeps the MailboxState of the selected mailbox up to date from untagged responses.
	Responses arriving while a SELECT/EXAMINE is in flight are buffered and only turned
	into a MailboxState when the command completes with OK.
	"""
	def __init__(self, logger = None):
		self.logger = logger
		self.mailbox = None
		self.subscribers = {}
		self._opening = None
		self._buffer = []

	@property
	def is_opening(self):
		return self._opening is not None

	def subscribe(self, event, callback):
		"""
		callback(event, mailbox, value) is called synchronously from the read loop
		"""
		self.subscribers.setdefault(event, []).append(callback)
		return callback

	def unsubscribe(self, event, callback):
		if callback in self.subscribers.get(event, []):
			self.subscribers[event].remove(callback)

	def notify(self, event, value):
		for callback in list(self.subscribers.get(event, [])):
			try:
				callback(event, self.mailbox, value)
			except Exception:
				if self.logger is not None:
					self.logger.emit(LogEntry(logging.ERROR, self.logger.name, format_exc('Mailbox subscriber failed on %s' % event.name)))

	def begin_open(self, name, read_only = False):
		if self._opening is not None:
			raise InvalidState('SELECT' if not read_only else 'EXAMINE', 'OPENING')
		self._opening = (name, read_only)
		self._buffer = []

	def commit_open(self, resp):
		"""
		:param resp: the tagged OK of the SELECT/EXAMINE
		:type resp: IMAPTaggedResp
		:return: the new MailboxState
		"""
		name, read_only = self._opening
		mailbox = MailboxState(name, read_only)
		for untagged in self._buffer:
			self._update(mailbox, untagged)
		if resp.code is not None:
			if resp.code[0] == 'READ-ONLY':
				mailbox.read_only = True
			elif resp.code[0] == 'READ-WRITE':
				mailbox.read_only = False
		mailbox.selected = True
		self._opening = None
		self._buffer = []
		self.mailbox = mailbox
		return mailbox

	def abort_open(self):
		self._opening = None
		self._buffer = []

	def close(self):
		if self.mailbox is not None:
			self.mailbox.selected = False
		self.mailbox = None
		self.abort_open()

	def apply(self, resp):
		"""
		Feeds one untagged response to the tracker.
		"""
		if self._opening is not None:
			self._buffer.append(resp)
			return
		if self.mailbox is None:
			return
		event, value = self._update(self.mailbox, resp)
		if event is not None:
			self.notify(event, value)

	def _update(self, mailbox, resp):
		"""
		:return: tuple of (MailboxEvent, value) describing the change or (None, None)
		"""
		if resp.kind == IMAPResponse.EXISTS:
			mailbox.exists = resp.number
			return MailboxEvent.EXISTS, resp.number

		if resp.kind == IMAPResponse.RECENT:
			mailbox.recent = resp.number
			return MailboxEvent.RECENT, resp.number

		if resp.kind == IMAPResponse.EXPUNGE:
			if mailbox.exists > 0:
				mailbox.exists -= 1
			return MailboxEvent.EXPUNGE, resp.number

		if resp.kind == IMAPResponse.FLAGS:
			mailbox.flags |= resp.data
			return MailboxEvent.FLAGS, set(mailbox.flags)

		if resp.kind == IMAPResponse.FETCH:
			return MailboxEvent.FETCH, (resp.number, resp.data)

		if resp.kind == IMAPResponse.OK and resp.code is not None:
			name, value = resp.code
			if name == 'UIDVALIDITY':
				changed = mailbox.uid_validity is not None and mailbox.uid_validity != value
				mailbox.uid_validity = value
				if changed:
					return MailboxEvent.UIDVALIDITY, value
			elif name == 'UIDNEXT':
				mailbox.uid_next = value
			elif name == 'UNSEEN':
				mailbox.unseen = value
			elif name == 'PERMANENTFLAGS':
				mailbox.permanent_flags = value

		return None, None
