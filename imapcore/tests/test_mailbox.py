import json
import asyncio
import logging

import pytest

from imapcore.core.exceptions import InvalidState
from imapcore.core.logging.logger import Logger
from imapcore.core.mailbox import MailboxTracker, MailboxEvent
from imapcore.protocols.IMAP import IMAPResponseParser, IMAPTaggedResp, IMAPStatus

parser = IMAPResponseParser()

def resp(line):
	return parser.from_bytes(line + b'\r\n')

def opened(name = 'INBOX', exists = 17, logger = None):
	tracker = MailboxTracker(logger)
	tracker.begin_open(name)
	tracker.apply(resp(b'* %d EXISTS' % exists))
	tracker.apply(resp(b'* OK [UIDVALIDITY 100] UIDs valid'))
	tracker.commit_open(IMAPTaggedResp('A1', IMAPStatus.OK, 'SELECT completed', ('READ-WRITE', None)))
	return tracker


def test_open_commits_buffered_state():
	tracker = MailboxTracker()
	tracker.begin_open('INBOX')
	for line in [b'* 42 EXISTS', b'* 2 RECENT', b'* FLAGS (\\Seen \\Deleted)', b'* OK [UIDNEXT 4392] next', b'* OK [UNSEEN 12] first unseen', b'* OK [PERMANENTFLAGS (\\Seen)] ok']:
		tracker.apply(resp(line))
	assert tracker.mailbox is None
	assert tracker.is_opening

	mailbox = tracker.commit_open(IMAPTaggedResp('A1', IMAPStatus.OK, 'EXAMINE completed', ('READ-ONLY', None)))
	assert tracker.mailbox is mailbox
	assert mailbox.name == 'INBOX'
	assert mailbox.selected is True
	assert mailbox.message_count == 42
	assert mailbox.recent == 2
	assert mailbox.flags == {'\\Seen', '\\Deleted'}
	assert mailbox.uid_next == 4392
	assert mailbox.unseen == 12
	assert mailbox.permanent_flags == {'\\Seen'}
	assert mailbox.read_only is True

def test_aborted_open_leaves_no_state():
	tracker = MailboxTracker()
	tracker.begin_open('Missing')
	tracker.apply(resp(b'* 5 EXISTS'))
	tracker.abort_open()
	assert tracker.mailbox is None
	assert tracker.is_opening is False

def test_second_open_rejected_while_opening():
	tracker = MailboxTracker()
	tracker.begin_open('INBOX')
	with pytest.raises(InvalidState):
		tracker.begin_open('Archive', read_only = True)
	tracker.apply(resp(b'* 3 EXISTS'))
	mailbox = tracker.commit_open(IMAPTaggedResp('A1', IMAPStatus.OK, 'SELECT completed'))
	assert mailbox.name == 'INBOX'
	assert mailbox.exists == 3

	tracker.begin_open('Archive', read_only = True)
	assert tracker.is_opening

def test_events_ignored_without_mailbox():
	tracker = MailboxTracker()
	tracker.apply(resp(b'* 5 EXISTS'))
	assert tracker.mailbox is None

def test_exists_is_idempotent_expunge_is_not():
	tracker = opened(exists = 17)
	tracker.apply(resp(b'* 17 EXISTS'))
	tracker.apply(resp(b'* 17 EXISTS'))
	assert tracker.mailbox.exists == 17

	tracker.apply(resp(b'* 3 EXPUNGE'))
	tracker.apply(resp(b'* 3 EXPUNGE'))
	assert tracker.mailbox.exists == 15

def test_expunge_floor():
	tracker = opened(exists = 1)
	tracker.apply(resp(b'* 1 EXPUNGE'))
	tracker.apply(resp(b'* 1 EXPUNGE'))
	assert tracker.mailbox.exists == 0

def test_flags_merge():
	tracker = opened()
	tracker.apply(resp(b'* FLAGS (\\Seen)'))
	tracker.apply(resp(b'* FLAGS (\\Draft)'))
	assert tracker.mailbox.flags == {'\\Seen', '\\Draft'}

def test_subscribers():
	tracker = opened(exists = 10)
	events = []
	def callback(event, mailbox, value):
		events.append((event, mailbox.exists, value))

	tracker.subscribe(MailboxEvent.EXISTS, callback)
	tracker.subscribe(MailboxEvent.EXPUNGE, callback)
	tracker.apply(resp(b'* 11 EXISTS'))
	tracker.apply(resp(b'* 4 EXPUNGE'))
	tracker.apply(resp(b'* 2 RECENT'))
	assert events == [(MailboxEvent.EXISTS, 11, 11), (MailboxEvent.EXPUNGE, 10, 4)]

	tracker.unsubscribe(MailboxEvent.EXISTS, callback)
	tracker.apply(resp(b'* 12 EXISTS'))
	assert len(events) == 2

def test_fetch_event():
	tracker = opened()
	events = []
	tracker.subscribe(MailboxEvent.FETCH, lambda event, mailbox, value: events.append(value))
	tracker.apply(resp(b'* 3 FETCH (FLAGS (\\Seen))'))
	assert events == [(3, {'FLAGS': ['\\Seen']})]

def test_uidvalidity_change():
	tracker = opened()
	events = []
	tracker.subscribe(MailboxEvent.UIDVALIDITY, lambda event, mailbox, value: events.append(value))
	tracker.apply(resp(b'* OK [UIDVALIDITY 100] same'))
	assert events == []
	tracker.apply(resp(b'* OK [UIDVALIDITY 200] changed'))
	assert events == [200]
	assert tracker.mailbox.uid_validity == 200

def test_failing_subscriber_is_logged():
	queue = asyncio.Queue()
	tracker = opened(logger = Logger('MailboxTracker', logQ = queue))
	def broken(event, mailbox, value):
		raise ValueError('boom')
	tracker.subscribe(MailboxEvent.EXISTS, broken)
	tracker.apply(resp(b'* 18 EXISTS'))
	assert tracker.mailbox.exists == 18
	entry = queue.get_nowait()
	assert entry.level == logging.ERROR
	assert 'boom' in entry.msg

def test_close_and_serialization():
	tracker = opened()
	mailbox = tracker.mailbox
	data = json.loads(mailbox.to_json())
	assert data['name'] == 'INBOX'
	assert data['exists'] == 17
	assert data['uid_validity'] == 100
	tracker.close()
	assert tracker.mailbox is None
	assert mailbox.selected is False
