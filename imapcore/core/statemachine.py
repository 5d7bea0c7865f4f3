from imapcore.protocols.IMAP import IMAPState, IMAPCommand, IMAPResponse, IMAPStatus
from imapcore.core.exceptions import InvalidState


ANY_STATE = (IMAPState.NOTAUTHENTICATED, IMAPState.AUTHENTICATED, IMAPState.SELECTED)
AUTHENTICATED_STATES = (IMAPState.AUTHENTICATED, IMAPState.SELECTED)

# RFC3501 section 6
LEGAL_STATES = {
	IMAPCommand.CAPABILITY   : ANY_STATE,
	IMAPCommand.NOOP         : ANY_STATE,
	IMAPCommand.LOGOUT       : ANY_STATE,
	IMAPCommand.STARTTLS     : (IMAPState.NOTAUTHENTICATED,),
	IMAPCommand.AUTHENTICATE : (IMAPState.NOTAUTHENTICATED,),
	IMAPCommand.LOGIN        : (IMAPState.NOTAUTHENTICATED,),
	IMAPCommand.SELECT       : AUTHENTICATED_STATES,
	IMAPCommand.EXAMINE      : AUTHENTICATED_STATES,
	IMAPCommand.CREATE       : AUTHENTICATED_STATES,
	IMAPCommand.DELETE       : AUTHENTICATED_STATES,
	IMAPCommand.RENAME       : AUTHENTICATED_STATES,
	IMAPCommand.SUBSCRIBE    : AUTHENTICATED_STATES,
	IMAPCommand.UNSUBSCRIBE  : AUTHENTICATED_STATES,
	IMAPCommand.LIST         : AUTHENTICATED_STATES,
	IMAPCommand.LSUB         : AUTHENTICATED_STATES,
	IMAPCommand.STATUS       : AUTHENTICATED_STATES,
	IMAPCommand.APPEND       : AUTHENTICATED_STATES,
	IMAPCommand.CHECK        : (IMAPState.SELECTED,),
	IMAPCommand.CLOSE        : (IMAPState.SELECTED,),
	IMAPCommand.UNSELECT     : (IMAPState.SELECTED,),
	IMAPCommand.EXPUNGE      : (IMAPState.SELECTED,),
	IMAPCommand.SEARCH       : (IMAPState.SELECTED,),
	IMAPCommand.FETCH        : (IMAPState.SELECTED,),
	IMAPCommand.STORE        : (IMAPState.SELECTED,),
	IMAPCommand.COPY         : (IMAPState.SELECTED,),
	IMAPCommand.UID          : (IMAPState.SELECTED,),
}

MAILBOX_OPEN_COMMANDS = (IMAPCommand.SELECT, IMAPCommand.EXAMINE)
MAILBOX_CLOSE_COMMANDS = (IMAPCommand.CLOSE, IMAPCommand.UNSELECT)
AUTH_COMMANDS = (IMAPCommand.LOGIN, IMAPCommand.AUTHENTICATE)


class IMAPStateMachine:
	"""
	Tracks the phase of the session.
	LOGOUT is terminal, every later transition request is ignored.
	"""
	def __init__(self):
		self.state = IMAPState.CONNECTING
		self.history = [IMAPState.CONNECTING]

	def __repr__(self):
		return 'IMAPStateMachine(%s)' % self.state.name

	def is_legal(self, verb):
		return self.state in LEGAL_STATES.get(verb, ())

	def check(self, verb):
		"""
		Raises InvalidState if verb can not be issued right now
		"""
		if not self.is_legal(verb):
			raise InvalidState(verb, self.state)

	def transition(self, new_state):
		if self.state == IMAPState.LOGOUT or new_state == self.state:
			return False
		self.state = new_state
		self.history.append(new_state)
		return True

	def on_greeting(self, resp):
		"""
		:param resp: the first untagged response of the server
		:type resp: IMAPUntaggedResp
		:return: True if the server is willing to talk to us
		"""
		if self.state != IMAPState.CONNECTING:
			return False
		if resp.kind == IMAPResponse.OK:
			self.transition(IMAPState.NOTAUTHENTICATED)
			return True
		if resp.kind == IMAPResponse.PREAUTH:
			self.transition(IMAPState.AUTHENTICATED)
			return True
		self.transition(IMAPState.LOGOUT)
		return False

	def on_completion(self, command, resp):
		"""
		Applies the state change caused by the tagged completion of command
		:type command: IMAPCommandMsg
		:type resp: IMAPTaggedResp
		"""
		verb = command.verb
		if resp.status == IMAPStatus.OK:
			if verb in AUTH_COMMANDS:
				self.transition(IMAPState.AUTHENTICATED)
			elif verb in MAILBOX_OPEN_COMMANDS:
				self.transition(IMAPState.SELECTED)
			elif verb in MAILBOX_CLOSE_COMMANDS:
				self.transition(IMAPState.AUTHENTICATED)
			elif verb == IMAPCommand.LOGOUT:
				self.transition(IMAPState.LOGOUT)
		elif verb in MAILBOX_OPEN_COMMANDS and self.state == IMAPState.SELECTED:
			# a failed SELECT/EXAMINE leaves no mailbox selected (RFC3501 6.3.1)
			self.transition(IMAPState.AUTHENTICATED)

	def on_closed(self):
		self.transition(IMAPState.LOGOUT)
