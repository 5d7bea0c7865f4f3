class IMAPException(Exception):
	"""
	Base class for every error raised by imapcore
	"""
	pass


class ConnectError(IMAPException, OSError):
	"""
	DNS/socket failure or TLS handshake failure. No connection is created.
	"""
	pass


class ProtocolError(IMAPException):
	"""
	The server sent something we could not make sense of.
	:param fatal: True if the parser lost track of the response boundaries. The connection must be closed in that case.
	:type fatal: bool
	"""
	def __init__(self, msg, fatal = False, data = None):
		IMAPException.__init__(self, msg)
		self.fatal = fatal
		self.data = data


class UnexpectedTag(ProtocolError):
	def __init__(self, tag, data = None):
		ProtocolError.__init__(self, 'Server completed a command with unknown tag %s' % tag, data = data)
		self.tag = tag


class ServerError(IMAPException):
	"""
	Tagged NO or BAD reply. The connection stays usable.
	"""
	def __init__(self, text, status = None, code = None, result = None):
		IMAPException.__init__(self, text)
		self.text = text
		self.status = status
		self.code = code
		self.result = result

	def __str__(self):
		return self.text


class AuthError(ServerError):
	pass


class InvalidState(IMAPException):
	"""
	Command issued in a state where the protocol does not allow it.
	Raised before anything is written to the wire.
	"""
	def __init__(self, verb, state):
		IMAPException.__init__(self, '%s is not allowed in state %s' % (getattr(verb, 'name', verb), getattr(state, 'name', state)))
		self.verb = verb
		self.state = state


class ConnectionClosed(IMAPException, ConnectionError):
	pass


class IMAPTimeout(ConnectionClosed):
	pass
