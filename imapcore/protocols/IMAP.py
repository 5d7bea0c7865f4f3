#https://tools.ietf.org/html/rfc3501
import re
import enum
import base64

from imapcore.protocols import ProtocolBase
from imapcore.core.exceptions import ProtocolError


class IMAPSecurity(enum.Enum):
	PLAIN        = enum.auto()
	IMPLICIT_TLS = enum.auto()
	STARTTLS     = enum.auto()

class IMAPAuthMethod(enum.Enum):
	AUTO  = enum.auto()
	LOGIN = enum.auto()
	PLAIN = enum.auto()

class IMAPState(enum.Enum):
	CONNECTING       = enum.auto()
	NOTAUTHENTICATED = enum.auto()
	AUTHENTICATED    = enum.auto()
	SELECTED         = enum.auto()
	LOGOUT           = enum.auto()

class IMAPStatus(enum.Enum):
	OK  = enum.auto()
	NO  = enum.auto()
	BAD = enum.auto()

class IMAPResponse(enum.Enum):
	OK         = enum.auto()
	NO         = enum.auto()
	BAD        = enum.auto()
	PREAUTH    = enum.auto()
	BYE        = enum.auto()
	CAPABILITY = enum.auto()
	LIST       = enum.auto()
	LSUB       = enum.auto()
	STATUS     = enum.auto()
	SEARCH     = enum.auto()
	FLAGS      = enum.auto()
	EXISTS     = enum.auto()
	RECENT     = enum.auto()
	EXPUNGE    = enum.auto()
	FETCH      = enum.auto()
	XXXX       = enum.auto()

class IMAPCommand(enum.Enum):
	CAPABILITY   = enum.auto()
	NOOP         = enum.auto()
	LOGOUT       = enum.auto()
	STARTTLS     = enum.auto()
	AUTHENTICATE = enum.auto()
	LOGIN        = enum.auto()
	SELECT       = enum.auto()
	EXAMINE      = enum.auto()
	CREATE       = enum.auto()
	DELETE       = enum.auto()
	RENAME       = enum.auto()
	SUBSCRIBE    = enum.auto()
	UNSUBSCRIBE  = enum.auto()
	LIST         = enum.auto()
	LSUB         = enum.auto()
	STATUS       = enum.auto()
	APPEND       = enum.auto()
	CHECK        = enum.auto()
	CLOSE        = enum.auto()
	UNSELECT     = enum.auto()
	EXPUNGE      = enum.auto()
	SEARCH       = enum.auto()
	FETCH        = enum.auto()
	STORE        = enum.auto()
	COPY         = enum.auto()
	UID          = enum.auto()
	XXXX         = enum.auto()


# a line announcing a literal ends with {size}, the size bytes follow right after the CRLF
LITERAL_LINE_RE = re.compile(rb'\{(\d+)\+?\}\r?\n$')
LITERAL_RE = re.compile(rb'\{(\d+)\+?\}\r?\n')
ATOM_END = b' ()\r\n"'
ATOM_FORBIDDEN = '(){"\\'


class IMAPLiteral:
	"""
	Argument that is always sent as a synchronizing literal.
	A literal holding UTF-8 text compares equal to that text.
	"""
	def __init__(self, data):
		if isinstance(data, str):
			data = data.encode('utf-8')
		self.data = bytes(data)

	def text(self):
		"""
		:return: the payload as str, None if it is not valid UTF-8
		"""
		try:
			return self.data.decode('utf-8')
		except UnicodeDecodeError:
			return None

	def __eq__(self, other):
		if isinstance(other, IMAPLiteral):
			return self.data == other.data
		if isinstance(other, str):
			return self.text() == other
		return NotImplemented

	def __hash__(self):
		text = self.text()
		if text is not None:
			return hash(text)
		return hash(self.data)

	def __len__(self):
		return len(self.data)

	def __repr__(self):
		return 'IMAPLiteral(%r)' % self.data


class IMAPAtom(str):
	"""
	Argument that goes on the wire verbatim, eg. fetch items like BODY[HEADER.FIELDS (FROM)]
	"""
	pass


def is_atom_safe(s):
	if s == '' or s.upper() == 'NIL':
		return False
	depth = 0
	for c in s:
		if not '\x21' <= c <= '\x7e' or c in ATOM_FORBIDDEN:
			return False
		if c == '[':
			depth += 1
		elif c == ']':
			depth -= 1
			if depth < 0:
				return False
	return depth == 0

def is_quote_safe(s):
	for c in s:
		if not '\x01' <= c <= '\x7f' or c in '\r\n':
			return False
	return True

def is_number(s):
	return s.isascii() and s.isdigit()

def quote(s):
	return '"%s"' % s.replace('\\', '\\\\').replace('"', '\\"')

def sasl_plain(username, password, authzid = ''):
	"""
	RFC 4616 initial response, base64 encoded
	"""
	msg = '%s\x00%s\x00%s' % (authzid, username, password)
	return base64.b64encode(msg.encode('utf-8'))


class IMAPTokenizer:
	"""
	Splits IMAP data into python objects:
	atoms and quoted strings -> str, NIL -> None, parenthesized lists -> list, literals -> literal_class
	With numbers set, atoms made only of digits -> int
	"""
	def __init__(self, data, pos = 0, nil = True, literal_class = bytes, encoding = 'utf-8', numbers = False):
		self.data = data
		self.pos = pos
		self.nil = nil
		self.literal_class = literal_class
		self.encoding = encoding
		self.numbers = numbers

	def skip_spaces(self):
		while self.pos < len(self.data) and self.data[self.pos] == 0x20:
			self.pos += 1

	def at_end(self):
		self.skip_spaces()
		return self.pos >= len(self.data) or self.data[self.pos] in b'\r\n'

	def read_token(self):
		if self.at_end():
			raise ProtocolError('Unexpected end of data', data = self.data)
		c = self.data[self.pos]
		if c == 0x28: # (
			return self.read_list()
		if c == 0x22: # "
			return self.read_quoted()
		if c == 0x7b: # {
			return self.read_literal()
		if c == 0x29: # )
			raise ProtocolError('Unexpected ")" at position %d' % self.pos, data = self.data)
		atom = self.read_atom()
		if self.nil and atom.upper() == 'NIL':
			return None
		if self.numbers and is_number(atom):
			return int(atom)
		return atom

	def read_astring(self):
		"""
		Same as read_token, but NIL stays a string and literals are decoded
		"""
		if self.at_end():
			raise ProtocolError('Unexpected end of data', data = self.data)
		c = self.data[self.pos]
		if c == 0x22:
			return self.read_quoted()
		if c == 0x7b:
			lit = self.read_literal()
			if isinstance(lit, str):
				return lit
			if isinstance(lit, IMAPLiteral):
				lit = lit.data
			return lit.decode(self.encoding, 'replace')
		return self.read_atom()

	def read_all(self):
		tokens = []
		while not self.at_end():
			tokens.append(self.read_token())
		return tokens

	def read_list(self):
		self.pos += 1
		items = []
		while True:
			self.skip_spaces()
			if self.pos >= len(self.data):
				raise ProtocolError('Unterminated list', data = self.data)
			if self.data[self.pos] == 0x29:
				self.pos += 1
				return items
			items.append(self.read_token())

	def read_quoted(self):
		self.pos += 1
		out = bytearray()
		while self.pos < len(self.data):
			c = self.data[self.pos]
			if c == 0x5c: # backslash
				self.pos += 1
				if self.pos >= len(self.data):
					break
				out.append(self.data[self.pos])
				self.pos += 1
				continue
			if c == 0x22:
				self.pos += 1
				return out.decode(self.encoding, 'replace')
			if c in b'\r\n':
				break
			out.append(c)
			self.pos += 1
		raise ProtocolError('Unterminated quoted string', data = self.data)

	def read_literal(self):
		m = LITERAL_RE.match(self.data, self.pos)
		if m is None:
			raise ProtocolError('Malformed literal at position %d' % self.pos, data = self.data)
		size = int(m.group(1))
		end = m.end() + size
		if end > len(self.data):
			raise ProtocolError('Literal size mismatch, announced %d bytes, got %d' % (size, len(self.data) - m.end()), fatal = True, data = self.data)
		literal = self.data[m.end():end]
		self.pos = end
		return self.literal_class(literal)

	def read_atom(self):
		self.skip_spaces()
		start = self.pos
		depth = 0
		while self.pos < len(self.data):
			c = self.data[self.pos]
			if c in b'\r\n':
				break
			if c == 0x5b: # [
				depth += 1
			elif c == 0x5d and depth > 0: # ]
				depth -= 1
			elif depth == 0 and c in ATOM_END:
				break
			self.pos += 1
		if self.pos == start:
			raise ProtocolError('Expected atom at position %d' % self.pos, data = self.data)
		return self.data[start:self.pos].decode(self.encoding, 'replace')

	def read_number(self):
		token = self.read_atom()
		if not token.isdigit():
			raise ProtocolError('Expected number, got %s' % token, data = self.data)
		return int(token)

	def rest_text(self):
		self.skip_spaces()
		text = self.data[self.pos:].rstrip(b'\r\n').decode(self.encoding, 'replace')
		self.pos = len(self.data)
		return text


class IMAPCommandMsg(ProtocolBase):
	"""
	One tagged command. The arguments are kept in order, the object is not modified after construction.
	Arguments are str, int, IMAPAtom, IMAPLiteral or lists of these. bytes are stored as IMAPLiteral.
	A str made only of digits is sent quoted so it stays a string on the other side, numbers must be passed as int.
	"""
	# argument positions never written to the log
	SENSITIVE_ARGS = {
		IMAPCommand.LOGIN : (1,),
	}

	def __init__(self, tag, verb, args = (), sasl_response = None, encoding = 'utf-8'):
		self.tag = tag
		self.verb = verb
		self.args = tuple(self._literal_bytes(arg) for arg in args)
		self.sasl_response = sasl_response
		self.encoding = encoding

	@staticmethod
	def _literal_bytes(arg):
		if isinstance(arg, (bytes, bytearray)):
			return IMAPLiteral(arg)
		if isinstance(arg, (list, tuple)):
			return [IMAPCommandMsg._literal_bytes(item) for item in arg]
		return arg

	@staticmethod
	def construct(tag, verb, *args, sasl_response = None):
		return IMAPCommandMsg(tag, verb, args, sasl_response = sasl_response)

	@staticmethod
	def from_bytes(bbuff):
		return IMAPCommandParser().from_bytes(bbuff)

	def to_chunks(self):
		"""
		Serializes the command. Every chunk except the last one must be followed by a continuation
		request from the server before the next chunk can be sent.
		:return: list of bytes
		"""
		chunks = []
		current = bytearray(('%s %s' % (self.tag, self.verb.name)).encode(self.encoding))
		for arg in self.args:
			current += b' '
			current = self._encode_arg(arg, current, chunks)
		current += b'\r\n'
		chunks.append(bytes(current))
		if self.sasl_response is not None:
			chunks.append(self.sasl_response + b'\r\n')
		return chunks

	def to_bytes(self):
		return b''.join(self.to_chunks())

	def _encode_arg(self, arg, current, chunks):
		if isinstance(arg, (list, tuple)):
			current += b'('
			for i, item in enumerate(arg):
				if i > 0:
					current += b' '
				current = self._encode_arg(item, current, chunks)
			current += b')'
			return current

		if isinstance(arg, bool):
			raise TypeError('Unsupported argument type %s' % type(arg))
		if isinstance(arg, int):
			current += str(arg).encode('ascii')
			return current
		if isinstance(arg, IMAPAtom):
			current += arg.encode(self.encoding)
			return current

		if isinstance(arg, IMAPLiteral):
			payload = arg.data
		elif isinstance(arg, bytes):
			payload = arg
		elif isinstance(arg, str):
			if is_atom_safe(arg) and not is_number(arg):
				current += arg.encode('ascii')
				return current
			if is_quote_safe(arg):
				current += quote(arg).encode('ascii')
				return current
			payload = arg.encode(self.encoding)
		else:
			raise TypeError('Unsupported argument type %s' % type(arg))

		current += b'{%d}\r\n' % len(payload)
		chunks.append(bytes(current))
		return bytearray(payload)

	def to_trace(self):
		"""
		Wire form with the credentials masked, for logging
		"""
		masked = self.SENSITIVE_ARGS.get(self.verb, ())
		args = ['***' if i in masked else arg for i, arg in enumerate(self.args)]
		data = IMAPCommandMsg(self.tag, self.verb, args).to_bytes()
		if self.sasl_response is not None:
			data += b'***\r\n'
		return data

	def __repr__(self):
		return 'IMAPCommandMsg(%s %s %r)' % (self.tag, self.verb.name, self.args)

	def __str__(self):
		return self.to_trace().decode(self.encoding, 'replace')


class IMAPCommandParser:
	def __init__(self, encoding = 'utf-8'):
		self.encoding = encoding

	def read_literal(self, data):
		"""
		Text that could only travel as a literal comes back as str, anything else as IMAPLiteral
		"""
		try:
			text = data.decode(self.encoding)
		except UnicodeDecodeError:
			return IMAPLiteral(data)
		if is_quote_safe(text):
			return IMAPLiteral(data)
		return text

	def from_bytes(self, bbuff):
		tok = IMAPTokenizer(bbuff, nil = False, literal_class = self.read_literal, encoding = self.encoding, numbers = True)
		tag = tok.read_atom()
		tok.skip_spaces()
		verb = tok.read_atom().upper()
		if verb in IMAPCommand.__members__:
			verb = IMAPCommand[verb]
		else:
			verb = IMAPCommand.XXXX
		args = tok.read_all()
		return IMAPCommandMsg(tag, verb, args, encoding = self.encoding)


class IMAPContinuationResp(ProtocolBase):
	def __init__(self, text = ''):
		self.text = text

	@staticmethod
	def from_bytes(bbuff, encoding = 'utf-8'):
		return IMAPContinuationResp(bbuff[1:].strip().decode(encoding, 'replace'))

	def to_bytes(self):
		if self.text:
			return ('+ %s\r\n' % self.text).encode('utf-8')
		return b'+\r\n'

	def __repr__(self):
		return 'IMAPContinuationResp(%r)' % self.text


class IMAPTaggedResp(ProtocolBase):
	def __init__(self, tag, status, text = '', code = None):
		self.tag = tag
		self.status = status
		self.text = text
		self.code = code

	@staticmethod
	def construct(tag, status, text = ''):
		return IMAPTaggedResp(tag, status, text)

	@staticmethod
	def from_bytes(bbuff, encoding = 'utf-8'):
		tok = IMAPTokenizer(bbuff, encoding = encoding)
		tag = tok.read_atom()
		if tok.at_end():
			raise ProtocolError('Response line without status', fatal = True, data = bbuff)
		status = tok.read_atom().upper()
		if status not in IMAPStatus.__members__:
			err = ProtocolError('Unknown status %s for tag %s' % (status, tag), data = bbuff)
			err.tag = tag
			raise err
		code, text = parse_resp_text(tok, encoding)
		return IMAPTaggedResp(tag, IMAPStatus[status], text, code)

	def to_bytes(self):
		t = '%s %s' % (self.tag, self.status.name)
		if self.text:
			t += ' %s' % self.text
		return (t + '\r\n').encode('utf-8')

	def __repr__(self):
		return 'IMAPTaggedResp(%s %s %r %r)' % (self.tag, self.status.name, self.code, self.text)


class IMAPUntaggedResp(ProtocolBase):
	"""
	Server data not tied to a command.
	number: message count or sequence number for EXISTS/RECENT/EXPUNGE/FETCH
	data: kind specific payload (see IMAPRESP)
	code: (name, value) tuple of the response code for OK/NO/BAD/PREAUTH/BYE
	"""
	def __init__(self, kind, number = None, data = None, code = None, text = None, raw = None):
		self.kind = kind
		self.number = number
		self.data = data
		self.code = code
		self.text = text
		self.raw = raw

	@staticmethod
	def from_bytes(bbuff, encoding = 'utf-8'):
		tok = IMAPTokenizer(bbuff, encoding = encoding)
		tok.read_atom() # *
		first = tok.read_atom()
		if first.isdigit():
			number = int(first)
			kind = tok.read_atom().upper()
		else:
			number = None
			kind = first.upper()

		if kind not in IMAPResponse.__members__ or (number is None) != (kind not in NUMBERED_RESPONSES):
			return IMAPUntaggedResp(IMAPResponse.XXXX, number, tok.rest_text(), raw = bbuff)

		resp = IMAPUntaggedResp(IMAPResponse[kind], number, raw = bbuff)
		IMAPRESP[resp.kind](resp, tok, encoding)
		return resp

	def to_bytes(self):
		return self.raw

	def __repr__(self):
		t  = '== IMAPUntaggedResp ==\r\n'
		t += 'kind  : %s\r\n' % self.kind.name
		t += 'number: %s\r\n' % self.number
		t += 'data  : %r\r\n' % (self.data,)
		t += 'code  : %r\r\n' % (self.code,)
		t += 'text  : %s\r\n' % self.text
		return t


def parse_resp_text(tok, encoding = 'utf-8'):
	"""
	resp-text = ["[" resp-text-code "]" SP] text
	:return: tuple of (code, text) where code is None or a (name, value) tuple
	"""
	tok.skip_spaces()
	if tok.pos >= len(tok.data) or tok.data[tok.pos] != 0x5b:
		return None, tok.rest_text()

	end = tok.data.find(b']', tok.pos)
	if end == -1:
		raise ProtocolError('Unterminated response code', data = tok.data)
	codetok = IMAPTokenizer(tok.data[tok.pos+1:end], encoding = encoding)
	tok.pos = end + 1
	name = codetok.read_atom().upper()
	if name in ('UIDVALIDITY', 'UIDNEXT', 'UNSEEN'):
		value = codetok.read_number()
	elif name == 'PERMANENTFLAGS':
		value = codetok.read_token()
		if not isinstance(value, list):
			raise ProtocolError('PERMANENTFLAGS expects a list', data = tok.data)
		value = set(value)
	elif name == 'CAPABILITY':
		value = codetok.read_all()
	elif codetok.at_end():
		value = None
	else:
		value = codetok.rest_text()
	return (name, value), tok.rest_text()

def _parse_status_text(resp, tok, encoding):
	resp.code, resp.text = parse_resp_text(tok, encoding)

def _parse_nodata(resp, tok, encoding):
	pass

def _parse_capability(resp, tok, encoding):
	resp.data = tok.read_all()

def _parse_flags(resp, tok, encoding):
	flags = tok.read_token()
	if not isinstance(flags, list):
		raise ProtocolError('FLAGS expects a list', data = resp.raw)
	resp.data = set(flags)

def _parse_list(resp, tok, encoding):
	attributes = tok.read_token()
	if not isinstance(attributes, list):
		raise ProtocolError('%s expects attribute list' % resp.kind.name, data = resp.raw)
	delimiter = tok.read_token()
	name = tok.read_astring()
	resp.data = (set(attributes), delimiter, name)

def _parse_status(resp, tok, encoding):
	name = tok.read_astring()
	items = tok.read_token()
	if not isinstance(items, list) or len(items) % 2 != 0:
		raise ProtocolError('Malformed STATUS item list', data = resp.raw)
	status = {}
	for i in range(0, len(items), 2):
		try:
			status[items[i].upper()] = int(items[i+1])
		except (TypeError, ValueError):
			raise ProtocolError('Malformed STATUS value %r' % items[i+1], data = resp.raw)
	resp.data = (name, status)

def _parse_search(resp, tok, encoding):
	result = []
	while not tok.at_end():
		result.append(tok.read_number())
	resp.data = result

def _parse_fetch(resp, tok, encoding):
	items = tok.read_token()
	if not isinstance(items, list) or len(items) % 2 != 0:
		raise ProtocolError('Malformed FETCH item list', data = resp.raw)
	data = {}
	for i in range(0, len(items), 2):
		key = items[i].upper()
		value = items[i+1]
		if key in ('UID', 'RFC822.SIZE') and isinstance(value, str) and value.isdigit():
			value = int(value)
		data[key] = value
	resp.data = data

NUMBERED_RESPONSES = ('EXISTS', 'RECENT', 'EXPUNGE', 'FETCH')

IMAPRESP = {
	IMAPResponse.OK         : _parse_status_text,
	IMAPResponse.NO         : _parse_status_text,
	IMAPResponse.BAD        : _parse_status_text,
	IMAPResponse.PREAUTH    : _parse_status_text,
	IMAPResponse.BYE        : _parse_status_text,
	IMAPResponse.CAPABILITY : _parse_capability,
	IMAPResponse.FLAGS      : _parse_flags,
	IMAPResponse.LIST       : _parse_list,
	IMAPResponse.LSUB       : _parse_list,
	IMAPResponse.STATUS     : _parse_status,
	IMAPResponse.SEARCH     : _parse_search,
	IMAPResponse.EXISTS     : _parse_nodata,
	IMAPResponse.RECENT     : _parse_nodata,
	IMAPResponse.EXPUNGE    : _parse_nodata,
	IMAPResponse.FETCH      : _parse_fetch,
}


class IMAPResponseParser:
	def __init__(self, encoding = 'utf-8'):
		self.encoding = encoding

	async def from_transport(self, transport, timeout = None, first_line = None):
		"""
		Reads one complete server response. Whenever a line announces a literal
		the literal is read by byte count and the response continues on the next line.
		:param first_line: first line of the response if it was already read by the caller
		:return: bytes of the full response
		"""
		line = first_line
		if line is None:
			line = await transport.readline(timeout = timeout)
		buff = bytearray(line)
		while True:
			m = LITERAL_LINE_RE.search(line)
			if m is None:
				break
			buff += await transport.readexactly(int(m.group(1)), timeout = timeout)
			line = await transport.readline(timeout = timeout)
			buff += line
		return bytes(buff)

	def from_bytes(self, bbuff):
		"""
		Classifies a complete response
		:return: IMAPUntaggedResp, IMAPTaggedResp or IMAPContinuationResp
		"""
		if bbuff[:1] == b'+':
			return IMAPContinuationResp.from_bytes(bbuff, self.encoding)
		if bbuff[:2] == b'* ':
			return IMAPUntaggedResp.from_bytes(bbuff, self.encoding)
		if bbuff.strip() == b'' or bbuff[:1] in b' *(){"':
			raise ProtocolError('Unclassifiable response line %r' % bbuff[:80], fatal = True, data = bbuff)
		return IMAPTaggedResp.from_bytes(bbuff, self.encoding)
