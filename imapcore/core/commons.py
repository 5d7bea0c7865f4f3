import enum
import json
import datetime


class Credential:
	def __init__(self, username = None, password = None, auth_method = None):
		"""
		Login information handed to IMAPConnection.authenticate.
		:param username: Username
		:type username: str
		:param password: Password
		:type password: str
		:param auth_method: Preferred authentication method, None lets the client decide
		:type auth_method: IMAPAuthMethod
		"""
		self.username = username
		self.password = password
		self.auth_method = auth_method

	def to_dict(self):
		"""
		Converts the object to a dict. The password is never included.
		:return: dict
		"""
		t = {}
		t['username'] = self.username
		t['auth_method'] = self.auth_method
		return t

	def to_json(self):
		return json.dumps(self.to_dict(), cls=UniversalEncoder)

	@staticmethod
	def from_dict(d):
		return Credential(d.get('username'), d.get('password'), d.get('auth_method'))

	def __repr__(self):
		return 'Credential(username=%r, password=%s)' % (self.username, '***' if self.password else None)


class UniversalEncoder(json.JSONEncoder):
	"""
	Used to override the default json encoder to provide a direct serialization for formats
	that the default json encoder is incapable to serialize
	"""
	def default(self, obj):
		if isinstance(obj, datetime.datetime):
			return obj.isoformat()
		elif isinstance(obj, enum.Enum):
			return obj.name
		elif isinstance(obj, (set, frozenset)):
			return sorted(obj)
		elif isinstance(obj, bytes):
			return obj.decode('utf-8', 'replace')
		elif hasattr(obj, 'to_dict'):
			return obj.to_dict()
		else:
			return json.JSONEncoder.default(self, obj)


def hexdump(src, length=16, sep='.'):
	"""
	Pretty printing binary data blobs
	:param src: Binary blob
	:type src: bytearray
	:param length: Size of data in each row
	:type length: int
	:param sep: Character to print when data byte is non-printable ASCII
	:type sep: str(char)
	:return: str
	"""
	result = []

	for i in range(0, len(src), length):
		subSrc = src[i:i+length]
		hexa = ''
		for h in range(0,len(subSrc)):
			if h == length/2:
				hexa += ' '
			hexa += '%02x ' % subSrc[h]
		hexa = hexa.strip(' ')
		text = ''
		for c in subSrc:
			if 0x20 <= c < 0x7F:
				text += chr(c)
			else:
				text += sep
		result.append(('%08X:  %-'+str(length*(2+1)+1)+'s  |%s|') % (i, hexa, text))

	return '\n'.join(result)


def get_mutual_preference(preference, offered):
	"""
	Generic function to determine which option to use from two lists of options offered by two parties.
	Returns the option that is mutual and in the highest priority of the preference, and its index in offered
	:param preference: A list of options where the preference is set by the option's position in the list (lower is most preferred)
	:type preference: list
	:param offered: A list of options that the other party can offer
	:type offered: list
	:return: tuple
	"""
	common_supp = set(preference).intersection(set(offered))
	if len(common_supp) == 0:
		return None, None

	for option in preference:
		if option in common_supp:
			return option, offered.index(option)
