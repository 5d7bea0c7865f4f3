import os
import ssl
import tempfile
from pathlib import Path


class SSLContextBuilder:
	doc_sslsettings = {
		'protocol':'',
		'options':'',
		'verify_mode':'',
		'check_hostname':'',
		'ciphers':'',
		'cafile':'',
		'cadata':'',
		'certfile':'',
		'keyfile':'',
		'certdata':'',
		'keydata':'',
	}
	"""
	Holds the necessary config elements to setup a client side ssl context.
	certfile and certdata are mutually exclusive. Only provide one. Same goes for cafile and cadata.
	:param protocol: ssl.PROTOCOL_* value as string
	:type protocol: str
	:param options: List of ssl.OP_* values as string
	:type options: list
	:param verify_mode: The verification mode as string
	:type verify_mode: str
	:param check_hostname: Whether the server's hostname must match its certificate
	:type check_hostname: bool
	:param ciphers: Cipher settings string
	:type ciphers: str
	:param cafile: Full path to the CA bundle used to verify the server
	:type cafile: str
	:param cadata: PEM formatted string holding the CA certificates
	:type cadata: str
	:param certfile: Full path to the client certificate file
	:type certfile: str
	:param keyfile: Full path to the client key file
	:type keyfile: str
	:param certdata: PEM formatted string holding the client certificate
	:type certdata: str
	:param keydata: PEM formatted string holding the client key data
	:type keydata: str
	"""

	@staticmethod
	def load_certificates(context, sslsettings):
		if 'certfile' in sslsettings:
			context.load_cert_chain(
				certfile=sslsettings['certfile'],
				keyfile=sslsettings.get('keyfile')
			)
		elif 'certdata' in sslsettings:
			# not using tempfile.NamedTemporaryFile here because it cannot be re-opened in windows as per documentation
			with tempfile.TemporaryDirectory() as td:
				random_suffix = os.urandom(8).hex()
				certfile_path = str(Path(td, 'cert%s.crt' % random_suffix))
				keyfile_path = str(Path(td, 'key%s.crt' % random_suffix))
				with open(certfile_path, 'w') as f:
					f.write(sslsettings['certdata'])
				with open(keyfile_path, 'w') as f:
					f.write(sslsettings['keydata'])

				context.load_cert_chain(
					certfile=certfile_path,
					keyfile=keyfile_path
				)

	@staticmethod
	def load_ca_certs(context, sslsettings):
		if 'cafile' in sslsettings:
			context.load_verify_locations(cafile = sslsettings['cafile'])
		elif 'cadata' in sslsettings:
			context.load_verify_locations(cadata = sslsettings['cadata'])
		else:
			context.load_default_certs(ssl.Purpose.SERVER_AUTH)

	@staticmethod
	def from_dict(sslsettings):
		"""
		Creates a client SSL context from dictionary-based configuration
		:param sslsettings: configuration dictionary
		:return: ssl.SSLContext
		"""
		protocol = ssl.PROTOCOL_TLS_CLIENT
		verify_mode = ssl.CERT_REQUIRED
		check_hostname = True

		if 'protocol' in sslsettings:
			protocol = getattr(ssl, sslsettings['protocol'])

		options = []
		if 'options' in sslsettings:
			if isinstance(sslsettings['options'], list):
				for option in sslsettings['options']:
					options.append(getattr(ssl, option))
			else:
				options.append(getattr(ssl, sslsettings['options']))

		if 'verify_mode' in sslsettings:
			verify_mode = getattr(ssl, sslsettings['verify_mode'])

		if 'check_hostname' in sslsettings:
			check_hostname = sslsettings['check_hostname']

		if verify_mode == ssl.CERT_NONE:
			# hostname checking has to be switched off before the verify mode can be lowered
			check_hostname = False

		context = ssl.SSLContext(protocol)
		context.check_hostname = check_hostname
		context.verify_mode = verify_mode

		for o in options:
			context.options |= o

		if 'ciphers' in sslsettings:
			context.set_ciphers(sslsettings['ciphers'])

		if verify_mode != ssl.CERT_NONE:
			SSLContextBuilder.load_ca_certs(context, sslsettings)
		SSLContextBuilder.load_certificates(context, sslsettings)

		return context


def get_default_client_ctx():
	return ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
