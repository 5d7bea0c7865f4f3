import ssl
import asyncio

from imapcore.core.asyncio_helpers import readline_or_exc, readexactly_or_exc, sendall
from imapcore.core.exceptions import ConnectError, ConnectionClosed
from imapcore.core.ssl import get_default_client_ctx
from imapcore.protocols.IMAP import IMAPSecurity

# IMAP FETCH responses can carry very long lines
STREAM_LIMIT = 1024 * 1024


class IMAPTransport:
	"""
	Owns the duplex byte stream towards the server.
	Reading is line based, literals are read by exact byte count (see IMAPResponseParser.from_transport).
	"""
	def __init__(self, reader, writer, host = None, port = None, security = IMAPSecurity.PLAIN):
		self.reader = reader
		self.writer = writer
		self.host = host
		self.port = port
		self.security = security
		self.is_ssl = security == IMAPSecurity.IMPLICIT_TLS
		self.closed = False

	@staticmethod
	async def open(host, port, security = IMAPSecurity.PLAIN, ssl_ctx = None, timeout = None):
		"""
		Opens the connection to the server.
		:param security: IMPLICIT_TLS wraps the socket right away, PLAIN and STARTTLS start in cleartext
		:type security: IMAPSecurity
		:param ssl_ctx: context to use for implicit TLS
		:type ssl_ctx: ssl.SSLContext
		:param timeout: seconds to wait for the TCP (and TLS) handshake
		:return: IMAPTransport
		"""
		server_ssl = None
		server_hostname = None
		if security == IMAPSecurity.IMPLICIT_TLS:
			server_ssl = ssl_ctx if ssl_ctx is not None else get_default_client_ctx()
			server_hostname = host
		try:
			reader, writer = await asyncio.wait_for(
				asyncio.open_connection(
					host = host,
					port = port,
					ssl = server_ssl,
					server_hostname = server_hostname,
					limit = STREAM_LIMIT
				),
				timeout = timeout
			)
		except asyncio.TimeoutError:
			raise ConnectError('Connecting to %s:%s timed out' % (host, port))
		except (OSError, ssl.SSLError) as e:
			raise ConnectError('Failed to connect to %s:%s! Reason: %s' % (host, port, e)) from e

		return IMAPTransport(reader, writer, host, port, security)

	def get_remote_print_address(self):
		return '%s:%s' % (self.host, self.port)

	async def readline(self, timeout = None):
		if self.closed:
			raise ConnectionClosed('Transport is closed')
		return await readline_or_exc(self.reader, timeout = timeout)

	async def readexactly(self, n, timeout = None):
		if self.closed:
			raise ConnectionClosed('Transport is closed')
		return await readexactly_or_exc(self.reader, n, timeout = timeout)

	async def write(self, data, timeout = None):
		if self.closed:
			raise ConnectionClosed('Transport is closed')
		await sendall(self.writer, data, timeout = timeout)

	async def starttls(self, ssl_ctx = None, server_hostname = None, timeout = None):
		"""
		Upgrades the existing stream to TLS in place.
		"""
		if ssl_ctx is None:
			ssl_ctx = get_default_client_ctx()
		if server_hostname is None:
			server_hostname = self.host
		try:
			await asyncio.wait_for(
				self.writer.start_tls(ssl_ctx, server_hostname = server_hostname),
				timeout = timeout
			)
		except asyncio.TimeoutError:
			raise ConnectError('TLS negotiation with %s timed out' % self.get_remote_print_address())
		except (OSError, ssl.SSLError) as e:
			raise ConnectError('TLS negotiation with %s failed! Reason: %s' % (self.get_remote_print_address(), e)) from e
		self.is_ssl = True

	async def close(self):
		if self.closed:
			return
		self.closed = True
		self.writer.close()
		try:
			await self.writer.wait_closed()
		except (OSError, ssl.SSLError):
			# the peer already went away, nothing left to release
			pass

	async def __aenter__(self):
		return self

	async def __aexit__(self, exc_type, exc, tb):
		await self.close()
