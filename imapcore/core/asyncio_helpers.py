import asyncio

from imapcore.core.exceptions import ConnectionClosed, IMAPTimeout


async def readexactly_or_exc(reader, n, timeout = None):
	"""
	Helper function to read exactly N amount of data from the wire.
	:param reader: The reader object
	:type reader: asyncio.StreamReader
	:param n: The amount of bytes to read.
	:type n: int
	:param timeout: Time in seconds to wait for the reader to return data
	:type timeout: int
	:return: bytearray
	"""
	try:
		data = await asyncio.wait_for(reader.readexactly(n), timeout = timeout)
	except asyncio.TimeoutError:
		raise IMAPTimeout('No data received in %s seconds' % timeout)
	except asyncio.IncompleteReadError as e:
		raise ConnectionClosed('Connection closed after %d of %d bytes' % (len(e.partial), n))
	except OSError as e:
		raise ConnectionClosed(str(e))

	return data


async def readline_or_exc(reader, timeout = None):
	"""
	Helper function to read the wire until an end-of-line character is reached.
	:param reader: The reader object
	:type reader: asyncio.StreamReader
	:param timeout: Time in seconds to wait for the reader to reach the pattern
	:type timeout: int
	:return: bytearray
	"""
	try:
		data = await asyncio.wait_for(reader.readline(), timeout = timeout)
	except asyncio.TimeoutError:
		raise IMAPTimeout('No data received in %s seconds' % timeout)
	except (OSError, ValueError) as e:
		raise ConnectionClosed(str(e))

	if data == b'' or not data.endswith(b'\n'):
		if reader.at_eof():
			raise ConnectionClosed('Connection closed by the server')

	return data


async def sendall(writer, data, timeout = None):
	"""
	Helper function that writes all the data to the wire
	:param writer: Writer object
	:type writer: asyncio.StreamWriter
	:param data: Data to be written
	:type data: bytearray
	:return: None
	"""
	try:
		writer.write(data)
		await asyncio.wait_for(writer.drain(), timeout = timeout)
	except asyncio.TimeoutError:
		raise IMAPTimeout('Write did not complete in %s seconds' % timeout)
	except OSError as e:
		raise ConnectionClosed(str(e))
