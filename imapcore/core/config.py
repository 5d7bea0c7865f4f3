import os
import json
import logging.config
import importlib.util
import importlib.machinery
from urllib.parse import urlparse, parse_qs

from imapcore.core.ssl import SSLContextBuilder
from imapcore.core.commons import Credential
from imapcore.protocols.IMAP import IMAPSecurity, IMAPAuthMethod

DEFAULT_PORTS = {
	IMAPSecurity.PLAIN        : 143,
	IMAPSecurity.STARTTLS     : 143,
	IMAPSecurity.IMPLICIT_TLS : 993,
}


class IMAPClientConfig:
	CONFIG_OS_KEY = 'IMAPCORE_CONFIG'

	def __init__(self):
		self.host = None
		self.port = None
		self.security = IMAPSecurity.PLAIN
		self.username = None
		self.password = None
		self.auth_method = IMAPAuthMethod.AUTO
		self.timeout = 10
		self.connect_timeout = 10
		self.ssl_settings = None
		self.pipelining = False
		self.tag_prefix = 'A'
		self.debug = False
		self.log_settings = None

	def __repr__(self):
		t  = '== IMAPClientConfig ==\r\n'
		t += 'host: %s\r\n' % self.host
		t += 'port: %s\r\n' % self.port
		t += 'security: %s\r\n' % self.security.name
		t += 'username: %s\r\n' % self.username
		t += 'auth_method: %s\r\n' % self.auth_method.name
		t += 'timeout: %s\r\n' % self.timeout
		t += 'pipelining: %s\r\n' % self.pipelining
		t += 'debug: %s\r\n' % self.debug
		return t

	def get_port(self):
		if self.port is not None:
			return self.port
		return DEFAULT_PORTS[self.security]

	def get_paddr(self):
		return '%s:%d' % (self.host, self.get_port())

	def get_ssl_context(self):
		"""
		:return: ssl.SSLContext or None if the default context should be used
		"""
		if self.ssl_settings is None:
			return None
		return SSLContextBuilder.from_dict(self.ssl_settings)

	def get_credential(self):
		return Credential(self.username, self.password, self.auth_method)

	def setup_logging(self):
		if self.log_settings is not None:
			logging.config.dictConfig(self.log_settings)

	@staticmethod
	def construct(host, port = None, username = None, password = None, security = IMAPSecurity.PLAIN, timeout = 10, **kwargs):
		conf = IMAPClientConfig()
		conf.host = host
		conf.port = int(port) if port is not None else None
		conf.username = username
		conf.password = password
		conf.security = security
		conf.timeout = timeout
		for key in kwargs:
			if not hasattr(conf, key):
				raise ValueError('Unknown configuration option %s' % key)
			setattr(conf, key, kwargs[key])
		return conf

	@staticmethod
	def from_url(url, timeout = 10):
		"""
		imap://<user>:<pass>@host:port for plaintext, imap://...?starttls for STARTTLS, imaps://... for implicit TLS
		"""
		conf = IMAPClientConfig()
		o = urlparse(url)
		scheme = o.scheme.lower()
		if scheme == 'imaps':
			conf.security = IMAPSecurity.IMPLICIT_TLS
		elif scheme == 'imap':
			conf.security = IMAPSecurity.PLAIN
			if 'starttls' in parse_qs(o.query, keep_blank_values = True):
				conf.security = IMAPSecurity.STARTTLS
		else:
			raise ValueError('Only imap:// and imaps:// URLs are supported! (usage: imap://<user>:<pass>@host:port)')

		if o.hostname is None:
			raise ValueError('Missing host in URL %s' % url)
		conf.host = o.hostname
		conf.port = o.port
		conf.username = o.username
		conf.password = o.password
		conf.timeout = timeout
		return conf

	@staticmethod
	def from_dict(d):
		conf = IMAPClientConfig()
		conf.host = d['host']
		conf.port = int(d['port']) if d.get('port') is not None else None
		if 'security' in d:
			conf.security = IMAPSecurity[d['security'].upper()]
		conf.username = d.get('username')
		conf.password = d.get('password')
		if 'auth_method' in d:
			conf.auth_method = IMAPAuthMethod[d['auth_method'].upper()]
		if 'timeout' in d:
			conf.timeout = float(d['timeout']) if d['timeout'] is not None else None
		if 'connect_timeout' in d:
			conf.connect_timeout = float(d['connect_timeout']) if d['connect_timeout'] is not None else None
		conf.ssl_settings = d.get('ssl_ctx')
		conf.pipelining = bool(d.get('pipelining', False))
		conf.tag_prefix = d.get('tag_prefix', 'A')
		conf.debug = bool(d.get('debug', False))
		return conf

	@staticmethod
	def from_json(config_data):
		return IMAPClientConfig.from_dict(json.loads(config_data))

	@staticmethod
	def from_file(file_path):
		with open(file_path, 'r') as f:
			config = json.load(f)
		return IMAPClientConfig.from_dict(config)

	@staticmethod
	def from_python_script(file_path):
		"""
		The script must define an "imap" dictionary, "logsettings" is optional
		"""
		loader = importlib.machinery.SourceFileLoader('imapconfig', file_path)
		spec = importlib.util.spec_from_loader(loader.name, loader)
		imapconfig = importlib.util.module_from_spec(spec)
		loader.exec_module(imapconfig)
		conf = IMAPClientConfig.from_dict(imapconfig.imap)
		logsettings = getattr(imapconfig, 'logsettings', None)
		if logsettings is not None:
			conf.log_settings = logsettings['log']
		return conf

	@staticmethod
	def from_os_env():
		config_file = os.environ.get(IMAPClientConfig.CONFIG_OS_KEY)
		if config_file is None:
			raise ValueError(
				'Could not find configuration file path in os environment variables! '
				'Name to be set: %s' % IMAPClientConfig.CONFIG_OS_KEY
			)
		return IMAPClientConfig.from_python_script(config_file)
