imap = {
	'host'        : 'imap.example.com',
	'security'    : 'IMPLICIT_TLS',  # PLAIN, STARTTLS or IMPLICIT_TLS
	'username'    : 'user@example.com',
	'password'    : 'changeme',
	'auth_method' : 'AUTO',  # AUTO picks AUTHENTICATE PLAIN or LOGIN based on the server capabilities
	'timeout'     : 10,
	'debug'       : False,  # True logs the protocol trace, credentials are masked
	#'ssl_ctx'    : {
	#	'cafile' : '/etc/ssl/certs/ca-certificates.crt',
	#},
}

logsettings = {
	'log': {
		'version'   : 1,
		'formatters': {
			'detailed': {
				'class' : 'logging.Formatter',
				'format': '%(asctime)s %(name)-15s %(levelname)-8s %(message)s'
			}
		},
		'handlers'  : {
			'console': {
				'class'    : 'logging.StreamHandler',
				'level'    : 'DEBUG',
				'formatter': 'detailed',
			}
		},
		'root'      : {
			'level'   : 'INFO',
			'handlers': ['console']
		}
	}
}
