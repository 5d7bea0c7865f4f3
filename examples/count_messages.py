#!/usr/bin/env python3
import os
import asyncio
from pathlib import Path

from imapcore.clients.imap import connect
from imapcore.core.config import IMAPClientConfig


def load_config():
	if IMAPClientConfig.CONFIG_OS_KEY in os.environ:
		return IMAPClientConfig.from_os_env()
	return IMAPClientConfig.from_python_script(str(Path(__file__).parent / 'config_imap.py'))

async def count_messages(config, mailbox = 'INBOX'):
	async with await connect(config) as conn:
		await conn.authenticate()
		state = await conn.open_mailbox(mailbox, read_only = True)
		return state.message_count

def main():
	config = load_config()
	config.setup_logging()
	count = asyncio.run(count_messages(config))
	print('INBOX has %d messages' % count)

if __name__ == '__main__':
	main()
