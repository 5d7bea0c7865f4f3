from setuptools import setup, find_namespace_packages

with open('requirements.txt') as f:
	required = [line for line in f.read().splitlines() if line.strip() and not line.startswith('#')]

setup(
	# Application name:
	name="imapcore",

	# Version number (initial):
	version="0.0.1",

	# Packages
	packages=find_namespace_packages(include=["imapcore", "imapcore.*"], exclude=["imapcore.tests"]),

	# Include additional files into the package
	include_package_data=True,

	zip_safe = True,
	#
	# license="LICENSE.txt",
	description="asyncio IMAP4rev1 client core",

	# long_description=open("README.txt").read(),

	#Dependent packages (distributions)
	install_requires=required,

	extras_require={
		'test': ['pytest', 'pytest-asyncio'],
	},

	python_requires='>=3.11',
)
