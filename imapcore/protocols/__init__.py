from abc import ABC, abstractmethod


class ProtocolBase(ABC):
	@staticmethod
	@abstractmethod
	def from_bytes(bbuff):
		"""
		takes bytes, returns the instantiated class
		"""
		raise NotImplementedError

	@abstractmethod
	def to_bytes(self):
		"""
		serializes the class
		"""
		raise NotImplementedError
