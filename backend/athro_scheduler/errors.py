from __future__ import annotations
from typing import Iterable, Optional


class SchedulerError(Exception):
	"""Base class for every error raised by the scheduling core."""


class ValidationError(SchedulerError):
	"""Bad input shape, detected before any I/O happens."""


class MissingFieldError(ValidationError):
	def __init__(self, fields: Iterable[str]) -> None:
		self.fields = list(fields)
		super().__init__("missing required fields: " + ", ".join(self.fields))


class NotPersistableError(SchedulerError):
	"""The entity has no server identity (unsaved, or expanded from a slot)."""


class DecodeError(SchedulerError):
	"""A packed description field could not be parsed."""


class StoreError(SchedulerError):
	"""Raised by a table store when the backing service rejects a call."""

	def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
		self.status_code = status_code
		super().__init__(message)


class PersistenceError(SchedulerError):
	def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
		self.cause = cause
		super().__init__(message)
