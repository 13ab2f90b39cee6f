from typing import Any, Optional


class AppError(Exception):
	"""Base class for errors that map onto an HTTP status and a JSON `error` body."""

	status_code = 500

	def __init__(self, message: str, details: Optional[Any] = None, status_code: Optional[int] = None):
		super().__init__(message)
		self.message = message
		self.details = details
		if status_code is not None:
			self.status_code = status_code


class ValidationFailed(AppError):
	status_code = 400


class NotFound(AppError):
	status_code = 404


class Conflict(AppError):
	status_code = 409


class UpstreamError(AppError):
	status_code = 500


class ConfigurationError(UpstreamError):
	pass
