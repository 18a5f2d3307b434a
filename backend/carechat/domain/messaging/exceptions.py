"""Domain-level exceptions for messaging.

Every error carries a stable machine-readable ``code`` plus the broader
``kind`` it belongs to; the API layer turns both into the response envelope.
"""

from __future__ import annotations

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - fallback for older Starlette builds
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY

if hasattr(status, "HTTP_413_CONTENT_TOO_LARGE"):
	_HTTP_413 = status.HTTP_413_CONTENT_TOO_LARGE
else:  # pragma: no cover - fallback for older Starlette builds
	_HTTP_413 = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class MessagingError(Exception):
	"""Base class for messaging errors."""

	kind: str = "internal"
	code: str = "internal_error"
	status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
	message: str = "Something went wrong"

	def __init__(self, code: str | None = None, message: str | None = None, *, status_code: int | None = None) -> None:
		super().__init__(code or self.code)
		if code:
			self.code = code
		if message:
			self.message = message
		if status_code is not None:
			self.status_code = status_code

	def to_payload(self) -> dict[str, object]:
		return {"ok": False, "error": self.code, "kind": self.kind, "message": self.message}


class Unauthorized(MessagingError):
	kind = "unauthorized"
	code = "unauthorized"
	status_code = status.HTTP_401_UNAUTHORIZED
	message = "Authentication required"


class Forbidden(MessagingError):
	kind = "forbidden"
	code = "forbidden"
	status_code = status.HTTP_403_FORBIDDEN
	message = "You are not allowed to do that"


class NotAMember(Forbidden):
	code = "not_a_member"
	message = "You are not a member of this thread"


class NotFound(MessagingError):
	kind = "not_found"
	code = "not_found"
	status_code = status.HTTP_404_NOT_FOUND
	message = "Not found"


class ValidationFailed(MessagingError):
	kind = "validation"
	code = "validation_error"
	status_code = _HTTP_422
	message = "Invalid request"


class FileTooLarge(ValidationFailed):
	code = "file_too_large"
	status_code = _HTTP_413
	message = "File too large. Max size is 15MB."


class Conflict(MessagingError):
	kind = "conflict"
	code = "conflict"
	status_code = status.HTTP_409_CONFLICT
	message = "Conflicting state"


class Blocked(Conflict):
	code = "blocked"
	message = "User is blocked"


class Expired(MessagingError):
	kind = "expired"
	code = "edit_window_expired"
	status_code = status.HTTP_410_GONE
	message = "The edit window for this message has passed"


class RateLimited(MessagingError):
	kind = "rate_limited"
	code = "rate_limited"
	status_code = status.HTTP_429_TOO_MANY_REQUESTS
	message = "Too many requests, slow down"


class DependencyFailure(MessagingError):
	kind = "dependency_failure"
	code = "dependency_failure"
	status_code = status.HTTP_503_SERVICE_UNAVAILABLE
	message = "A backing service is unavailable, try again"
