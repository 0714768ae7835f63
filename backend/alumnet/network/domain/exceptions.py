"""Custom exceptions for network services."""

from __future__ import annotations

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - older Starlette builds
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class NetworkError(Exception):
	"""Base class for network related errors."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "network_error"

	def __init__(self, detail: str | None = None) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail


class NotFoundError(NetworkError):
	"""Thrown when a referenced entity does not exist."""

	status_code = status.HTTP_404_NOT_FOUND
	detail = "not_found"


class ForbiddenError(NetworkError):
	"""Raised when the actor's audience does not cover the target."""

	status_code = status.HTTP_403_FORBIDDEN
	detail = "forbidden"


class InvalidTargetError(NetworkError):
	"""Raised for a target descriptor whose kind is not user, group or topic."""

	status_code = _HTTP_422
	detail = "invalid_target"


class PreconditionError(NetworkError):
	"""Raised when the ledger state does not allow the transition."""

	status_code = status.HTTP_400_BAD_REQUEST
	detail = "precondition_failed"


class ConflictError(NetworkError):
	"""Raised for conflicting operations (e.g., duplicate group name)."""

	status_code = status.HTTP_409_CONFLICT
	detail = "conflict"


class AlreadyMemberError(ConflictError):
	detail = "already_member"


class AlreadyInvitedError(ConflictError):
	detail = "already_invited"


class LastAdminError(ConflictError):
	"""Raised when a change would leave a group without an active admin."""

	detail = "last_admin"


class CapacityExceededError(ConflictError):
	detail = "event_full"


class ValidationError(NetworkError):
	"""Raised for validation errors not covered by FastAPI schema validation."""

	status_code = _HTTP_422
	detail = "validation_error"


class IdempotencyConflict(ConflictError):
	"""Raised when an idempotency key is reused with a mismatched payload."""

	detail = "idempotency_conflict"
