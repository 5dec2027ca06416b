from __future__ import annotations

from typing import Any, Dict


class RaffleError(Exception):
    status_code = 500
    default_message = "internal error"

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        payload.update(self.details)
        return payload


class ValidationError(RaffleError):
    """Malformed request; raised before any lock is taken."""

    status_code = 400
    default_message = "invalid request"


class AuthError(RaffleError):
    status_code = 401
    default_message = "unauthorized"


class ForbiddenError(AuthError):
    status_code = 403
    default_message = "forbidden"


class NotFoundError(RaffleError):
    status_code = 404
    default_message = "not found"


class ConflictError(RaffleError):
    """State does not allow the operation; `details` says exactly why."""

    status_code = 409
    default_message = "conflict"


class IntegrityError(RaffleError):
    """Payment callback failed signature verification."""

    status_code = 401
    default_message = "invalid signature"


class TransientError(RaffleError):
    status_code = 503
    default_message = "service temporarily unavailable, try again"
