"""Error taxonomy for the duty-swap core.

Every error carries a stable ``code`` so callers branch on codes, never on
message text.
"""

from __future__ import annotations

from typing import Any, Optional


class DutySwapError(Exception):
    code = "dutyswap_error"
    http_status = 500

    def __init__(
        self, message: str, user_message: Optional[str] = None, details: Any = None
    ) -> None:
        super().__init__(message)
        self.user_message = user_message or message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "user_message": self.user_message,
            "technical_reason": str(self),
        }


class ValidationError(DutySwapError):
    """Missing or malformed input. Never retried."""

    code = "validation_error"
    http_status = 400


class NotFoundError(DutySwapError):
    code = "not_found"
    http_status = 404


class ConflictError(DutySwapError):
    """Duplicate PENDING swap request, duplicate leg, or ownership changed."""

    code = "conflict"
    http_status = 409


class CollaboratorError(DutySwapError):
    """Storage, converter or network failure, propagated as-is."""

    code = "collaborator_error"
    http_status = 502

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        backend_code: Optional[str] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message, user_message="An upstream service failed", details=details)
        self.status = status
        self.backend_code = backend_code


class CapabilityMissing(CollaboratorError):
    """An optional server-side primitive (e.g. the batch swap function) is absent."""

    code = "capability_missing"
