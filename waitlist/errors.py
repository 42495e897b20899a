"""
waitlist.errors — Typed failures raised by the service layer
=============================================================

Every service operation either returns a result or raises one of these.
None of them is fatal: each is scoped to the single call that raised it,
and the API shell maps ``status_code`` straight onto the HTTP response.
"""

from __future__ import annotations

from datetime import datetime


class WaitlistError(Exception):
    """Base class for all service-layer failures."""

    code = "error"
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        self.message = message or (self.__class__.__doc__ or self.code).strip()
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "error": self.code, "message": self.message}


# ---------------------------------------------------------------------------
# Validation — rejected before any write
# ---------------------------------------------------------------------------
class ValidationError(WaitlistError):
    """Invalid input."""

    code = "validation_error"
    status_code = 400


class InvalidAmount(ValidationError):
    """Points amount must be positive."""

    code = "invalid_amount"


class InvalidLink(ValidationError):
    """Invalid URL format."""

    code = "invalid_link"


class InvalidTag(ValidationError):
    """Referral tag must be 3-30 characters of a-z, 0-9, '_' or '-'."""

    code = "invalid_tag"


# ---------------------------------------------------------------------------
# Not found — no write attempted
# ---------------------------------------------------------------------------
class NotFound(WaitlistError):
    """Resource not found."""

    code = "not_found"
    status_code = 404


class AccountNotFound(NotFound):
    """Account not found."""

    code = "account_not_found"


class TaskNotFound(NotFound):
    """Task not found or inactive."""

    code = "task_not_found"


class SubmissionNotFound(NotFound):
    """Submission not found."""

    code = "submission_not_found"


# ---------------------------------------------------------------------------
# Conflict — wrong-state transition, state unchanged
# ---------------------------------------------------------------------------
class Conflict(WaitlistError):
    """Operation conflicts with the current state."""

    code = "conflict"
    status_code = 409


# ---------------------------------------------------------------------------
# Security blocks — bans and bot detection
# ---------------------------------------------------------------------------
class SecurityBlock(WaitlistError):
    """Access denied due to suspicious activity."""

    code = "security_block"
    status_code = 403

    def __init__(
        self,
        message: str | None = None,
        *,
        reason: str | None = None,
        until: datetime | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.until = until
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reason"] = self.reason
        data["until"] = self.until.isoformat() if self.until else None
        return data
