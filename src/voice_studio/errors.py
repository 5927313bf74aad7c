"""Domain errors rendered by the API as structured envelopes."""

from typing import Any


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class AuthError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"


class ForbiddenError(AppError):
    status_code = 403
    code = "FORBIDDEN"


class InsufficientFundsError(AppError):
    status_code = 402
    code = "INSUFFICIENT_FUNDS"


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class RateLimitError(AppError):
    status_code = 429
    code = "RATE_LIMITED"


class VendorError(AppError):
    """Downstream vendor failure. ``status_code`` mirrors the vendor's when it sent one."""

    code = "VENDOR_ERROR"

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message, details=body)
        # vendor auth failures are ours to fix, not the caller's
        passthrough = status_code is not None and status_code >= 400 and status_code not in {401, 403}
        self.status_code = status_code if passthrough else 502
        self.vendor_status = status_code
        self.body = body


class PollTimeoutError(AppError):
    """Client gave up polling. The task itself is left untouched."""

    status_code = 504
    code = "GENERATION_TIMEOUT"

    def __init__(self, task_id: str, attempts: int) -> None:
        super().__init__(f"Task {task_id} still running after {attempts} polls", details={"task_id": task_id})
        self.task_id = task_id
        self.attempts = attempts
