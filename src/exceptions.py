"""Domain exception hierarchy for structured error responses."""

from __future__ import annotations


class AppException(Exception):
    """Base exception for all domain errors.

    Subclasses set ``code`` and ``status_code`` at the class level; callers
    provide ``message`` and an optional ``details`` list.
    """

    code: str = "APP_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFoundException(AppException):
    code = "NOT_FOUND"
    status_code = 404


class ConflictException(AppException):
    code = "CONFLICT"
    status_code = 409


class BusinessRuleException(AppException):
    code = "BUSINESS_RULE_VIOLATION"
    status_code = 422


# ---------------------------------------------------------------------------
# Delivery state machine
# ---------------------------------------------------------------------------


class InvalidTransitionException(ConflictException):
    """Requested delivery status is not reachable from the current one."""

    code = "INVALID_TRANSITION"

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot transition from '{current}' to '{requested}'",
            details=[{"field": "delivery_status", "message": f"current={current} requested={requested}"}],
        )
        self.current = current
        self.requested = requested


class ConditionFailedException(ConflictException):
    """A conditional write found the order in a different state than expected."""

    code = "CONDITION_FAILED"


# ---------------------------------------------------------------------------
# Archive build
# ---------------------------------------------------------------------------


class ConfigurationException(AppException):
    code = "MISSING_CONFIGURATION"
    status_code = 500


class InvalidPayloadException(AppException):
    code = "INVALID_PAYLOAD"
    status_code = 400


class ArchiveException(AppException):
    code = "ARCHIVE_FAILED"
    status_code = 500


class EmptyArchiveException(ArchiveException):
    code = "EMPTY_ARCHIVE"


class CorruptArchiveException(ArchiveException):
    code = "CORRUPT_ARCHIVE"


class ArchiveUploadException(ArchiveException):
    code = "UPLOAD_FAILED"


class ArchiveTimeoutException(ArchiveException):
    code = "BUILD_TIMEOUT"


class JobDispatchError(AppException):
    code = "DISPATCH_FAILED"
    status_code = 502
