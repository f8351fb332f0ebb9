"""
Error classification for familyvault.

Every error carries a category, severity, machine readable code and a user
facing message, and logs itself through structlog when raised.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .logging_config import log_error, log_security_event


class ErrorCategory(Enum):
    """Error categories for classification and handling."""

    STORAGE = "storage"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    AUTHORIZATION = "authorization"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorInfo:
    """Structured error information."""

    category: ErrorCategory
    severity: ErrorSeverity
    code: str
    message: str
    user_message: str
    details: dict[str, Any]
    timestamp: datetime
    retry_suggested: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert error info to dictionary."""
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "retry_suggested": self.retry_suggested,
        }


class FamilyVaultError(Exception):
    """Base exception class for familyvault."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        code: str | None = None,
        user_message: str | None = None,
        details: dict[str, Any] | None = None,
        retry_suggested: bool = False,
        original_exception: Exception | None = None,
    ):
        super().__init__(message)
        self.category = category
        self.severity = severity
        self.code = code or f"{category.value}_error"
        self.user_message = user_message or "Something went wrong."
        self.details = details or {}
        self.retry_suggested = retry_suggested
        self.original_exception = original_exception
        self.timestamp = datetime.now(UTC)

        self._log_error()

    def _log_error(self) -> None:
        error_context = {
            "category": self.category.value,
            "severity": self.severity.value,
            "code": self.code,
            "retry_suggested": self.retry_suggested,
            **self.details,
        }
        if self.original_exception is not None:
            error_context["original_exception"] = str(self.original_exception)

        log_error(self, error_context)

        if self.category is ErrorCategory.AUTHORIZATION:
            log_security_event(self.category.value, **error_context)

    def get_error_info(self) -> ErrorInfo:
        """Get structured error information."""
        return ErrorInfo(
            category=self.category,
            severity=self.severity,
            code=self.code,
            message=str(self),
            user_message=self.user_message,
            details=self.details,
            timestamp=self.timestamp,
            retry_suggested=self.retry_suggested,
        )


class StorageError(FamilyVaultError):
    """
    Persistence failure.

    ``retryable`` marks transient failures the retry wrapper may repeat. Once
    retries are exhausted the wrapper raises a copy with ``retryable=False``.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        user_message: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = True,
        original_exception: Exception | None = None,
    ):
        self.retryable = retryable
        super().__init__(
            message=message,
            category=ErrorCategory.STORAGE,
            severity=ErrorSeverity.HIGH,
            code=code or "storage_error",
            user_message=user_message or "The gallery storage is unavailable. Please try again shortly.",
            details=details,
            retry_suggested=retryable,
            original_exception=original_exception,
        )


class ShardConflictError(StorageError):
    """Another writer changed the document between our read and our write."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code="shard_conflict", details=details, retryable=True)


class ValidationError(FamilyVaultError):
    """Malformed input rejected before storage is touched."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        user_message: str | None = None,
        details: dict[str, Any] | None = None,
        original_exception: Exception | None = None,
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            code=code or "validation_failed",
            user_message=user_message or "Some of the provided values are invalid.",
            details=details,
            retry_suggested=False,
            original_exception=original_exception,
        )


class NotFoundError(FamilyVaultError):
    """A referenced media record does not exist in any scanned shard."""

    def __init__(self, message: str, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            category=ErrorCategory.NOT_FOUND,
            severity=ErrorSeverity.LOW,
            code=code or "media_not_found",
            user_message="The requested item could not be found.",
            details=details,
            retry_suggested=False,
        )


class AccessDeniedError(FamilyVaultError):
    """The record exists but the user is not allowed to see or change it."""

    def __init__(self, message: str, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            category=ErrorCategory.AUTHORIZATION,
            severity=ErrorSeverity.HIGH,
            code=code or "access_denied",
            user_message="You do not have permission to perform this action.",
            details=details,
            retry_suggested=False,
        )
