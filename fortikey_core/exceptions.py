"""
Error types for the credential store.

Every error carries an ErrorCode, an HTTP-style status, free-form context and
the correlation id of the operation that raised it, and logs itself on
construction. Callers turn an error into a response body with to_dict().
"""

import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

_thread_local = threading.local()

# Context keys that are bookkeeping rather than caller-facing detail
_INTERNAL_KEYS = ("cause", "error_id", "correlation_id")


class ErrorCode(str, Enum):
    """Codes surfaced to callers in error responses."""

    # System (1xxx)
    INTERNAL_ERROR = "1000"
    DATABASE_ERROR = "1001"
    CONFIGURATION_ERROR = "1003"

    # Input (2xxx)
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"
    TYPE_MISMATCH = "2003"

    # Credential state (3xxx)
    NOT_FOUND = "3000"
    DUPLICATE = "3001"
    CONFLICT = "3002"

    # Preconditions (4xxx)
    PRECONDITION_FAILED = "4004"


class BaseError(Exception):
    """Root of every error raised by fortikey_core."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context: Any,
    ):
        """
        Args:
            message: Human-readable error message
            error_code: Code reported to the caller
            status_code: HTTP status the error maps to
            cause: Underlying exception, if any
            **context: Identifiers and details for logs and responses
        """
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.error_id = str(uuid.uuid4())

        self.context = {**context, "error_id": self.error_id}
        if get_correlation_id():
            self.context["correlation_id"] = get_correlation_id()
        if cause is not None:
            self.context["cause"] = {"type": type(cause).__name__, "message": str(cause)}

        super().__init__(message)
        self._log_error()

    def _public_context(self) -> Dict[str, Any]:
        return {k: v for k, v in self.context.items() if k not in _INTERNAL_KEYS}

    def _log_error(self) -> None:
        # Imported here: the logger pulls in the tenant context, which imports this module
        from .utils.logger import get_logger

        extra = {
            **self._summary(),
            "error_code": self.error_code.value,
            "status_code": self.status_code,
        }
        if self.status_code >= 500:
            log, label = get_logger().error, "Error"
        elif self.status_code >= 400:
            log, label = get_logger().warning, "Client error"
        else:
            log, label = get_logger().info, "Error"
        log(f"{label} {self.error_code.value}: {self.message}", extra=extra)

    def _summary(self) -> Dict[str, Any]:
        summary = {
            "error_id": self.error_id,
            "timestamp": self.timestamp,
            "context": self._public_context(),
        }
        if "correlation_id" in self.context:
            summary["correlation_id"] = self.context["correlation_id"]
        return summary

    def to_dict(self, include_cause: bool = False) -> Dict[str, Any]:
        """Response body for this error; the cause is only included on request."""
        summary = self._summary()
        body: Dict[str, Any] = {
            "id": summary.pop("error_id"),
            "code": self.error_code.value,
            "message": self.message,
            **summary,
        }
        if include_cause and "cause" in self.context:
            body["cause"] = dict(self.context["cause"])
        return {"error": body}

    def add_context(self, **kwargs: Any) -> "BaseError":
        """Attach more context after construction. Returns self."""
        self.context.update(kwargs)
        return self


class RepositoryError(BaseError):
    """A store write or read failed."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, status_code, cause, **context)


class ServiceError(BaseError):
    """A service operation failed for a reason the caller cannot fix by changing input."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        if operation:
            context["operation"] = operation
        super().__init__(message, error_code, 500, cause, **context)


class ValidationError(BaseError):
    """Caller input was missing or malformed."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        cause: Optional[Exception] = None,
        **context,
    ):
        if field:
            context["field"] = field
        super().__init__(message, error_code, 400, cause, **context)


class ConfigurationError(BaseError):
    """Raised at startup when required configuration is missing or malformed."""

    def __init__(self, message: str, setting: Optional[str] = None, **context):
        if setting:
            context["setting"] = setting
        super().__init__(
            message, error_code=ErrorCode.CONFIGURATION_ERROR, status_code=500, **context
        )


def _describe(prefix: str, identifiers: Dict[str, Any]) -> str:
    shown = ", ".join(f"{k}={v}" for k, v in identifiers.items() if v is not None)
    return f"{prefix}: {shown}" if shown else prefix


class CredentialNotFoundError(BaseError):
    """No credential is visible to the scope for the given id or external user."""

    def __init__(self, message: Optional[str] = None, **identifiers):
        super().__init__(
            message or _describe("TOTP credential not found", identifiers),
            error_code=ErrorCode.NOT_FOUND,
            status_code=404,
            **identifiers,
        )


class DuplicateCredentialError(BaseError):
    """The external user already has a credential, or an all-tenants lookup is ambiguous."""

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.DUPLICATE,
        cause: Optional[Exception] = None,
        **identifiers,
    ):
        super().__init__(
            message or _describe("TOTP credential already exists", identifiers),
            error_code=error_code,
            status_code=409,
            cause=cause,
            **identifiers,
        )


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation id for the current thread."""
    _thread_local.correlation_id = correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the current thread's correlation id."""
    return getattr(_thread_local, "correlation_id", None)


def clear_correlation_id() -> None:
    """Clear the current thread's correlation id."""
    if hasattr(_thread_local, "correlation_id"):
        delattr(_thread_local, "correlation_id")
