"""Custom exceptions for the Sparklog sync engine.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002

    # Draft errors (2xxx)
    DRAFT_CORRUPTED = 2001
    DRAFT_INVALID_OPERATION = 2002

    # Local storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    STORAGE_QUOTA_EXCEEDED = 4004

    # Remote store errors (5xxx)
    REMOTE_REQUEST_FAILED = 5001
    REMOTE_NOT_FOUND = 5002
    REMOTE_VERSION_CONFLICT = 5003
    REMOTE_RATE_LIMITED = 5004
    REMOTE_NOT_CONFIGURED = 5005

    # Snapshot errors (55xx)
    SNAPSHOT_UNAVAILABLE = 5501

    # Build pipeline errors (58xx)
    BUILD_TRIGGER_FAILED = 5801
    BUILD_STATUS_FAILED = 5802

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001
    CONFIG_MISSING = 6002

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001


class SparklogError(Exception):
    """Base exception for all Sparklog sync errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class StorageError(SparklogError):
    """Raised for local persistence errors (key-value store)."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        key: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if key:
            details["key"] = key
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.key = key
        self.original_error = original_error


class RemoteStoreError(SparklogError):
    """Raised when a request against the authoritative remote store fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        status_code: Optional[int] = None,
        code: ErrorCode = ErrorCode.REMOTE_REQUEST_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if path:
            details["path"] = path
        if status_code is not None:
            details["status_code"] = status_code
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.status_code = status_code
        self.original_error = original_error


class VersionConflictError(RemoteStoreError):
    """Raised when the remote store rejects a stale version token.

    This indicates optimistic concurrency control failure - the file was
    modified remotely since the caller last read it.
    """

    def __init__(
        self,
        path: str,
        expected_version: Optional[str],
        status_code: Optional[int] = 409,
        operation: Optional[str] = None,
    ):
        expected = expected_version[:7] if expected_version else "None"
        super().__init__(
            f"Version conflict for '{path}': expected {expected}",
            operation=operation,
            path=path,
            status_code=status_code,
            code=ErrorCode.REMOTE_VERSION_CONFLICT,
        )
        self.expected_version = expected_version
        self.details["expected_version"] = expected_version


class RateLimitedError(RemoteStoreError):
    """Raised when the remote store throttles the client."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        status_code: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ):
        super().__init__(
            message,
            operation=operation,
            path=path,
            status_code=status_code,
            code=ErrorCode.REMOTE_RATE_LIMITED,
        )
        self.retry_after = retry_after
        if retry_after is not None:
            self.details["retry_after"] = retry_after


class SnapshotUnavailableError(SparklogError):
    """Raised internally when the snapshot endpoint cannot serve a payload.

    Never escapes the snapshot client: callers see ``None`` instead.
    """

    def __init__(self, message: str, url: Optional[str] = None):
        details = {"url": url} if url else {}
        super().__init__(message, code=ErrorCode.SNAPSHOT_UNAVAILABLE, details=details)
        self.url = url


class BuildPipelineError(SparklogError):
    """Raised for build trigger or build status failures."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: ErrorCode = ErrorCode.BUILD_TRIGGER_FAILED,
    ):
        details = {"status_code": status_code} if status_code is not None else {}
        super().__init__(message, code=code, details=details)
        self.status_code = status_code


class ConfigurationError(SparklogError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID,
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key


class ValidationError(SparklogError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value
