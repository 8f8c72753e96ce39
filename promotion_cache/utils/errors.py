"""
Custom error classes for the promotion cache.

Provides structured error handling with error codes,
details and proper exception chaining.
"""

from typing import Optional, Dict, Any


class PromotionCacheError(Exception):
    """Base exception for promotion cache errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ParseError(PromotionCacheError):
    """Error raised when a source line cannot be turned into a promotion."""

    reason = "invalid_line"

    def __init__(
        self,
        message: str,
        line: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="PARSE_ERROR",
            details=details or {}
        )
        self.line = line
        self.details["reason"] = self.reason
        if line is not None:
            self.details["line"] = line


class MalformedLineError(ParseError):
    """Line does not have the id,price,timestamp shape."""

    reason = "malformed_line"


class InvalidPriceError(ParseError):
    """Price field is not a finite number."""

    reason = "invalid_price"


class InvalidTimestampError(ParseError):
    """Expiration timestamp does not match the expected layout."""

    reason = "invalid_timestamp"


class SourceUnavailableError(PromotionCacheError):
    """Error raised when the snapshot file cannot be opened."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="SOURCE_UNAVAILABLE",
            details=details or {}
        )
        self.path = path

        if path:
            self.details["path"] = path


class SourceInterruptedError(PromotionCacheError):
    """Error raised when reading the snapshot fails part way through."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        lines_read: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="SOURCE_INTERRUPTED",
            details=details or {}
        )
        self.path = path
        self.lines_read = lines_read

        if path:
            self.details["path"] = path
        if lines_read is not None:
            self.details["lines_read"] = lines_read


class StorageError(PromotionCacheError):
    """Error raised when store operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        key: Optional[str] = None,
        error_code: str = "STORAGE_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            details=details or {}
        )
        self.operation = operation
        self.key = key

        if operation:
            self.details["operation"] = operation
        if key:
            self.details["key"] = key


class StoreWriteError(StorageError):
    """Error raised when a single store write fails."""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            operation="set",
            key=key,
            error_code="STORE_WRITE_ERROR",
            details=details
        )


class RebuildAlreadyInProgressError(PromotionCacheError):
    """Error raised when a rebuild is triggered while another one runs."""

    def __init__(
        self,
        message: str = "A rebuild is already in progress",
        state: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="REBUILD_IN_PROGRESS",
            details=details or {}
        )
        self.state = state

        if state:
            self.details["state"] = state


class LookupNotFoundError(PromotionCacheError):
    """No promotion with the requested id exists in the current generation."""

    def __init__(self, promotion_id: str):
        super().__init__(
            message=f"Promotion {promotion_id!r} not found",
            error_code="NOT_FOUND",
            details={"id": promotion_id}
        )
        self.promotion_id = promotion_id


class RebuildInProgressError(PromotionCacheError):
    """Lookup waited too long for an active rebuild to finish."""

    retryable = True

    def __init__(
        self,
        promotion_id: str,
        timeout_seconds: float,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=f"Rebuild still in progress after {timeout_seconds}s",
            error_code="LOOKUP_TIMEOUT",
            details=details or {}
        )
        self.promotion_id = promotion_id
        self.timeout_seconds = timeout_seconds
        self.details["id"] = promotion_id
        self.details["timeout_seconds"] = timeout_seconds


class ConfigurationError(PromotionCacheError):
    """Error raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            details=details or {}
        )
        self.config_key = config_key
        self.config_value = config_value

        if config_key:
            self.details["config_key"] = config_key
        if config_value is not None:
            self.details["config_value"] = str(config_value)
