"""
Utility modules for the promotion cache.

Provides common utilities for:
- Structured logging
- Error handling
"""

from .logging import setup_logging, get_logger
from .errors import (
    PromotionCacheError,
    ParseError,
    MalformedLineError,
    InvalidPriceError,
    InvalidTimestampError,
    SourceUnavailableError,
    SourceInterruptedError,
    StorageError,
    StoreWriteError,
    RebuildAlreadyInProgressError,
    LookupNotFoundError,
    RebuildInProgressError,
    ConfigurationError,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "PromotionCacheError",
    "ParseError",
    "MalformedLineError",
    "InvalidPriceError",
    "InvalidTimestampError",
    "SourceUnavailableError",
    "SourceInterruptedError",
    "StorageError",
    "StoreWriteError",
    "RebuildAlreadyInProgressError",
    "LookupNotFoundError",
    "RebuildInProgressError",
    "ConfigurationError",
]
