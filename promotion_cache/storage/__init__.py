"""
Storage abstractions for the promotion cache.

Provides the async Redis client used as the key-value store.
"""

from .redis import RedisClient, RedisConfig

__all__ = [
    "RedisClient",
    "RedisConfig",
]
