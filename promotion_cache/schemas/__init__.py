"""
Schema definitions for cached records.
"""

from .models import Promotion, PRICE_QUANTUM, EXPIRATION_FORMAT

__all__ = [
    "Promotion",
    "PRICE_QUANTUM",
    "EXPIRATION_FORMAT",
]
