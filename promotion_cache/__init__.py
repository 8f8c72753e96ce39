"""
Promotion cache service.

Keeps a Redis cache of promotion records rebuilt periodically
from a flat-file snapshot and serves point lookups over HTTP.
"""

__version__ = "1.0.0"
