"""
Key-set cache backends.
"""

from .memory import KeySetCache, MemoryCache
from .redis_cache import RedisCache

__all__ = [
    "KeySetCache",
    "MemoryCache",
    "RedisCache",
]
