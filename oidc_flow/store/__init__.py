"""
Session and transient storage.
"""

from .base import MemoryStore, Store
from .transient import TransientStore

__all__ = [
    "MemoryStore",
    "Store",
    "TransientStore",
]
