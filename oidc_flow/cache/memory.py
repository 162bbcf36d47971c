"""
In-process TTL cache for key sets.
"""

import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple


class KeySetCache(Protocol):
    """Cache collaborator injected into the JWKS client."""

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryCache:
    """Thread-safe dict cache with per-entry expiry.

    ``set`` replaces an entry in one step, so readers see either the old key
    set or the new one.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None

            return value

    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl, dict(value))

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
