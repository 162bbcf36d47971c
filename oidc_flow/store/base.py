"""
Key/value storage contract shared by session and transient storage.
"""

import threading
from typing import Any, Dict, Optional, Protocol


class Store(Protocol):
    """Durable or request-scoped storage reached only through get/set/delete."""

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStore:
    """In-process store, suitable for tests and single-process applications."""

    def __init__(self, namespace: str = "") -> None:
        self.namespace = namespace
        self._data: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        with self._lock:
            return self._data.get(self._key(key), default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[self._key(key)] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(self._key(key), None)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return self._key(key) in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
