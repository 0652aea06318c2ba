"""
Key-value store abstraction.

User records, challenges, trust records and inboxes all go through a
``KeyValueStore`` injected by the composing application, so their
lifecycle is owned by the caller rather than by module-level globals.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, Optional


class KeyValueStore(ABC):
    """Minimal get/put/delete contract."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the value for ``key`` or None."""

    @abstractmethod
    def put(self, key: str, value: Any) -> None:
        """Insert or replace ``key``."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if it existed."""

    @abstractmethod
    def keys(self) -> Iterator[str]:
        """Iterate over stored keys."""

    def put_if_absent(self, key: str, value: Any) -> bool:
        """
        Insert ``key`` only if it is not present.

        Implementations backed by a real database should override this
        with a native conditional insert.

        Returns:
            True if the value was inserted
        """
        if self.get(key) is not None:
            return False
        self.put(key, value)
        return True

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class InMemoryStore(KeyValueStore):
    """Thread-safe dict-backed store."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._data))

    def put_if_absent(self, key: str, value: Any) -> bool:
        with self._lock:
            if key in self._data:
                return False
            self._data[key] = value
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
