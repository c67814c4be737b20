"""State stores for the in-memory rate limiters.

Limiters never touch a module-level dict directly; they receive a
RateLimitStore so tests can run in isolation and another storage can be
swapped in without changing callers.
"""

import threading
import zlib
from abc import ABC, abstractmethod
from typing import Any, ContextManager, Dict, List, Optional, Tuple


class KeyedLock:
    """Fixed pool of re-entrant locks selected by key.

    Two calls for the same key always get the same lock, while unrelated
    keys are spread across shards and rarely contend.
    """

    def __init__(self, shards: int = 64):
        if shards < 1:
            raise ValueError("shards must be at least 1")
        self._locks = [threading.RLock() for _ in range(shards)]

    def __call__(self, key: str) -> threading.RLock:
        # crc32 is stable across processes, unlike hash() on str
        return self._locks[zlib.crc32(key.encode("utf-8")) % len(self._locks)]


class RateLimitStore(ABC):
    """Abstract key/value store holding per-identifier limiter state."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the state stored under key, or None."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store state under key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key if present."""

    @abstractmethod
    def items(self) -> List[Tuple[str, Any]]:
        """Return a snapshot of all entries, safe to iterate while mutating."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every entry."""

    @abstractmethod
    def lock(self, key: str) -> ContextManager:
        """Return a context manager serialising read-modify-write on key."""

    @abstractmethod
    def __len__(self) -> int:
        pass


class InMemoryStore(RateLimitStore):
    """Process-local store backed by a dict and sharded locks.

    State is lost on restart and is not shared between instances.
    """

    def __init__(self, shards: int = 64):
        self._data: Dict[str, Any] = {}
        self._locks = KeyedLock(shards)

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def items(self) -> List[Tuple[str, Any]]:
        return list(self._data.copy().items())

    def clear(self) -> None:
        self._data.clear()

    def lock(self, key: str) -> threading.RLock:
        return self._locks(key)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data
