"""
Record Store - Abstract key-value persistence for requests and nonces
=====================================================================

Records are plain JSON-compatible dicts grouped by namespace. Every
mutating call replaces a whole record, so a reader never sees a
half-written one. Callers that need read-modify-write atomicity take
``lock(namespace, key)``, a re-entrant lock scoped to one record.
"""

import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional


class RecordStore(ABC):
    """Interface every record backend implements."""

    @abstractmethod
    def get(self, namespace: str, key: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the record, or None"""

    @abstractmethod
    def put(self, namespace: str, key: str, record: Dict[str, Any]) -> None:
        """Insert or fully replace a record"""

    @abstractmethod
    def delete(self, namespace: str, key: str) -> bool:
        """Remove a record. Returns False when it did not exist"""

    @abstractmethod
    def values(self, namespace: str) -> List[Dict[str, Any]]:
        """Copies of every record in the namespace, in insertion order"""

    @abstractmethod
    def lock(self, namespace: str, key: str):
        """Context manager serializing access to one record"""

    def update(
        self,
        namespace: str,
        key: str,
        fn: Callable[[Dict[str, Any]], Dict[str, Any]]
    ) -> Optional[Dict[str, Any]]:
        """
        Atomically apply ``fn`` to a copy of the record and store the result

        Returns None (and stores nothing) when the record does not exist.
        If ``fn`` raises, the stored record is left untouched.
        """
        with self.lock(namespace, key):
            current = self.get(namespace, key)
            if current is None:
                return None
            updated = fn(current)
            self.put(namespace, key, updated)
            return copy.deepcopy(updated)


class _KeyLock:
    """Re-entrant lock for one record, dropped once nobody holds or awaits it"""

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class InMemoryRecordStore(RecordStore):
    """Thread-safe in-process store. Used by tests and single-node deployments."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._guard = threading.Lock()
        self._locks: Dict[tuple, _KeyLock] = {}

    def get(self, namespace: str, key: str) -> Optional[Dict[str, Any]]:
        with self._guard:
            record = self._data.get(namespace, {}).get(key)
            return copy.deepcopy(record) if record is not None else None

    def put(self, namespace: str, key: str, record: Dict[str, Any]) -> None:
        snapshot = copy.deepcopy(record)
        with self._guard:
            self._data.setdefault(namespace, {})[key] = snapshot

    def delete(self, namespace: str, key: str) -> bool:
        with self._guard:
            bucket = self._data.get(namespace, {})
            if key not in bucket:
                return False
            del bucket[key]
            return True

    def values(self, namespace: str) -> List[Dict[str, Any]]:
        with self._guard:
            return [copy.deepcopy(r) for r in self._data.get(namespace, {}).values()]

    @contextmanager
    def lock(self, namespace: str, key: str) -> Iterator[None]:
        slot = (namespace, key)
        with self._guard:
            key_lock = self._locks.get(slot)
            if key_lock is None:
                key_lock = self._locks[slot] = _KeyLock()
            key_lock.users += 1
        try:
            with key_lock.lock:
                yield
        finally:
            with self._guard:
                key_lock.users -= 1
                if not key_lock.users:
                    del self._locks[slot]

    def count(self, namespace: str) -> int:
        with self._guard:
            return len(self._data.get(namespace, {}))
