"""
Pluggable key-value store used for worker, work item and log batch records.

Records are plain JSON-compatible dicts grouped into namespaces.
"""
import copy
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional, Tuple


Record = Dict[str, Any]


class KeyValueStore(ABC):
    """Minimal store interface. Implementations must be thread-safe."""

    @abstractmethod
    def put(self, namespace: str, key: str, record: Record) -> None:
        """Create or overwrite a record."""

    @abstractmethod
    def get(self, namespace: str, key: str) -> Optional[Record]:
        """Return a copy of the record, or None."""

    @abstractmethod
    def delete(self, namespace: str, key: str) -> bool:
        """Delete a record. Returns False if it did not exist."""

    @abstractmethod
    def keys(self, namespace: str) -> List[str]:
        """List keys in a namespace, sorted."""

    def append(self, namespace: str, key: str, record: Record) -> None:
        """Write a record that must not already exist."""
        if self.get(namespace, key) is not None:
            raise KeyError(f"Record {namespace}/{key} already exists")
        self.put(namespace, key, record)

    def items(self, namespace: str) -> Iterator[Tuple[str, Record]]:
        for key in self.keys(namespace):
            record = self.get(namespace, key)
            if record is not None:
                yield key, record


class InMemoryStore(KeyValueStore):
    """Dictionary-backed store. Useful for tests and ephemeral coordinators."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Record]] = {}
        self._lock = threading.Lock()

    def put(self, namespace: str, key: str, record: Record) -> None:
        with self._lock:
            self._data.setdefault(namespace, {})[key] = copy.deepcopy(record)

    def get(self, namespace: str, key: str) -> Optional[Record]:
        with self._lock:
            record = self._data.get(namespace, {}).get(key)
            return copy.deepcopy(record) if record is not None else None

    def delete(self, namespace: str, key: str) -> bool:
        with self._lock:
            return self._data.get(namespace, {}).pop(key, None) is not None

    def keys(self, namespace: str) -> List[str]:
        with self._lock:
            return sorted(self._data.get(namespace, {}))

    def append(self, namespace: str, key: str, record: Record) -> None:
        with self._lock:
            bucket = self._data.setdefault(namespace, {})
            if key in bucket:
                raise KeyError(f"Record {namespace}/{key} already exists")
            bucket[key] = copy.deepcopy(record)
