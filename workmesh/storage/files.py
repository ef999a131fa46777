"""
JSON-file store: one directory per namespace, one file per record.
"""
import json
import os
import tempfile
import threading
from typing import List, Optional
from urllib.parse import quote, unquote

from .base import KeyValueStore, Record
from .file_lock import file_lock


class JsonFileStore(KeyValueStore):
    """
    Persists records under ``root/<namespace>/<quoted key>.json``.
    Writes go through a temp file and an atomic rename.
    """

    def __init__(self, root: str, lock_timeout: float = 10.0):
        self.root = root
        self.lock_timeout = lock_timeout
        self._lock = threading.RLock()
        os.makedirs(root, exist_ok=True)

    def _dir(self, namespace: str) -> str:
        path = os.path.join(self.root, namespace)
        os.makedirs(path, exist_ok=True)
        return path

    def _path(self, namespace: str, key: str) -> str:
        return os.path.join(self._dir(namespace), quote(key, safe="") + ".json")

    def _write(self, path: str, record: Record) -> None:
        directory = os.path.dirname(path)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(record, fh, sort_keys=True)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def put(self, namespace: str, key: str, record: Record) -> None:
        path = self._path(namespace, key)
        with self._lock, file_lock(self._dir(namespace), self.lock_timeout):
            self._write(path, record)

    def append(self, namespace: str, key: str, record: Record) -> None:
        path = self._path(namespace, key)
        with self._lock, file_lock(self._dir(namespace), self.lock_timeout):
            if os.path.exists(path):
                raise KeyError(f"Record {namespace}/{key} already exists")
            self._write(path, record)

    def get(self, namespace: str, key: str) -> Optional[Record]:
        path = self._path(namespace, key)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)

    def delete(self, namespace: str, key: str) -> bool:
        path = self._path(namespace, key)
        with self._lock, file_lock(self._dir(namespace), self.lock_timeout):
            try:
                os.remove(path)
                return True
            except FileNotFoundError:
                return False

    def keys(self, namespace: str) -> List[str]:
        names = os.listdir(self._dir(namespace))
        return sorted(unquote(name[:-5]) for name in names if name.endswith(".json"))
