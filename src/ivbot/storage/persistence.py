"""File-backed key-value collections.

Each collection is a single JSON object on disk mapping string keys to
JSON values. Reads are served from memory; ``flush`` writes the whole
collection atomically (temp file + rename) and ``reload`` replaces the
in-memory view with what is on disk.

``commit_write`` and ``commit_delete`` are the durable mutations: the new
collection is written to disk first and only then becomes the in-memory
view, all under the store lock. A ``reload`` can therefore never discard a
change that is about to be persisted, and a failed write leaves memory as
it was.

Writers that do read-modify-write on one key must hold ``locks.hold(key)``
so concurrent units of work touching the same key do not lose updates.
Units touching different keys never wait on each other beyond the short
internal lock around the dict and the file write.
"""
from __future__ import annotations

import copy
import json
import logging
import os
import threading
import weakref
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

log = logging.getLogger(__name__)


class StoreError(Exception):
    """The durable store could not complete an operation."""


class StoreReadError(StoreError):
    pass


class StoreWriteError(StoreError):
    pass


class KeyedLocks:
    """One lock per logical key, created on demand.

    Locks are held weakly: a key's lock lives only while some unit of work
    is using it, so the table stays as small as the number of keys in use.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.get(key)
        with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)
class JsonMapStore:
    """A durable ``dict[str, Any]`` persisted as one JSON file."""

    def __init__(self, path: Path, name: str | None = None) -> None:
        self.path = path
        self.name = name or path.stem
        self.locks = KeyedLocks()
        self._lock = threading.RLock()
        self._data: dict[str, Any] = {}

    @classmethod
    def open(cls, path: Path, name: str | None = None) -> JsonMapStore:
        """Load from *path*, starting empty if the file does not exist yet."""
        store = cls(path, name=name)
        store.reload()
        return store

    # ── Reads ────────────────────────────────────────────────────

    def read(self, key: str) -> Any | None:
        """Return a copy of the value stored under *key*, or None."""
        with self._lock:
            value = self._data.get(key)
            return copy.deepcopy(value)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    # ── Mutations ────────────────────────────────────────────────

    def write(self, key: str, value: Any) -> None:
        """Set *key* in memory only; call ``flush`` to persist."""
        self._check(key, value)
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> Any | None:
        """Remove *key* from memory; return the removed value, or None when absent."""
        with self._lock:
            return self._data.pop(key, None)

    def commit_write(self, key: str, value: Any) -> None:
        """Set *key* and persist, or raise ``StoreWriteError`` with nothing changed."""
        self._check(key, value)
        with self._lock:
            data = dict(self._data)
            data[key] = copy.deepcopy(value)
            self._dump(data)
            self._data = data

    def commit_delete(self, key: str) -> Any | None:
        """Remove *key* and persist. Returns the removed value, or None when absent."""
        with self._lock:
            if key not in self._data:
                return None
            data = dict(self._data)
            removed = data.pop(key)
            self._dump(data)
            self._data = data
            return removed

    def _check(self, key: str, value: Any) -> None:
        if not isinstance(key, str) or not key:
            raise StoreWriteError(f"Invalid key for {self.name}: {key!r}")
        try:
            json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StoreWriteError(f"Value for {key!r} is not JSON-serializable") from e

    # ── Durability ───────────────────────────────────────────────

    def flush(self) -> None:
        """Write the whole collection to disk atomically."""
        with self._lock:
            self._dump(self._data)

    def _dump(self, data: dict[str, Any]) -> None:
        payload = json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            raise StoreWriteError(f"Unable to save {self.name} to {self.path}: {e}") from e

    def reload(self) -> None:
        """Replace the in-memory view with the on-disk contents."""
        with self._lock:
            if not self.path.exists():
                self._data = {}
                return
            try:
                with self.path.open("r", encoding="utf-8") as f:
                    data = json.load(f)
            except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
                raise StoreReadError(f"Unable to load {self.name} from {self.path}: {e}") from e
            if not isinstance(data, dict):
                raise StoreReadError(f"{self.path} does not contain a JSON object")
            self._data = data
            log.debug("Loaded %d entries into %s", len(data), self.name)
