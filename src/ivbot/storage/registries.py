"""Candidate and preference registries over the durable key-value store.

CandidateRegistry:   host -> ordered, duplicate-free list of rhash tokens
PreferenceRegistry:  per-user-per-host key -> pinned rhash token

Every mutation is committed to disk before it becomes visible, so a failed
mutation changes nothing and a concurrent refresh cannot undo a finished
one. Store failures surface as ``StoreError`` subclasses; callers decide
how they degrade.
"""
from __future__ import annotations

import logging

from ivbot.storage.persistence import JsonMapStore, StoreReadError

log = logging.getLogger(__name__)


class CandidateRegistry:
    def __init__(self, store: JsonMapStore) -> None:
        self._store = store

    def append_if_absent(self, host: str, token: str) -> bool:
        """Append *token* to the host's list unless already present.

        Returns True when the list changed. The read-modify-write is
        serialized per host.
        """
        with self._store.locks.hold(host):
            current = self._read_list(host)
            if token in current:
                return False
            current.append(token)
            self._store.commit_write(host, current)
        log.info("Registered new rhash for host=%s (now %d known)", host, len(current))
        return True

    def list(self, host: str) -> list[str]:
        return self._read_list(host)

    def refresh(self) -> bool:
        """Reload from disk. Returns False (and keeps the current view) on failure."""
        try:
            self._store.reload()
        except StoreReadError:
            log.warning("Unable to load the latest data from %s", self._store.name, exc_info=True)
            return False
        return True

    def _read_list(self, host: str) -> list[str]:
        value = self._store.read(host)
        if value is None:
            return []
        if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
            raise StoreReadError(f"Malformed candidate list for host {host!r}")
        return value


class PreferenceRegistry:
    def __init__(self, store: JsonMapStore) -> None:
        self._store = store

    def get(self, key: str) -> str | None:
        value = self._store.read(key)
        if value is None:
            return None
        if not isinstance(value, str):
            raise StoreReadError(f"Malformed preference entry for key {key[:6]}...")
        return value

    def set(self, key: str, token: str) -> None:
        with self._store.locks.hold(key):
            self._store.commit_write(key, token)

    def delete(self, key: str) -> str | None:
        """Remove the pinned token; returns it, or None when there was none."""
        with self._store.locks.hold(key):
            removed = self._store.commit_delete(key)
        return removed if isinstance(removed, str) else None
