"""Locks that serialize check-then-write sequences on contended booking keys."""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from uuid import UUID


def booking_keys(
    resource_ids: Iterable[UUID] = (),
    team_ids: Iterable[UUID] = (),
    location_id: UUID | None = None,
    event_id: UUID | None = None,
) -> list[str]:
    """Return the sorted lock keys covering a booking footprint.

    An update also holds its own `event:<id>` key, so two updates of one
    event never interleave.
    """
    keys = {f"resource:{rid}" for rid in resource_ids}
    keys.update(f"team:{tid}" for tid in team_ids)
    if location_id is not None:
        keys.add(f"location:{location_id}")
    if event_id is not None:
        keys.add(f"event:{event_id}")
    return sorted(keys)


def advisory_key(key: str) -> int:
    """Map a lock key onto the signed 64-bit space used by pg_advisory locks."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class KeyedLock:
    """One re-usable mutex per key, created on demand and dropped when idle.

    Keys are always acquired in sorted order so two holders of overlapping
    key sets cannot deadlock.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._waiters: dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
            return lock

    def _release(self, key: str) -> None:
        with self._guard:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[None]:
        ordered = sorted(set(keys))
        acquired: list[tuple[str, threading.Lock]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._release(key)
                    raise
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._release(key)

    def is_held(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
            return lock is not None and lock.locked()
