"""
Per-identity mutual exclusion for container lifecycle operations.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Generator

from docker_startup.domain.errors import EngineTimeout
from docker_startup.observability import ACTIVE_IDENTITY_LOCKS

logger = logging.getLogger("docker-startup")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class LockRegistry:
    """Registry of locks keyed by container identity.

    Entries are created on first use and reference-counted by holders and
    waiters; an entry is dropped as soon as nobody holds or waits on it, so
    the registry only grows with the number of identities in flight.
    Operations on distinct identities never wait on each other: the
    registry's own lock is held only to look up or release entries.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def _checkout(self, identity: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(identity)
            if entry is None:
                entry = self._entries[identity] = _Entry()
            entry.users += 1
            ACTIVE_IDENTITY_LOCKS.set(len(self._entries))
            return entry

    def _checkin(self, identity: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(identity) is entry:
                del self._entries[identity]
            ACTIVE_IDENTITY_LOCKS.set(len(self._entries))

    @contextmanager
    def hold(self, identity: str, timeout: float | None = None) -> Generator[None, None, None]:
        """
        Hold the lock for *identity* for the duration of the ``with`` block.

        Args:
            identity: Container identity
            timeout: Seconds to wait for the lock (None waits forever)

        Raises:
            EngineTimeout: If the lock could not be acquired in time
        """
        entry = self._checkout(identity)
        try:
            acquired = entry.lock.acquire(timeout=-1 if timeout is None else timeout)
            if not acquired:
                raise EngineTimeout(
                    f"Timed out after {timeout}s waiting for lifecycle lock on {identity}",
                    identity=identity,
                )
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(identity, entry)

    def active(self) -> list[str]:
        """Identities that currently have a holder or waiter."""
        with self._guard:
            return sorted(self._entries)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
