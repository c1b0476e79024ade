"""Named leases for mutually exclusive recurring jobs.

A lease is held for at most `max_hold` (so a hung run cannot block the job
forever) and, once released, stays held until `min_hold` has elapsed since
it was taken (so fast repeats on other instances do not re-run the job).

Backend follows STORE_BACKEND: memory (default) or postgres.
"""

from __future__ import annotations

import os
import socket
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Protocol

from carrental.infra.db import txn
from carrental.infra.repositories.leases_repository import release_lease, try_acquire_lease
from carrental.infra.time import utc_now


class LeaseLock(Protocol):
    """Named lease contract."""

    def acquire(self, name: str, *, min_hold: timedelta, max_hold: timedelta) -> bool: ...

    def release(self, name: str, *, min_hold: timedelta) -> None: ...


def default_holder_id() -> str:
    """Identify this process for lease ownership (host:pid:random)."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


@dataclass
class _LeaseState:
    holder: str
    locked_at: datetime
    locked_until: datetime


class InMemoryLeaseLock:
    """Process-local lease table. Shared by every caller holding this object."""

    def __init__(
        self,
        holder: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.holder = holder or default_holder_id()
        self._clock = clock
        self._leases: dict[str, _LeaseState] = {}
        self._lock = threading.Lock()

    def acquire(self, name: str, *, min_hold: timedelta, max_hold: timedelta) -> bool:
        now = self._clock()
        with self._lock:
            current = self._leases.get(name)
            if current is not None and current.locked_until > now:
                return False
            self._leases[name] = _LeaseState(
                holder=self.holder,
                locked_at=now,
                locked_until=now + max_hold,
            )
            return True

    def release(self, name: str, *, min_hold: timedelta) -> None:
        now = self._clock()
        with self._lock:
            current = self._leases.get(name)
            if current is None or current.holder != self.holder:
                return
            current.locked_until = max(current.locked_at + min_hold, now)


class PostgresLeaseLock:
    """Lease table in Postgres (scheduler_leases), shared by all instances."""

    def __init__(self, holder: str | None = None) -> None:
        self.holder = holder or default_holder_id()

    def acquire(self, name: str, *, min_hold: timedelta, max_hold: timedelta) -> bool:
        with txn() as cur:
            return try_acquire_lease(cur, name=name, holder=self.holder, max_hold=max_hold)

    def release(self, name: str, *, min_hold: timedelta) -> None:
        with txn() as cur:
            release_lease(cur, name=name, holder=self.holder, min_hold=min_hold)


_lease_lock: LeaseLock | None = None
_singleton_lock = threading.Lock()


def get_lease_lock() -> LeaseLock:
    """Get the process-wide lease lock for the configured backend."""
    global _lease_lock
    with _singleton_lock:
        if _lease_lock is None:
            if os.environ.get("STORE_BACKEND", "memory") == "postgres":
                _lease_lock = PostgresLeaseLock()
            else:
                _lease_lock = InMemoryLeaseLock()
        return _lease_lock


def reset_lease_lock() -> None:
    """Drop the process-wide lease lock (useful for testing)."""
    global _lease_lock
    with _singleton_lock:
        _lease_lock = None
