"""Idle-evicting cache of SQLite snapshot connections.

One connection per absolute path. Each connection is an in-memory copy of the
staged file taken at open time, so queries see a point-in-time snapshot and
never hold locks on the simulator's live files.

Eviction removes the entry from the map before closing the handle: an
``acquire`` racing the idle timer either gets the live handle or opens a new
one, never a handle that is being closed. Handles leased to a running query
are closed when the last lease is released.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, Optional

logger = logging.getLogger(__name__)

IDLE_TIMEOUT_S = 60.0


def open_snapshot(path: str) -> sqlite3.Connection:
    """Copy ``path`` into an in-memory database usable from worker threads."""

    uri = Path(path).resolve().as_uri() + "?mode=ro"
    src = sqlite3.connect(uri, uri=True)
    try:
        dst = sqlite3.connect(":memory:", check_same_thread=False)
        try:
            src.backup(dst)
        except sqlite3.Error:
            dst.close()
            raise
    finally:
        src.close()
    return dst


@dataclass
class CachedConnection:
    handle: sqlite3.Connection
    path: str
    last_used_at: float
    timer: Optional[asyncio.TimerHandle] = None
    leases: int = 0
    evicted: bool = False
    closed: bool = False


class ConnectionCache:
    def __init__(
        self,
        *,
        idle_timeout_s: float = IDLE_TIMEOUT_S,
        opener: Callable[[str], sqlite3.Connection] = open_snapshot,
    ) -> None:
        self._idle_timeout_s = float(idle_timeout_s)
        self._opener = opener
        self._entries: Dict[str, CachedConnection] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and self._key(path) in self._entries

    @staticmethod
    def _key(path: str) -> str:
        return os.path.abspath(path)

    def _touch(self, entry: CachedConnection) -> None:
        entry.last_used_at = time.monotonic()
        if entry.timer is not None:
            entry.timer.cancel()
        loop = asyncio.get_running_loop()
        entry.timer = loop.call_later(self._idle_timeout_s, self._on_idle, entry)

    def _on_idle(self, entry: CachedConnection) -> None:
        if self._entries.get(entry.path) is entry:
            self._evict_entry(entry)
            logger.debug("Closed idle DB connection: %s", entry.path)

    def _close(self, entry: CachedConnection) -> None:
        if entry.closed:
            return
        entry.closed = True
        try:
            entry.handle.close()
        except Exception as e:
            logger.warning("Error closing DB: %s", entry.path, extra={"meta": {"error": str(e)}})

    def _evict_entry(self, entry: CachedConnection) -> None:
        # Unregister first so new acquires cannot see the handle.
        if self._entries.get(entry.path) is entry:
            del self._entries[entry.path]
        entry.evicted = True
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        if entry.leases == 0:
            self._close(entry)

    async def _acquire_entry(self, path: str) -> CachedConnection:
        key = self._key(path)
        existing = self._entries.get(key)
        if existing is not None:
            self._touch(existing)
            return existing

        handle = await asyncio.to_thread(self._opener, key)

        existing = self._entries.get(key)
        if existing is not None:
            # Another acquire registered this path while we were opening.
            handle.close()
            self._touch(existing)
            return existing

        entry = CachedConnection(handle=handle, path=key, last_used_at=time.monotonic())
        self._entries[key] = entry
        self._touch(entry)
        logger.debug("Opened DB connection: %s", key)
        return entry

    async def acquire(self, path: str) -> sqlite3.Connection:
        entry = await self._acquire_entry(path)
        return entry.handle

    @contextlib.asynccontextmanager
    async def lease(self, path: str) -> AsyncIterator[sqlite3.Connection]:
        """Acquire a handle that stays open until the block exits."""

        entry = await self._acquire_entry(path)
        entry.leases += 1
        try:
            yield entry.handle
        finally:
            entry.leases -= 1
            if entry.evicted and entry.leases == 0:
                self._close(entry)

    def evict(self, path: str) -> bool:
        entry = self._entries.get(self._key(path))
        if entry is None:
            return False
        self._evict_entry(entry)
        return True

    async def close_all(self) -> int:
        entries = list(self._entries.values())
        for entry in entries:
            self._evict_entry(entry)
        logger.info("Closed %d cached DB connection(s)", len(entries))
        return len(entries)
