"""Bounded queries and schema introspection over cached snapshot connections."""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import sqlite3
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from sqlite_bridge.db.cache import ConnectionCache
from sqlite_bridge.errors import (
    QueryParameterError,
    QueryTimeoutError,
    ReadOnlyViolationError,
)

logger = logging.getLogger(__name__)

QUERY_TIMEOUT_S = 30.0
DEFAULT_READ_LIMIT = 100
READ_ONLY_KEYWORDS = frozenset({"SELECT", "PRAGMA", "EXPLAIN", "WITH"})

_COMMENT_RE = re.compile(r"(--[^\n]*(\n|$))|(/\*.*?\*/)", re.DOTALL)
_KEYWORD_RE = re.compile(r"[A-Za-z]+")

T = TypeVar("T")


def leading_keyword(sql: str) -> str:
    text = _COMMENT_RE.sub(" ", sql or "").lstrip(" \t\r\n(;")
    m = _KEYWORD_RE.match(text)
    return m.group(0).upper() if m else ""


def quote_identifier(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'


def _jsonify_sql_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, memoryview):
        value = value.tobytes()
    if isinstance(value, (bytes, bytearray)):
        return {"__bytes_b64__": base64.b64encode(bytes(value)).decode("ascii")}
    return str(value)


def _fetch_dicts(
    conn: sqlite3.Connection, sql: str, params: Sequence[Any] = ()
) -> List[Dict[str, Any]]:
    try:
        cur = conn.execute(sql, tuple(params))
    except (OverflowError, ValueError) as e:
        raise QueryParameterError(f"Cannot bind query parameters: {e}") from e
    try:
        columns = [str(d[0]) for d in cur.description] if cur.description else []
        return [
            {columns[i]: _jsonify_sql_value(v) for i, v in enumerate(row)} for row in cur.fetchall()
        ]
    finally:
        cur.close()


def _schema(conn: sqlite3.Connection) -> Dict[str, Dict[str, Any]]:
    tables = [
        str(r[0])
        for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
    ]
    info: Dict[str, Dict[str, Any]] = {}
    for table in tables:
        columns = _fetch_dicts(conn, f"PRAGMA table_info({quote_identifier(table)})")
        row = conn.execute(
            "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (table,)
        ).fetchone()
        info[table] = {"columns": columns, "createSql": row[0] if row else None}
    return info


async def _settle(fut: "asyncio.Future[Any]") -> None:
    """Wait for an interrupted statement to unwind before its lease is released.

    The statement's own outcome (usually ``sqlite3.OperationalError: interrupted``)
    is discarded; the caller raises its own error.
    """

    await asyncio.wait([fut])
    if not fut.cancelled():
        fut.exception()


class QueryService:
    def __init__(
        self,
        *,
        cache: ConnectionCache,
        timeout_s: float = QUERY_TIMEOUT_S,
        read_only: bool = False,
    ) -> None:
        self._cache = cache
        self._timeout_s = float(timeout_s)
        self._read_only = bool(read_only)

    @property
    def read_only(self) -> bool:
        return self._read_only

    def check_read_only(self, sql: str) -> None:
        if not self._read_only:
            return
        keyword = leading_keyword(sql)
        if keyword not in READ_ONLY_KEYWORDS:
            raise ReadOnlyViolationError(
                f"Read-only mode: '{keyword or '<empty>'}' statements are not allowed. "
                f"Allowed: {', '.join(sorted(READ_ONLY_KEYWORDS))}"
            )

    async def _run_bounded(
        self, path: str, fn: Callable[[sqlite3.Connection], T], label: str
    ) -> T:
        async with self._cache.lease(path) as conn:
            fut = asyncio.ensure_future(asyncio.to_thread(fn, conn))
            try:
                return await asyncio.wait_for(asyncio.shield(fut), timeout=self._timeout_s)
            except asyncio.TimeoutError:
                conn.interrupt()
                await _settle(fut)
                logger.warning("Query timed out after %.1fs: %s", self._timeout_s, label)
                raise QueryTimeoutError(self._timeout_s, label) from None
            except asyncio.CancelledError:
                conn.interrupt()
                await _settle(fut)
                logger.debug("Query cancelled: %s", label)
                raise

    async def query(
        self, path: str, sql: str, params: Optional[Sequence[Any]] = None
    ) -> List[Dict[str, Any]]:
        self.check_read_only(sql)
        bound = list(params or [])
        return await self._run_bounded(path, lambda c: _fetch_dicts(c, sql, bound), sql[:80])

    async def read_table(
        self, path: str, table: str, limit: int = DEFAULT_READ_LIMIT
    ) -> List[Dict[str, Any]]:
        sql = f"SELECT * FROM {quote_identifier(table)} LIMIT ?"
        return await self.query(path, sql, [int(limit)])

    async def inspect_schema(self, path: str) -> Dict[str, Dict[str, Any]]:
        return await self._run_bounded(path, _schema, "inspect_schema")
