"""Caller-facing operations over an explicit selection context.

A ``BridgeSession`` owns the list of currently synced databases. Each
dispatch layer (CLI, RPC server, tests) holds its own session instead of
sharing a process-wide selection, so concurrently issued calls from
different callers do not see each other's syncs. Within one session the most
recently *completed* sync wins.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from jsonschema import Draft202012Validator

from sqlite_bridge.config import BridgeConfig
from sqlite_bridge.db.cache import ConnectionCache
from sqlite_bridge.db.query import DEFAULT_READ_LIMIT, QueryService
from sqlite_bridge.errors import AmbiguousSelectionError, BridgeError, NoSelectionError
from sqlite_bridge.locator import DatabaseLocator
from sqlite_bridge.models import PLATFORMS, DeviceLocation, SyncedDatabase, SyncReport
from sqlite_bridge.runtime.android.controller import AdbController
from sqlite_bridge.runtime.android.scanner import AndroidScanner
from sqlite_bridge.runtime.ios.scanner import IosScanner
from sqlite_bridge.runtime.ios.simctl import SimctlController
from sqlite_bridge.runtime.shell import ProcessExecutor
from sqlite_bridge.sync import SyncCoordinator

logger = logging.getLogger(__name__)

_DB_NAME = {"type": "string", "description": "Database file name or glob (e.g. '*.db')."}
_BUNDLE_ID = {"type": "string", "description": "(Android only) application package id."}
_PLATFORM = {"type": "string", "description": "Optional. Explicitly target 'ios' or 'android'."}


def _object_schema(
    properties: Dict[str, Any], required: List[str] | None = None
) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": list(required or []),
    }


TOOL_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "list_databases": _object_schema({"bundleId": _BUNDLE_ID, "platform": _PLATFORM}),
    "sync_database": _object_schema(
        {"dbName": _DB_NAME, "bundleId": _BUNDLE_ID, "platform": _PLATFORM}
    ),
    "inspect_schema": _object_schema({"dbName": _DB_NAME, "platform": _PLATFORM}),
    "read_table_contents": _object_schema(
        {
            "tableName": {"type": "string", "minLength": 1},
            "limit": {"type": "integer", "minimum": 1},
            "dbName": _DB_NAME,
            "platform": _PLATFORM,
        },
        ["tableName"],
    ),
    "query_db": _object_schema(
        {
            "sql": {"type": "string", "minLength": 1},
            "params": {
                "type": "array",
                "items": {"type": ["string", "number", "boolean", "null"]},
            },
            "dbName": _DB_NAME,
            "platform": _PLATFORM,
        },
        ["sql"],
    ),
}


class InvalidRequestError(BridgeError):
    pass


def validate_request(tool: str, args: Mapping[str, Any] | None) -> Dict[str, Any]:
    schema = TOOL_SCHEMAS.get(tool)
    if schema is None:
        raise InvalidRequestError(f"Unknown tool: {tool}")
    payload = dict(args or {})
    errors = sorted(Draft202012Validator(schema).iter_errors(payload), key=lambda e: list(e.path))
    if errors:
        first = errors[0]
        where = "/".join(str(p) for p in first.path) or "<root>"
        raise InvalidRequestError(f"Invalid arguments for {tool} at {where}: {first.message}")
    return payload


def clean_platform(raw: Any) -> Optional[str]:
    """Normalize a platform hint; garbage means "try both"."""

    if not raw:
        return None
    cleaned = str(raw).replace("'", "").replace('"', "").strip().lower()
    return cleaned if cleaned in PLATFORMS else None


@dataclass
class ToolResponse:
    text: str
    is_error: bool = False
    data: Any = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"content": [{"type": "text", "text": self.text}]}
        if self.is_error:
            out["isError"] = True
        return out


def _dumps(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


class BridgeSession:
    def __init__(
        self,
        *,
        config: BridgeConfig,
        locator: DatabaseLocator,
        coordinator: SyncCoordinator,
        cache: ConnectionCache,
        queries: QueryService,
    ) -> None:
        self.config = config
        self.locator = locator
        self.coordinator = coordinator
        self.cache = cache
        self.queries = queries
        self.active: List[SyncedDatabase] = []
        self.last_report: Optional[SyncReport] = None

    # ------------------------------ Operations ------------------------------

    async def list_databases(
        self, bundle_id: Optional[str] = None, platform: Optional[str] = None
    ) -> List[DeviceLocation]:
        return await self.locator.discover(bundle_id or self.config.default_bundle_id, platform)

    async def sync(
        self,
        db_name: Optional[str] = None,
        bundle_id: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> SyncReport:
        report = await self.coordinator.sync(
            db_name or self.config.default_db_name,
            bundle_id or self.config.default_bundle_id,
            platform,
        )
        self.active = list(report.databases)
        self.last_report = report
        return report

    async def ensure_selected(
        self, db_name: Optional[str] = None, platform: Optional[str] = None
    ) -> SyncedDatabase:
        if not self.active:
            await self.sync(db_name, None, platform)

        candidates = self.active
        if platform:
            candidates = [c for c in candidates if c.platform == platform]
        if db_name:
            candidates = [c for c in candidates if c.db_name == db_name]

        if len(candidates) == 1:
            return candidates[0]
        if not candidates:
            raise NoSelectionError(
                "No synced databases match the criteria "
                f"(platform: {platform or 'any'}, dbName: {db_name or 'any'}). "
                "Try calling sync_database first."
            )
        raise AmbiguousSelectionError([f"[{c.platform}] {c.db_name}" for c in candidates])

    async def close(self) -> None:
        await self.cache.close_all()

    # ------------------------------- Dispatch -------------------------------

    async def dispatch(self, tool: str, args: Mapping[str, Any] | None = None) -> ToolResponse:
        """Run one tool call; failures become error-flagged responses."""

        try:
            payload = validate_request(tool, args)
            return await self._dispatch(tool, payload)
        except (BridgeError, sqlite3.Error) as e:
            logger.debug("Tool %s failed: %s", tool, e)
            return ToolResponse(text=f"Error: {e}", is_error=True)
        except Exception as e:
            logger.error("Unexpected failure in tool %s", tool, exc_info=True)
            return ToolResponse(text=f"Error: {type(e).__name__}: {e}", is_error=True)

    async def _dispatch(self, tool: str, args: Dict[str, Any]) -> ToolResponse:
        platform = clean_platform(args.get("platform"))
        db_name = args.get("dbName")

        if tool == "list_databases":
            locations = await self.list_databases(args.get("bundleId"), platform)
            data = [loc.to_dict() for loc in locations]
            return ToolResponse(text=_dumps(data), data=data)

        if tool == "sync_database":
            report = await self.sync(db_name, args.get("bundleId"), platform)
            lines = ["Successfully synced databases:"]
            for db in report.databases:
                lines.append(f"- Platform: {db.platform} | DB: {db.db_name}")
                lines.append(f"  Path: {db.local_path}")
            if report.degraded:
                lines.append("Some best-effort steps did not succeed:")
                for step in report.steps:
                    if step.attempted and not step.succeeded:
                        lines.append(f"- {step.db_name}: {step.name} ({step.detail})")
            return ToolResponse(text="\n".join(lines) + "\n", data=report.to_dict())

        active = await self.ensure_selected(db_name, platform)
        header = f"[Active Platform: {active.platform} | DB: {active.db_name}"

        if tool == "inspect_schema":
            schema = await self.queries.inspect_schema(active.local_path)
            return ToolResponse(text=f"{header}]\n{_dumps(schema)}", data=schema)

        if tool == "read_table_contents":
            table = args["tableName"]
            limit = int(args.get("limit") or DEFAULT_READ_LIMIT)
            rows = await self.queries.read_table(active.local_path, table, limit)
            return ToolResponse(
                text=f"{header} | Table: {table} | Limit: {limit}]\n{_dumps(rows)}", data=rows
            )

        # query_db
        rows = await self.queries.query(active.local_path, args["sql"], args.get("params") or [])
        return ToolResponse(text=f"{header}]\n{_dumps(rows)}", data=rows)


def build_session(
    config: BridgeConfig, *, executor: ProcessExecutor | None = None
) -> BridgeSession:
    executor = executor or ProcessExecutor()
    adb = AdbController(executor=executor, adb_path=config.adb_path, serial=config.android_serial)
    simctl = SimctlController(executor=executor, xcrun_path=config.xcrun_path)
    locator = DatabaseLocator(ios=IosScanner(simctl=simctl), android=AndroidScanner(adb=adb))
    cache = ConnectionCache()
    coordinator = SyncCoordinator(
        locator=locator, adb=adb, staging_root=config.staging_root, cache=cache
    )
    queries = QueryService(cache=cache, read_only=config.read_only)
    return BridgeSession(
        config=config, locator=locator, coordinator=coordinator, cache=cache, queries=queries
    )
