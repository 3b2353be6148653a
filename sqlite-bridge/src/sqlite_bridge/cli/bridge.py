from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from sqlite_bridge.config import BridgeConfig, load_config
from sqlite_bridge.errors import BridgeError
from sqlite_bridge.logging_setup import configure_logging
from sqlite_bridge.session import TOOL_SCHEMAS, BridgeSession, ToolResponse, build_session

logger = logging.getLogger("sqlite_bridge.cli")

_SHELL_HELP = "\n".join(
    [
        "Commands:",
        "  <tool> [json-args]   e.g. query_db {\"sql\": \"SELECT 1\"}",
        "  tools",
        "  quit",
    ]
)


def _add_selection_args(p: argparse.ArgumentParser, *, bundle: bool = False) -> None:
    p.add_argument("--db-name", type=str, default=None, help="Database name or glob (e.g. '*.db').")
    p.add_argument("--platform", choices=["ios", "android"], default=None)
    if bundle:
        p.add_argument("--bundle-id", type=str, default=None, help="(Android) package id.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sqlite-bridge",
        description="Discover, sync and query SQLite databases on iOS Simulators "
        "and Android Emulators.",
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML/JSON config file.")
    parser.add_argument("--log-level", type=str, default=None, help="debug|info|warn|error")
    parser.add_argument(
        "--read-only",
        action="store_true",
        help="Reject statements other than SELECT/PRAGMA/EXPLAIN/WITH.",
    )
    parser.add_argument(
        "--json", action="store_true", help="Print structured JSON instead of tool text."
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List discoverable databases.")
    p_list.add_argument("--bundle-id", type=str, default=None)
    p_list.add_argument("--platform", choices=["ios", "android"], default=None)

    p_sync = sub.add_parser("sync", help="Stage databases matching a name/glob.")
    _add_selection_args(p_sync, bundle=True)

    p_schema = sub.add_parser("schema", help="Show tables, columns and CREATE statements.")
    _add_selection_args(p_schema)

    p_read = sub.add_parser("read", help="Read rows from a table.")
    p_read.add_argument("table", type=str)
    p_read.add_argument("--limit", type=int, default=100)
    _add_selection_args(p_read)

    p_query = sub.add_parser("query", help="Run a SQL statement.")
    p_query.add_argument("sql", type=str)
    p_query.add_argument(
        "--param",
        dest="params",
        action="append",
        default=[],
        help="Bound parameter (JSON literal, repeatable).",
    )
    _add_selection_args(p_query)

    sub.add_parser("shell", help="Interactive session (selection persists between calls).")
    return parser


def _parse_param(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def request_from_args(args: argparse.Namespace) -> Tuple[str, Dict[str, Any]]:
    payload: Dict[str, Any] = {}
    if getattr(args, "db_name", None):
        payload["dbName"] = args.db_name
    if getattr(args, "bundle_id", None):
        payload["bundleId"] = args.bundle_id
    if getattr(args, "platform", None):
        payload["platform"] = args.platform

    if args.command == "list":
        return "list_databases", payload
    if args.command == "sync":
        return "sync_database", payload
    if args.command == "schema":
        return "inspect_schema", payload
    if args.command == "read":
        payload["tableName"] = args.table
        payload["limit"] = args.limit
        return "read_table_contents", payload
    if args.command == "query":
        payload["sql"] = args.sql
        payload["params"] = [_parse_param(p) for p in args.params]
        return "query_db", payload
    raise ValueError(f"unsupported command: {args.command}")


def _print_response(resp: ToolResponse, *, as_json: bool) -> None:
    if as_json:
        body = {"ok": not resp.is_error, "data": resp.data, "text": resp.text}
        print(json.dumps(body, indent=2, ensure_ascii=False, default=str))
    else:
        print(resp.text)


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
    exc = context.get("exception")
    logger.error(
        "Unhandled background error: %s",
        context.get("message"),
        exc_info=(type(exc), exc, exc.__traceback__) if exc is not None else None,
    )


def _parse_shell_line(line: str) -> Tuple[str, Dict[str, Any]]:
    tool, _, rest = line.partition(" ")
    rest = rest.strip()
    if not rest:
        return tool, {}
    payload = json.loads(rest)
    if not isinstance(payload, dict):
        raise ValueError("tool arguments must be a JSON object")
    return tool, payload


async def _shell(session: BridgeSession, *, as_json: bool) -> int:
    print("sqlite-bridge shell (type 'help' for commands)")
    while True:
        try:
            line = (await asyncio.to_thread(input, "sqlite-bridge> ")).strip()
        except EOFError:
            print()
            return 0

        if not line:
            continue
        if line in {"quit", "exit"}:
            return 0
        if line == "help":
            print(_SHELL_HELP)
            continue
        if line == "tools":
            print("\n".join(sorted(TOOL_SCHEMAS)))
            continue

        try:
            tool, payload = _parse_shell_line(line)
        except ValueError as e:
            print(f"invalid input: {e}")
            continue
        _print_response(await session.dispatch(tool, payload), as_json=as_json)


async def _run(args: argparse.Namespace, config: BridgeConfig) -> int:
    asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
    session = build_session(config)
    try:
        if args.command == "shell":
            return await _shell(session, as_json=bool(args.json))
        tool, payload = request_from_args(args)
        resp = await session.dispatch(tool, payload)
        _print_response(resp, as_json=bool(args.json))
        return 1 if resp.is_error else 0
    finally:
        await session.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except BridgeError as e:
        configure_logging("info")
        logger.error("%s", e)
        return 2
    if args.read_only:
        config.read_only = True
    if args.log_level:
        config.log_level = args.log_level
    configure_logging(config.log_level)

    try:
        return asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
