from __future__ import annotations

import json
from typing import Any, Dict, List, Tuple

import pytest

from sqlite_bridge.cli import bridge
from sqlite_bridge.session import ToolResponse

ENV_VARS = (
    "DB_NAME",
    "ANDROID_BUNDLE_ID",
    "SQLITE_BRIDGE_READ_ONLY",
    "MCP_LOG_LEVEL",
    "ADB_PATH",
    "XCRUN_PATH",
    "ANDROID_SERIAL",
    "SQLITE_BRIDGE_STAGING_DIR",
)


class RecordingSession:
    def __init__(self, response: ToolResponse) -> None:
        self.response = response
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.closed = False

    async def dispatch(self, tool: str, args: Dict[str, Any]) -> ToolResponse:
        self.calls.append((tool, args))
        return self.response

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


def _install(monkeypatch, response: ToolResponse) -> Tuple[RecordingSession, list]:
    session = RecordingSession(response)
    configs: list = []

    def fake_build_session(config, **kwargs):
        configs.append(config)
        return session

    monkeypatch.setattr(bridge, "build_session", fake_build_session)
    return session, configs


@pytest.mark.parametrize(
    "argv,expected",
    [
        (["list"], ("list_databases", {})),
        (
            ["list", "--bundle-id", "com.example", "--platform", "android"],
            ("list_databases", {"bundleId": "com.example", "platform": "android"}),
        ),
        (["sync", "--db-name", "*.db"], ("sync_database", {"dbName": "*.db"})),
        (["schema", "--platform", "ios"], ("inspect_schema", {"platform": "ios"})),
        (
            ["read", "users", "--limit", "5"],
            ("read_table_contents", {"tableName": "users", "limit": 5}),
        ),
        (
            ["query", "SELECT ?, ?", "--param", "2", "--param", "ada"],
            ("query_db", {"sql": "SELECT ?, ?", "params": [2, "ada"]}),
        ),
    ],
)
def test_request_from_args(argv, expected) -> None:
    args = bridge.build_parser().parse_args(argv)
    assert bridge.request_from_args(args) == expected


def test_main_prints_tool_text(monkeypatch, capsys, clean_env) -> None:
    session, _ = _install(monkeypatch, ToolResponse(text="[Active Platform: ios | DB: a.db]\n[]"))

    rc = bridge.main(["query", "SELECT 1"])

    assert rc == 0
    assert session.calls == [("query_db", {"sql": "SELECT 1", "params": []})]
    assert session.closed
    assert capsys.readouterr().out == "[Active Platform: ios | DB: a.db]\n[]\n"


def test_main_json_output_and_error_exit(monkeypatch, capsys, clean_env) -> None:
    _install(monkeypatch, ToolResponse(text="Error: no such table: x", is_error=True))

    rc = bridge.main(["--json", "read", "x"])

    assert rc == 1
    body = json.loads(capsys.readouterr().out)
    assert body == {"ok": False, "data": None, "text": "Error: no such table: x"}


def test_main_read_only_flag_reaches_config(monkeypatch, clean_env) -> None:
    _, configs = _install(monkeypatch, ToolResponse(text="ok"))

    assert bridge.main(["--read-only", "--log-level", "debug", "schema"]) == 0

    (config,) = configs
    assert config.read_only is True
    assert config.log_level == "debug"


def test_main_rejects_bad_config(monkeypatch, tmp_path, clean_env) -> None:
    _install(monkeypatch, ToolResponse(text="unused"))
    bad = tmp_path / "bridge.yaml"
    bad.write_text("nonsense_key: 1\n", encoding="utf-8")

    assert bridge.main(["--config", str(bad), "list"]) == 2


def test_parse_shell_line() -> None:
    assert bridge._parse_shell_line("inspect_schema") == ("inspect_schema", {})
    assert bridge._parse_shell_line('query_db {"sql": "SELECT 1"}') == (
        "query_db",
        {"sql": "SELECT 1"},
    )
    with pytest.raises(ValueError):
        bridge._parse_shell_line("query_db [1, 2]")
    with pytest.raises(ValueError):
        bridge._parse_shell_line("query_db {oops")


def test_shell_keeps_one_session_across_calls(monkeypatch, capsys, clean_env) -> None:
    session, _ = _install(monkeypatch, ToolResponse(text="done"))
    lines = iter(['sync_database {"dbName": "a.db"}', "", "tools", 'query_db {"sql": "SELECT 1"}'])

    def fake_input(prompt: str = "") -> str:
        try:
            return next(lines)
        except StopIteration:
            raise EOFError from None

    monkeypatch.setattr("builtins.input", fake_input)

    assert bridge.main(["shell"]) == 0
    assert [tool for tool, _ in session.calls] == ["sync_database", "query_db"]
    assert session.closed
    out = capsys.readouterr().out
    assert "read_table_contents" in out
