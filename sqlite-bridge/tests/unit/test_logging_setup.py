from __future__ import annotations

import io
import json
import logging
import re

from sqlite_bridge.logging_setup import configure_logging, parse_level


def test_parse_level() -> None:
    assert parse_level("debug") == logging.DEBUG
    assert parse_level("WARN") == logging.WARNING
    assert parse_level(None) == logging.INFO
    assert parse_level("chatty") == logging.INFO


def test_lines_carry_timestamp_level_and_meta() -> None:
    stream = io.StringIO()
    configure_logging("debug", stream=stream)
    log = logging.getLogger("sqlite_bridge.test")

    log.warning("Failed to pull sidecar %s", "/data/x.db-wal", extra={"meta": {"code": 1}})
    log.debug("plain")

    first, second = stream.getvalue().splitlines()
    m = re.match(r"^\[(\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z)\] \[WARN\] (.*)$", first)
    assert m is not None
    message, _, meta = m.group(2).partition(" {")
    assert message == "Failed to pull sidecar /data/x.db-wal"
    assert json.loads("{" + meta) == {"code": 1}
    assert second.endswith("[DEBUG] plain")


def test_level_filters_and_reconfigure_is_idempotent() -> None:
    stream = io.StringIO()
    configure_logging("info", stream=io.StringIO())
    configure_logging("error", stream=stream)

    logger = logging.getLogger("sqlite_bridge")
    assert len([h for h in logger.handlers if h.get_name() == "sqlite_bridge.stderr"]) == 1

    logging.getLogger("sqlite_bridge.x").info("hidden")
    logging.getLogger("sqlite_bridge.x").error("shown")
    assert "hidden" not in stream.getvalue()
    assert "[ERROR] shown" in stream.getvalue()
