"""iOS Simulator helpers (``xcrun simctl`` and bounded ``find``).

The simulator exposes each app's sandbox as a plain directory on the host,
so no privileged bridge is needed: discovery is a host-side ``find`` under
the booted device's data root.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, List, Optional, Sequence

from sqlite_bridge.runtime.shell import ProcessExecutor

MAX_FIND_DEPTH = 7

_BOOTED_LINE_RE = re.compile(r"\(([0-9A-Fa-f-]{36})\)\s+\(Booted\)")


def parse_booted_udid(output: str) -> Optional[str]:
    """Return the first booted device UDID from ``simctl list devices`` output.

    Accepts both the ``-j`` JSON form and the human-readable form.
    """

    text = (output or "").strip()
    if not text:
        return None

    try:
        data: Any = json.loads(text)
    except ValueError:
        data = None

    if isinstance(data, dict):
        devices = data.get("devices")
        if isinstance(devices, dict):
            for runtime_devices in devices.values():
                if not isinstance(runtime_devices, list):
                    continue
                for dev in runtime_devices:
                    if isinstance(dev, dict) and dev.get("state") == "Booted" and dev.get("udid"):
                        return str(dev["udid"])
        return None

    m = _BOOTED_LINE_RE.search(text)
    return m.group(1) if m else None


def _name_clause(patterns: Sequence[str]) -> list[str]:
    clause: list[str] = ["("]
    for i, pat in enumerate(patterns):
        if i:
            clause.append("-o")
        clause += ["-name", str(pat)]
    clause.append(")")
    return clause


def escape_name_pattern(name: str) -> str:
    """Make ``name`` match itself literally under ``find -name``."""

    return re.sub(r"([\[*?])", r"[\1]", name)


class SimctlController:
    def __init__(
        self,
        *,
        executor: ProcessExecutor,
        xcrun_path: str = "xcrun",
        home: str | None = None,
    ) -> None:
        self._executor = executor
        self._xcrun_path = xcrun_path
        self._home = home

    async def booted_udid(self) -> Optional[str]:
        out = await self._executor.run(
            [self._xcrun_path, "simctl", "list", "devices", "booted", "-j"],
            timeout_s=3.0,
            label="simctl list devices booted",
        )
        return parse_booted_udid(out)

    def app_data_root(self, udid: str) -> str:
        home = self._home or os.environ.get("HOME") or str(Path.home())
        return str(
            Path(home)
            / "Library/Developer/CoreSimulator/Devices"
            / udid
            / "data/Containers/Data/Application"
        )

    async def find_files(
        self,
        root: str,
        patterns: Sequence[str],
        *,
        max_depth: int = MAX_FIND_DEPTH,
        timeout_s: float = 10.0,
    ) -> List[str]:
        argv = ["find", root, "-maxdepth", str(int(max_depth)), "-type", "f"]
        argv += _name_clause(patterns)
        argv.append("-print")
        out = await self._executor.run(argv, timeout_s=timeout_s, label=f"find {root}")
        return [line.strip() for line in out.splitlines() if line.strip()]
