"""Android emulator controller (async adb wrapper).

Host-side invocations are argument vectors. ``adb shell`` still receives a
single command string on the device side, so every token of that string is
``shlex.quote``-d; package names, paths and file names never reach the
device shell unquoted.

Notes
-----
* Private app storage is read through ``run-as <pkg>``, which only works for
  debuggable builds. This matches emulator/testbed usage.
* All operations are intended for *emulator/testbed* use only.
"""

from __future__ import annotations

import shlex
from pathlib import Path
from typing import List, Optional, Sequence

from sqlite_bridge.runtime.shell import ProcessExecutor

DB_NAME_PATTERNS = ("*.db", "*.sqlite", "*.sqlite3")

# On-device location readable by the shell user and by `adb pull`.
DEVICE_TMP_DIR = "/data/local/tmp"


def _adb_shell_cmd(parts: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(p)) for p in parts)


def _clean_lines(out: str) -> List[str]:
    return [line.replace("\r", "").strip() for line in out.splitlines() if line.strip()]


class AdbController:
    """Thin async wrapper around the adb capabilities the bridge relies on."""

    def __init__(
        self,
        *,
        executor: ProcessExecutor,
        adb_path: str = "adb",
        serial: Optional[str] = None,
    ) -> None:
        self._executor = executor
        self._adb_path = adb_path
        self._serial = serial

    @property
    def serial(self) -> Optional[str]:
        return self._serial

    def _base_cmd(self) -> list[str]:
        cmd = [self._adb_path]
        if self._serial:
            cmd += ["-s", self._serial]
        return cmd

    async def adb(
        self,
        *args: str,
        timeout_s: float = 10.0,
        retries: int = 0,
        ignore_errors: bool = False,
        label: str | None = None,
    ) -> str:
        return await self._executor.run(
            self._base_cmd() + list(args),
            timeout_s=timeout_s,
            retries=retries,
            ignore_errors=ignore_errors,
            label=label,
        )

    async def adb_shell(self, parts: Sequence[str], **kwargs) -> str:
        return await self.adb("shell", _adb_shell_cmd(parts), **kwargs)

    # ------------------------------- Discovery -------------------------------

    async def get_state(self) -> str:
        return await self.adb("get-state", timeout_s=3.0, label="adb get-state")

    async def list_third_party_packages(self) -> List[str]:
        out = await self.adb_shell(
            ["pm", "list", "packages", "-3"], timeout_s=5.0, label="pm list packages -3"
        )
        pkgs: List[str] = []
        for line in _clean_lines(out):
            pkg = line[len("package:") :] if line.startswith("package:") else line
            pkg = pkg.strip()
            if pkg:
                pkgs.append(pkg)
        return pkgs

    async def run_as_exists(self, package: str, path: str) -> None:
        await self.adb_shell(
            ["run-as", package, "ls", "-d", path], timeout_s=2.0, label=f"run-as {package} ls -d"
        )

    async def run_as_find_databases(self, package: str, root: str) -> List[str]:
        parts: list[str] = ["run-as", package, "find", root, "-type", "f", "("]
        for i, pat in enumerate(DB_NAME_PATTERNS):
            if i:
                parts.append("-o")
            parts += ["-name", pat]
        parts.append(")")
        out = await self.adb_shell(parts, timeout_s=5.0, label=f"run-as {package} find")
        return _clean_lines(out)

    async def run_as_list(self, package: str, directory: str) -> List[str]:
        out = await self.adb_shell(
            ["run-as", package, "ls", "-1p", directory],
            timeout_s=2.0,
            label=f"run-as {package} ls {directory}",
        )
        return _clean_lines(out)

    # -------------------------------- Staging --------------------------------

    async def force_stop(self, package: str) -> None:
        await self.adb_shell(
            ["am", "force-stop", package], timeout_s=3.0, label=f"am force-stop {package}"
        )

    async def run_as_copy(self, package: str, remote: str, dest: str) -> None:
        """Copy an app-private file to ``dest`` using the app's identity.

        The redirect is evaluated by the shell user, outside of run-as, so
        ``dest`` must be writable by the shell (e.g. ``/data/local/tmp``).
        """

        cmd = _adb_shell_cmd(["run-as", package, "cat", remote]) + " > " + shlex.quote(dest)
        await self.adb("shell", cmd, timeout_s=5.0, label=f"run-as {package} cat {remote}")

    async def pull(self, remote: str, local: str | Path, *, retries: int = 0) -> None:
        local_path = Path(local)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        await self.adb(
            "pull",
            remote,
            str(local_path),
            timeout_s=5.0,
            retries=retries,
            label=f"adb pull {remote}",
        )

    async def remove(self, remote: str, *, ignore_errors: bool = True) -> None:
        await self.adb_shell(
            ["rm", "-f", remote], timeout_s=3.0, ignore_errors=ignore_errors, label=f"rm {remote}"
        )
