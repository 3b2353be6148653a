"""Permission-walled scanner for the booted Android Emulator.

Each package's private storage is probed through ``run-as``. Two discovery
heuristics are unioned per package:

  * a recursive ``find`` for database-like extensions
  * a flat listing of ``<root>/databases`` for legacy extensionless files
    (journal/WAL/SHM sidecars excluded)
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from sqlite_bridge.errors import DiscoveryError, NoDeviceError, ShellError
from sqlite_bridge.models import DeviceLocation
from sqlite_bridge.runtime.android.controller import AdbController

logger = logging.getLogger(__name__)

APP_DIR_SEP = "::"
_SIDECAR_SUFFIXES = ("-journal", "-wal", "-shm")


def storage_roots(package: str) -> list[str]:
    return [f"/data/user/0/{package}", f"/data/data/{package}"]


def make_app_dir(root: str, package: str) -> str:
    return f"{root}{APP_DIR_SEP}{package}"


def parse_app_dir(app_dir: Optional[str]) -> Optional[tuple[str, str]]:
    """Split ``<root>::<package>``; None when malformed."""

    if not app_dir or APP_DIR_SEP not in app_dir:
        return None
    root, package = app_dir.split(APP_DIR_SEP, 1)
    if not root or not package:
        return None
    return root, package


def is_legacy_db_entry(entry: str) -> bool:
    """True for a ``ls -1p`` entry that looks like an extensionless database."""

    if not entry or entry.endswith("/"):
        return False
    if entry.endswith(_SIDECAR_SUFFIXES):
        return False
    return "." not in entry


def _unique(items: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    out: List[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def _relative_to(path: str, root: str) -> str:
    prefix = root.rstrip("/") + "/"
    return path[len(prefix) :] if path.startswith(prefix) else path


class AndroidScanner:
    platform = "android"

    def __init__(self, *, adb: AdbController) -> None:
        self._adb = adb

    async def _scan_root(self, package: str, root: str) -> List[str]:
        found: List[str] = []

        try:
            found += await self._adb.run_as_find_databases(package, root)
        except ShellError as e:
            logger.debug(
                "find failed for %s under %s", package, root, extra={"meta": {"error": str(e)}}
            )

        databases_dir = f"{root}/databases"
        try:
            entries = await self._adb.run_as_list(package, databases_dir)
        except ShellError as e:
            logger.debug("ls failed for %s", databases_dir, extra={"meta": {"error": str(e)}})
            entries = []
        found += [f"{databases_dir}/{e}" for e in entries if is_legacy_db_entry(e)]

        return [_relative_to(p, root) for p in _unique(found)]

    async def _scan_package(self, package: str) -> Optional[DeviceLocation]:
        for root in storage_roots(package):
            try:
                await self._adb.run_as_exists(package, root)
            except ShellError:
                logger.debug("run-as listing failed for %s at %s", package, root)
                continue

            # First accessible root wins; the alternate root is not merged in.
            names = await self._scan_root(package, root)
            if not names:
                return None
            return DeviceLocation(
                platform="android", app_dir=make_app_dir(root, package), databases=names
            )

        logger.debug("Failed to list databases for app: %s", package)
        return None

    async def _packages(self, package_id: Optional[str]) -> Sequence[str]:
        if package_id:
            return [package_id]
        return await self._adb.list_third_party_packages()

    async def scan(
        self,
        *,
        package_id: Optional[str] = None,
        explicit: bool = False,
        have_other_results: bool = False,
    ) -> List[DeviceLocation]:
        """Return one location per package that exposes databases."""

        try:
            state = await self._adb.get_state()
        except ShellError:
            state = ""
        if state.strip() != "device":
            if explicit:
                raise NoDeviceError("No booted Android Emulator found or adb is unresponsive.")
            if not have_other_results:
                raise NoDeviceError("No booted iOS Simulator or Android Emulator device found.")
            return []

        try:
            packages = await self._packages(package_id)
        except ShellError as e:
            if not have_other_results:
                raise DiscoveryError(
                    "Could not list packages on Android Emulator to discover databases. "
                    "Is it fully booted?"
                ) from e
            logger.warning("Package listing failed; returning partial results")
            return []

        locations: List[DeviceLocation] = []
        for package in packages:
            loc = await self._scan_package(package)
            if loc is not None:
                locations.append(loc)

        if not locations and explicit:
            raise DiscoveryError(
                "Android Emulator is booted, but no SQLite databases were found in any "
                "debuggable third-party packages."
            )
        return locations
