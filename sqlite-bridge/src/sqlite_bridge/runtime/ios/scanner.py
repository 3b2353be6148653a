from __future__ import annotations

import logging
import os
from typing import Optional

from sqlite_bridge.errors import NoDeviceError, ShellError
from sqlite_bridge.models import DeviceLocation
from sqlite_bridge.runtime.ios.simctl import SimctlController, escape_name_pattern

logger = logging.getLogger(__name__)

DB_PATTERNS = ("*.db", "*.sqlite", "*.sqlite3")


class IosScanner:
    """Sandbox-filesystem scanner for the booted iOS Simulator."""

    platform = "ios"

    def __init__(self, *, simctl: SimctlController) -> None:
        self._simctl = simctl

    async def scan(self, *, explicit: bool = False) -> Optional[DeviceLocation]:
        """Return the simulator's databases, or None when there is nothing to report.

        Without a booted simulator this only fails when iOS was requested
        explicitly; under auto-scan the platform is silently skipped.
        """

        try:
            udid = await self._simctl.booted_udid()
        except ShellError as e:
            if explicit:
                raise NoDeviceError("No booted iOS Simulator found or xcrun failed.") from e
            logger.debug("xcrun simctl unavailable; skipping iOS")
            return None

        if not udid:
            if explicit:
                raise NoDeviceError("No booted iOS Simulator found (simctl returned empty).")
            return None

        root = self._simctl.app_data_root(udid)
        if not os.path.isdir(root):
            logger.debug("Simulator data root missing: %s", root)
            return None

        try:
            found = await self._simctl.find_files(root, DB_PATTERNS)
        except ShellError as e:
            logger.warning("iOS find failed", extra={"meta": {"root": root, "error": str(e)}})
            return None

        names = [os.path.basename(p) for p in found if p]
        if not names:
            return None
        return DeviceLocation(platform="ios", app_dir=root, databases=names)

    async def resolve(self, app_dir: str, db_name: str) -> Optional[str]:
        """Locate the full path of ``db_name`` under ``app_dir`` (first match)."""

        try:
            found = await self._simctl.find_files(
                app_dir, [escape_name_pattern(db_name)], timeout_s=5.0
            )
        except ShellError as e:
            logger.warning(
                "Failed to locate full path for iOS DB: %s",
                db_name,
                extra={"meta": {"error": str(e)}},
            )
            return None

        for path in found:
            if os.path.basename(path) != db_name:
                continue
            if os.path.isfile(path) and os.path.getsize(path) > 0:
                logger.info("Located iOS DB at: %s", path)
                return path
        logger.warning("iOS DB not found under app data root: %s", db_name)
        return None
