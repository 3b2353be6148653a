"""Resolve discovered databases to host-readable snapshots.

iOS simulator databases are already host files, so syncing only resolves
their full path. Android databases are staged in three hops: the app's own
identity copies the file into ``/data/local/tmp``, ``adb pull`` brings it to
a fresh host directory, and the on-device copy is removed. WAL/SHM sidecars
follow the same route best-effort, since a WAL-mode main file alone can be
stale or inconsistent.

Staged files are left on disk after the process exits.
"""

from __future__ import annotations

import logging
import os
import posixpath
import re
import tempfile
import time
from pathlib import Path
from typing import List, Optional, Sequence

from sqlite_bridge.db.cache import ConnectionCache
from sqlite_bridge.errors import ShellError, SyncError
from sqlite_bridge.locator import DatabaseLocator
from sqlite_bridge.models import DeviceLocation, StagingStep, SyncedDatabase, SyncReport
from sqlite_bridge.runtime.android.controller import DEVICE_TMP_DIR, AdbController
from sqlite_bridge.runtime.android.scanner import parse_app_dir

logger = logging.getLogger(__name__)

PREFERRED_SUFFIXES = (".db", ".sqlite")
SIDECAR_SUFFIXES = ("-wal", "-shm")
STAGING_PREFIX = "rn-sqlite-mcp-"


def glob_to_regex(glob: str) -> re.Pattern[str]:
    """Anchored regex for a glob where ``*`` matches any sequence.

    Every other character is literal.
    """

    return re.compile("^" + ".*".join(re.escape(part) for part in glob.split("*")) + "$")


def select_names(names: Sequence[str], selector: Optional[str]) -> List[str]:
    if not selector:
        for name in names:
            if name.endswith(PREFERRED_SUFFIXES):
                return [name]
        return [names[0]] if names else []

    pattern = glob_to_regex(selector)
    return [name for name in names if pattern.match(name)]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _unlink_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove partial file %s: %s", path, e)


class SyncCoordinator:
    def __init__(
        self,
        *,
        locator: DatabaseLocator,
        adb: AdbController,
        staging_root: str | None = None,
        cache: ConnectionCache | None = None,
    ) -> None:
        self._locator = locator
        self._adb = adb
        self._staging_root = staging_root
        self._cache = cache

    async def sync_databases(
        self,
        selector: Optional[str] = None,
        package_id: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> List[SyncedDatabase]:
        report = await self.sync(selector, package_id, platform)
        return report.databases

    async def sync(
        self,
        selector: Optional[str] = None,
        package_id: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> SyncReport:
        locations = await self._locator.discover(package_id, platform)
        if not locations:
            if platform:
                raise SyncError(
                    f"No SQLite databases found for platform '{platform}'.", selector=selector
                )
            raise SyncError("No SQLite databases found on any platform.", selector=selector)

        report = SyncReport()
        for loc in locations:
            if platform and loc.platform != platform:
                continue
            for name in select_names(loc.databases, selector):
                if loc.platform == "ios":
                    synced = await self._sync_ios(loc, name, report)
                else:
                    synced = await self._sync_android(loc, name, report)
                if synced is not None:
                    report.databases.append(synced)

        if not report.databases:
            raise SyncError(
                f"Failed to sync any databases matching '{selector or 'auto-select'}'.",
                selector=selector,
            )

        if self._cache is not None:
            # Drop stale snapshots so the next query re-reads the file.
            for db in report.databases:
                self._cache.evict(db.local_path)
        return report

    async def _sync_ios(
        self, loc: DeviceLocation, name: str, report: SyncReport
    ) -> Optional[SyncedDatabase]:
        if not loc.app_dir:
            return None
        step = StagingStep(name="resolve", db_name=name)
        report.steps.append(step)

        path = await self._locator.ios.resolve(loc.app_dir, name)
        if path is None:
            step.detail = "not found under app data root"
            return None
        step.succeeded = True
        return SyncedDatabase(local_path=path, db_name=name, platform="ios")

    async def _stage_file(self, package: str, remote: str, local: Path) -> Optional[str]:
        """Copy one app-private file to ``local``; returns an error detail or None."""

        tmp_remote = f"{DEVICE_TMP_DIR}/{package}_{posixpath.basename(remote)}_{_now_ms()}"
        try:
            await self._adb.run_as_copy(package, remote, tmp_remote)
            await self._adb.pull(tmp_remote, local, retries=1)
        except ShellError as e:
            _unlink_quietly(local)
            return str(e)
        finally:
            await self._adb.remove(tmp_remote)

        if not local.is_file() or local.stat().st_size == 0:
            _unlink_quietly(local)
            return "staged file missing or empty"
        return None

    async def _stage_sidecar(
        self,
        package: str,
        remote_main: str,
        local_db: Path,
        suffix: str,
        name: str,
        report: SyncReport,
    ) -> None:
        remote = remote_main + suffix
        local = Path(f"{local_db}{suffix}")
        step = StagingStep(name=f"stage{suffix}", db_name=name)
        report.steps.append(step)
        try:
            await self._adb.run_as_exists(package, remote)
        except ShellError:
            step.attempted = False
            step.detail = "not present on device"
            return
        step.detail = await self._stage_file(package, remote, local)
        step.succeeded = step.detail is None
        if not step.succeeded:
            logger.warning("Failed to pull sidecar %s: %s", remote, step.detail)

    async def _sync_android(
        self, loc: DeviceLocation, name: str, report: SyncReport
    ) -> Optional[SyncedDatabase]:
        parsed = parse_app_dir(loc.app_dir)
        if parsed is None:
            logger.error("Invalid Android appDir format: %s", loc.app_dir)
            return None
        root, package = parsed

        stop = StagingStep(name="force-stop", db_name=name)
        report.steps.append(stop)
        try:
            await self._adb.force_stop(package)
            stop.succeeded = True
        except ShellError as e:
            stop.detail = str(e)
            logger.warning("Failed to force-stop app: %s", package)

        try:
            staging_dir = tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=self._staging_root)
        except OSError as e:
            where = self._staging_root or tempfile.gettempdir()
            raise SyncError(
                f"Cannot create staging directory under {where}: {e}", selector=name
            ) from e
        local_db = Path(staging_dir) / name.replace("/", "_")
        remote_main = f"{root}/{name}"

        main = StagingStep(name="stage-main", db_name=name)
        report.steps.append(main)
        main.detail = await self._stage_file(package, remote_main, local_db)
        if main.detail is not None:
            logger.error(
                "Failed to pull main DB file from Android: %s",
                remote_main,
                extra={"meta": {"error": main.detail}},
            )
            return None
        main.succeeded = True

        for suffix in SIDECAR_SUFFIXES:
            await self._stage_sidecar(package, remote_main, local_db, suffix, name, report)

        logger.info("Pulled Android DB to local temp: %s", local_db)
        return SyncedDatabase(local_path=os.fspath(local_db), db_name=name, platform="android")
