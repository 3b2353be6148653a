from __future__ import annotations

import logging
from typing import List, Optional

from sqlite_bridge.models import DeviceLocation
from sqlite_bridge.runtime.android.scanner import AndroidScanner
from sqlite_bridge.runtime.ios.scanner import IosScanner

logger = logging.getLogger(__name__)


class DatabaseLocator:
    """Discovery across the iOS Simulator and the Android Emulator.

    iOS is scanned first; Android is allowed to return partial results when
    iOS already found something and no emulator is reachable.
    """

    def __init__(self, *, ios: IosScanner, android: AndroidScanner) -> None:
        self.ios = ios
        self.android = android

    async def discover(
        self, package_id: Optional[str] = None, platform: Optional[str] = None
    ) -> List[DeviceLocation]:
        results: List[DeviceLocation] = []

        if platform in (None, "ios"):
            loc = await self.ios.scan(explicit=platform == "ios")
            if loc is not None:
                results.append(loc)

        if platform in (None, "android"):
            results += await self.android.scan(
                package_id=package_id,
                explicit=platform == "android",
                have_other_results=bool(results),
            )

        logger.debug(
            "Discovery finished",
            extra={"meta": {"locations": len(results), "platform": platform or "any"}},
        )
        return results
