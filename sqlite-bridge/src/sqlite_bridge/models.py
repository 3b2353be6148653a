from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

Platform = Literal["ios", "android"]

PLATFORMS: tuple[str, ...] = ("ios", "android")


@dataclass
class DeviceLocation:
    """Databases discovered on one booted simulator/emulator."""

    platform: Platform
    databases: List[str] = field(default_factory=list)
    app_dir: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"platform": self.platform, "databases": list(self.databases)}
        if self.app_dir is not None:
            out["appDir"] = self.app_dir
        return out


@dataclass(frozen=True)
class SyncedDatabase:
    """A host-readable snapshot of a device database."""

    local_path: str
    db_name: str
    platform: Platform

    def to_dict(self) -> Dict[str, Any]:
        return {"localPath": self.local_path, "dbName": self.db_name, "platform": self.platform}


@dataclass
class StagingStep:
    """One attempted sub-step of a sync (force-stop, main pull, sidecar pull)."""

    name: str
    db_name: str
    attempted: bool = True
    succeeded: bool = False
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "dbName": self.db_name,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "detail": self.detail,
        }


@dataclass
class SyncReport:
    databases: List[SyncedDatabase] = field(default_factory=list)
    steps: List[StagingStep] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return any(s.attempted and not s.succeeded for s in self.steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "databases": [d.to_dict() for d in self.databases],
            "steps": [s.to_dict() for s in self.steps],
            "degraded": self.degraded,
        }
