"""Error taxonomy for the SQLite bridge.

Per-candidate failures (one package, one storage root, one sidecar file) are
logged and swallowed by the scanners and the sync coordinator. The errors
below only surface on total exhaustion or on executor/query failures.
"""

from __future__ import annotations

from typing import Sequence


def _truncate(text: str, limit: int) -> str:
    text = str(text or "")
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)] + "..."


class BridgeError(RuntimeError):
    """Base class for all errors raised by sqlite_bridge."""


class ConfigError(BridgeError):
    pass


class ShellError(BridgeError):
    """Raised when an external command fails or times out after all retries."""

    def __init__(self, label: str, message: str) -> None:
        self.label = str(label)
        self.detail = _truncate(message, 500)
        super().__init__(f"Shell command failed: {self.label}\n{self.detail}")


class NoDeviceError(BridgeError):
    """No booted simulator/emulator matches the request."""


class DiscoveryError(BridgeError):
    """Database enumeration itself failed (as opposed to finding nothing)."""


class SyncError(BridgeError):
    def __init__(self, message: str, *, selector: str | None = None) -> None:
        self.selector = selector
        super().__init__(message)


class QueryTimeoutError(BridgeError):
    def __init__(self, timeout_s: float, label: str) -> None:
        self.timeout_s = float(timeout_s)
        self.label = str(label)
        super().__init__(f"Query timed out after {int(self.timeout_s * 1000)}ms: {self.label}")


class QueryParameterError(BridgeError):
    """A bound parameter cannot be converted to an SQLite value."""


class NoSelectionError(BridgeError):
    pass


class AmbiguousSelectionError(BridgeError):
    def __init__(self, matches: Sequence[str]) -> None:
        self.matches = list(matches)
        super().__init__(
            "Multiple databases match the criteria. Please specify 'platform' or 'dbName'. "
            f"Matches: {', '.join(self.matches)}"
        )


class ReadOnlyViolationError(BridgeError):
    pass
