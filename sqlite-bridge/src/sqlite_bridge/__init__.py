"""Discover, sync and query SQLite databases on mobile simulators/emulators."""

__version__ = "0.1.0"

__all__ = [
    "cli",
    "config",
    "db",
    "errors",
    "locator",
    "models",
    "runtime",
    "session",
    "sync",
]
