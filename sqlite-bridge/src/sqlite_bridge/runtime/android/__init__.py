"""Android emulator runtime helpers.

This package intentionally contains *thin* wrappers around adb so that
discovery and staging of app-private databases stay auditable: every device
command is a quoted argument list built in one place.
"""
