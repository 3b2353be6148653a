"""Snapshot connection cache and bounded query execution."""
