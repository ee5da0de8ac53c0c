"""Integrity, versioning and live-sync layer for .imprint document bundles."""

__version__ = "0.3.0"
