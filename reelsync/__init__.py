"""Reelsync: video asset ingest, catalog and distribution sync."""

__version__ = "0.1.0"
