"""Indexed in-memory cache of OVSDB rows, kept current by update notifications."""

__version__ = "0.1.0"
__all__ = ["dbmodel", "rowcache", "events", "tablecache"]