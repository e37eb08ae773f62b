"""Persistent stores used by trophy."""

from .report_cache import ReportCache, cache_key

__all__ = ["ReportCache", "cache_key"]
