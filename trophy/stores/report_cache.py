"""Persistent cache for dependency reports."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Dict, Iterable, Optional

from ..logging import get_logger
from ..models import DependencyReport
from ..report.codec import ReportFormatError, report_from_dict, report_to_dict

_CACHE_VERSION = 1

logger = get_logger("stores.report_cache")


def cache_key(path: str, language: str | None, depth: str) -> str:
    return f"{path}|{language or '*'}|{depth}"


class ReportCache:
    """Stores reports keyed by request identity and project fingerprint."""

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._entries: Dict[str, Dict[str, object]] = {}
        self._dirty = False
        if self._path is not None:
            self._load(self._path)

    def get(self, key: str, *, fingerprint: str) -> Optional[DependencyReport]:
        entry = self._entries.get(key)
        if not entry or entry.get("fingerprint") != fingerprint:
            return None
        try:
            return report_from_dict(entry.get("report"))
        except ReportFormatError as exc:
            logger.debug("Dropping unreadable cache entry %s: %s", key, exc)
            self._entries.pop(key, None)
            self._dirty = True
            return None

    def store(self, key: str, *, fingerprint: str, report: DependencyReport) -> None:
        self._entries[key] = {
            "fingerprint": fingerprint,
            "report": report_to_dict(report),
            "updated_at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        }
        self._dirty = True

    def prune(self, keys_to_keep: Iterable[str]) -> None:
        keep = set(keys_to_keep)
        removed = [key for key in self._entries if key not in keep]
        if removed:
            for key in removed:
                self._entries.pop(key, None)
            self._dirty = True

    def persist(self) -> None:
        if not self._dirty or self._path is None:
            return
        payload = {
            "version": _CACHE_VERSION,
            "entries": self._entries,
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        self._dirty = False

    def clear(self) -> None:
        self._entries.clear()
        self._dirty = True

    # ------------------------------------------------------------------
    # Internal helpers

    def _load(self, path: Path) -> None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable report cache %s: %s", path, exc)
            return
        if not isinstance(data, dict) or data.get("version") != _CACHE_VERSION:
            return
        entries = data.get("entries")
        if not isinstance(entries, dict):
            return
        self._entries = {
            key: raw
            for key, raw in entries.items()
            if isinstance(key, str)
            and isinstance(raw, dict)
            and "fingerprint" in raw
            and "report" in raw
        }
        self._dirty = False


__all__ = ["ReportCache", "cache_key"]
