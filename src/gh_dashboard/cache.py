"""On-disk response cache shared between runs of the dashboard."""

from __future__ import annotations

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "gh-dashboard"
DEFAULT_TTL = 300  # matches the auto-refresh interval


class FileCache:
    """JSON files keyed by request URL and params, expiring after ``ttl`` seconds.

    Each entry records when it was stored and the URL it belongs to. Stale
    or unreadable entries are removed on lookup.
    """

    def __init__(
        self, cache_dir: Path | str = DEFAULT_CACHE_DIR, ttl: int = DEFAULT_TTL
    ) -> None:
        self._cache_dir = Path(cache_dir)
        self._ttl = ttl
        self._cache_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _make_key(url: str, params: dict[str, Any] | None = None) -> str:
        raw = url + json.dumps(params or {}, sort_keys=True)
        return hashlib.sha256(raw.encode()).hexdigest()

    def _entry_path(self, url: str, params: dict[str, Any] | None) -> Path:
        return self._cache_dir / f"{self._make_key(url, params)}.json"

    def _load(self, path: Path) -> dict[str, Any] | None:
        try:
            entry = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, OSError) as exc:
            logger.debug("Discarding unreadable cache entry %s: %s", path.name, exc)
            path.unlink(missing_ok=True)
            return None
        return entry if isinstance(entry, dict) else None

    def get(self, url: str, params: dict[str, Any] | None = None) -> Any | None:
        path = self._entry_path(url, params)
        entry = self._load(path)
        if entry is None:
            return None
        if time.time() - entry.get("ts", 0) > self._ttl:
            path.unlink(missing_ok=True)
            return None
        return entry.get("value")

    def set(self, url: str, params: dict[str, Any] | None, value: Any) -> None:
        entry = {"ts": time.time(), "url": url, "value": value}
        try:
            self._entry_path(url, params).write_text(
                json.dumps(entry, ensure_ascii=False), encoding="utf-8"
            )
        except OSError as exc:
            logger.debug("Cache write failed for %s: %s", url, exc)

    def clear(self) -> int:
        """Drop every cached entry. Returns the number of files removed."""
        removed = 0
        for path in self._cache_dir.glob("*.json"):
            try:
                path.unlink()
            except OSError as exc:
                logger.debug("Could not remove cache file %s: %s", path, exc)
                continue
            removed += 1
        return removed
