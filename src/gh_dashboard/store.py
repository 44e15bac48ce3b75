"""Persisted view state: render mode, filters and sort across invocations."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .models import Filters, RenderMode, ViewQuery
from .query import SORT_KEYS

logger = logging.getLogger(__name__)

DEFAULT_STATE_PATH = Path.home() / ".config" / "gh-dashboard" / "state.json"

VIEW_KEY = "gh_dashboard_view"
LANGUAGE_KEY = "gh_dashboard_filter_language"
VISIBILITY_KEY = "gh_dashboard_filter_visibility"
RELEASED_KEY = "gh_dashboard_filter_released"
SORT_KEY_KEY = "gh_dashboard_sort_key"
SORT_DIR_KEY = "gh_dashboard_sort_dir"

ALL_KEYS = (VIEW_KEY, LANGUAGE_KEY, VISIBILITY_KEY, RELEASED_KEY, SORT_KEY_KEY, SORT_DIR_KEY)


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """In-process key-value store."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(MemoryStore):
    """Key-value store persisted as a single JSON object on disk.

    Reads happen once on construction. Every write updates memory first and
    then rewrites the file; a failed write is logged and otherwise ignored.
    """

    def __init__(self, path: Path = DEFAULT_STATE_PATH) -> None:
        self._path = path
        super().__init__(self._read())

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _flush(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(self._data, indent=2, sort_keys=True))
        except OSError as exc:
            logger.warning("Could not save view state to %s: %s", self._path, exc)

    def set(self, key: str, value: str) -> None:
        super().set(key, value)
        self._flush()

    def delete(self, key: str) -> None:
        super().delete(key)
        self._flush()


@dataclass(frozen=True)
class ViewState:
    mode: RenderMode = RenderMode.TABLE
    filters: Filters = field(default_factory=Filters)
    sort_key: str = "pushed"
    sort_dir: str = "desc"

    @property
    def query(self) -> ViewQuery:
        return ViewQuery(filters=self.filters, sort_key=self.sort_key, sort_dir=self.sort_dir)


class ViewStateStore:
    """Load and save ViewState through a KeyValueStore backend."""

    def __init__(self, backend: KeyValueStore | None = None) -> None:
        self._backend: KeyValueStore = backend if backend is not None else MemoryStore()

    def load(self) -> ViewState:
        get = self._backend.get
        try:
            mode = RenderMode(get(VIEW_KEY) or RenderMode.TABLE.value)
        except ValueError:
            mode = RenderMode.TABLE
        released = get(RELEASED_KEY) or ""
        if released not in ("yes", "no"):
            released = ""
        sort_key = get(SORT_KEY_KEY) or "pushed"
        if sort_key not in SORT_KEYS:
            sort_key = "pushed"
        sort_dir = get(SORT_DIR_KEY) or "desc"
        if sort_dir not in ("asc", "desc"):
            sort_dir = "desc"
        return ViewState(
            mode=mode,
            filters=Filters(
                language=get(LANGUAGE_KEY) or "",
                visibility=get(VISIBILITY_KEY) or "",
                released=released,
            ),
            sort_key=sort_key,
            sort_dir=sort_dir,
        )

    def save(
        self,
        mode: RenderMode | str | None = None,
        filters: Filters | None = None,
        sort_key: str | None = None,
        sort_dir: str | None = None,
    ) -> None:
        """Persist only the parts that were passed."""
        if mode is not None:
            self._backend.set(VIEW_KEY, RenderMode(mode).value)
        if filters is not None:
            self._put(LANGUAGE_KEY, filters.language)
            self._put(VISIBILITY_KEY, filters.visibility)
            self._put(RELEASED_KEY, filters.released)
        if sort_key is not None:
            self._backend.set(SORT_KEY_KEY, sort_key)
        if sort_dir is not None:
            self._backend.set(SORT_DIR_KEY, sort_dir)

    def reset(self) -> None:
        for key in ALL_KEYS:
            self._backend.delete(key)

    def _put(self, key: str, value: str) -> None:
        if value:
            self._backend.set(key, value)
        else:
            self._backend.delete(key)
