"""Tests for the view-state store."""

from __future__ import annotations

import json

from gh_dashboard.models import Filters, RenderMode
from gh_dashboard.store import (
    LANGUAGE_KEY,
    VIEW_KEY,
    JsonFileStore,
    MemoryStore,
    ViewState,
    ViewStateStore,
)


def test_defaults_when_empty():
    state = ViewStateStore(MemoryStore()).load()
    assert state == ViewState()
    assert state.mode is RenderMode.TABLE
    assert state.filters == Filters()
    assert state.query.sort_key == "pushed"
    assert state.query.sort_dir == "desc"


def test_save_is_visible_to_next_load():
    store = ViewStateStore(MemoryStore())
    store.save(mode=RenderMode.COMPACT)
    assert store.load().mode is RenderMode.COMPACT
    store.save(filters=Filters(language="Julia", released="no"))
    state = store.load()
    assert state.mode is RenderMode.COMPACT
    assert state.filters == Filters(language="Julia", released="no")


def test_save_partial_leaves_other_keys():
    store = ViewStateStore(MemoryStore())
    store.save(mode="cards", sort_key="name", sort_dir="asc")
    store.save(sort_dir="desc")
    state = store.load()
    assert state.mode is RenderMode.CARDS
    assert (state.sort_key, state.sort_dir) == ("name", "desc")


def test_unknown_values_fall_back_to_defaults():
    backend = MemoryStore(
        {
            VIEW_KEY: "grid",
            "gh_dashboard_filter_released": "maybe",
            "gh_dashboard_sort_key": "stars",
            "gh_dashboard_sort_dir": "sideways",
        }
    )
    state = ViewStateStore(backend).load()
    assert state == ViewState()


def test_clearing_a_filter_deletes_its_key():
    backend = MemoryStore()
    store = ViewStateStore(backend)
    store.save(filters=Filters(language="Julia"))
    assert backend.get(LANGUAGE_KEY) == "Julia"
    store.save(filters=Filters())
    assert backend.get(LANGUAGE_KEY) is None


def test_reset():
    store = ViewStateStore(MemoryStore())
    store.save(mode="compact", filters=Filters(visibility="private"), sort_key="status")
    store.reset()
    assert store.load() == ViewState()


def test_json_file_store_persists(tmp_path):
    path = tmp_path / "state" / "state.json"
    ViewStateStore(JsonFileStore(path)).save(mode="cards", filters=Filters(released="yes"))

    data = json.loads(path.read_text())
    assert data[VIEW_KEY] == "cards"

    state = ViewStateStore(JsonFileStore(path)).load()
    assert state.mode is RenderMode.CARDS
    assert state.filters.released == "yes"


def test_json_file_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json")
    assert ViewStateStore(JsonFileStore(path)).load() == ViewState()


def test_json_file_store_write_failure_is_not_raised(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    # Parent "directory" is a regular file, so every write fails
    store = JsonFileStore(blocker / "state.json")
    store.set(VIEW_KEY, "compact")
    assert store.get(VIEW_KEY) == "compact"
