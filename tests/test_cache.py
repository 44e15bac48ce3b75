"""Tests for the cache module."""

from __future__ import annotations

import json
import time

from gh_dashboard.cache import DEFAULT_TTL, FileCache


def test_cache_get_set(tmp_path):
    cache = FileCache(cache_dir=tmp_path, ttl=3600)
    cache.set("/test/url", {"key": "val"}, [1, 2, 3])
    assert cache.get("/test/url", {"key": "val"}) == [1, 2, 3]


def test_cache_miss(tmp_path):
    cache = FileCache(cache_dir=tmp_path)
    assert cache.get("/nonexistent", None) is None


def test_default_ttl_is_five_minutes():
    assert DEFAULT_TTL == 300


def test_cache_ttl_expired(tmp_path):
    cache = FileCache(cache_dir=tmp_path, ttl=1)
    cache.set("/test/url", None, {"data": True})

    key = FileCache._make_key("/test/url", None)
    path = tmp_path / f"{key}.json"
    data = json.loads(path.read_text())
    data["ts"] = time.time() - 10
    path.write_text(json.dumps(data))

    assert cache.get("/test/url", None) is None
    assert not path.exists()


def test_cache_different_params(tmp_path):
    cache = FileCache(cache_dir=tmp_path)
    cache.set("/url", {"a": "1"}, "first")
    cache.set("/url", {"a": "2"}, "second")
    assert cache.get("/url", {"a": "1"}) == "first"
    assert cache.get("/url", {"a": "2"}) == "second"


def test_cache_clear(tmp_path):
    cache = FileCache(cache_dir=tmp_path)
    cache.set("/a", None, 1)
    cache.set("/b", None, 2)
    assert cache.clear() == 2
    assert cache.get("/a") is None
    assert cache.get("/b") is None


def test_cache_discards_corrupt_entry(tmp_path):
    cache = FileCache(cache_dir=tmp_path)
    path = tmp_path / f"{FileCache._make_key('/broken', None)}.json"
    path.write_text("{truncated")
    assert cache.get("/broken") is None
    assert not path.exists()


def test_cache_entry_records_url(tmp_path):
    cache = FileCache(cache_dir=str(tmp_path))
    cache.set("/repos/o/r", {"page": 1}, {"ok": True})
    path = tmp_path / f"{FileCache._make_key('/repos/o/r', {'page': 1})}.json"
    assert json.loads(path.read_text())["url"] == "/repos/o/r"
