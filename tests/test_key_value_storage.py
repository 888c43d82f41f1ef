"""Tests for the key/value storage backends."""

import json

import pytest

from skill_progress_sync.storage.fallback_cache import LocalFallbackCache
from skill_progress_sync.storage.key_value import (
    InMemoryStorage,
    JsonFileStorage,
    origin_filename,
)


class TestInMemoryStorage:
    def test_get_set_delete(self):
        storage = InMemoryStorage()
        assert storage.get("a") is None
        storage.set("a", "1")
        assert storage.get("a") == "1"
        assert storage.keys() == ["a"]
        storage.delete("a")
        assert storage.get("a") is None

    def test_delete_missing_key(self):
        storage = InMemoryStorage()
        storage.delete("missing")
        assert storage.keys() == []


class TestOriginFilename:
    def test_url_is_slugged(self):
        assert origin_filename("http://localhost:3001") == "http_localhost_3001.json"

    def test_empty_origin(self):
        assert origin_filename("") == "default.json"


class TestJsonFileStorage:
    def test_missing_file_reads_empty(self, tmp_path):
        storage = JsonFileStorage(tmp_path, "http://localhost:3001")
        assert storage.get("totalStars") is None
        assert storage.keys() == []

    def test_survives_new_instance(self, tmp_path):
        JsonFileStorage(tmp_path, "http://localhost:3001").set("totalStars", "3")
        reopened = JsonFileStorage(tmp_path, "http://localhost:3001")
        assert reopened.get("totalStars") == "3"

    def test_origins_are_isolated(self, tmp_path):
        JsonFileStorage(tmp_path, "http://localhost:3001").set("k", "local")
        other = JsonFileStorage(tmp_path, "https://progress.example.com")
        assert other.get("k") is None

    def test_file_content_is_flat_json(self, tmp_path):
        storage = JsonFileStorage(tmp_path, "http://localhost:3001")
        storage.set("a", "1")
        storage.set("b", "2")
        storage.delete("a")
        data = json.loads(storage.path.read_text())
        assert data == {"b": "2"}

    def test_fallback_cache_persists_across_restarts(self, tmp_path):
        cache = LocalFallbackCache(JsonFileStorage(tmp_path, "http://localhost:3001"))
        cache.put("hand-hygiene", "chat")

        restarted = LocalFallbackCache(JsonFileStorage(tmp_path, "http://localhost:3001"))
        assert restarted.has("hand-hygiene", "chat")
        assert restarted.count() == 1
        assert restarted.storage.get("totalStars") == "1"


class TestJsonFileStorageDamage:
    def test_corrupt_file_reads_empty(self, tmp_path):
        storage = JsonFileStorage(tmp_path, "http://localhost:3001")
        storage.path.write_text("{truncated", encoding="utf-8")
        assert storage.get("totalStars") is None
        assert storage.keys() == []

    def test_write_replaces_corrupt_file(self, tmp_path):
        storage = JsonFileStorage(tmp_path, "http://localhost:3001")
        storage.path.write_text("{truncated", encoding="utf-8")

        storage.set("totalStars", "1")

        assert json.loads(storage.path.read_text()) == {"totalStars": "1"}

    def test_non_object_file_reads_empty(self, tmp_path):
        storage = JsonFileStorage(tmp_path, "http://localhost:3001")
        storage.path.write_text("[1, 2]", encoding="utf-8")
        assert storage.keys() == []

    def test_failed_write_leaves_no_temp_file(self, tmp_path, monkeypatch):
        storage = JsonFileStorage(tmp_path, "http://localhost:3001")
        storage.set("a", "1")

        def broken_dump(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(json, "dump", broken_dump)
        with pytest.raises(RuntimeError):
            storage.set("b", "2")
        monkeypatch.undo()

        assert sorted(p.name for p in tmp_path.glob("*.json")) == [storage.path.name]
        assert storage.get("a") == "1"
        assert storage.get("b") is None
