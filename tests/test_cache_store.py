"""
Tests for DocumentCache - the persistent document cache.

This test suite ensures the cache store correctly handles:
- Key derivation
- Get/put, idempotence and replacement
- TTL expiry (including ttl=0)
- Corrupt payload and index recovery
- Persistence across instances
- Statistics, listing and clearing
"""

import json
import logging

import pytest

from figtreelib.caching.store import (
    INDEX_FILE,
    KEY_LOCK_STRIPES,
    CacheKey,
    CacheMetadata,
    DocumentCache,
)
from figtreelib.core.document import Document, decode_document
from figtreelib.core.node import make_node
from figtreelib.errors import CacheWriteError
from figtreelib.query import query
from figtreelib.testing import FILE_KEY, sample_nodes_payload


KEY = CacheKey.for_file(FILE_KEY)


def tiny_document(name="Tiny", version="1"):
    root = make_node("DOCUMENT", "0:0", "Document", children=[make_node("CANVAS", "0:1", name)])
    return Document(root, name, version)


class TestCacheKey:

    def test_node_ids_normalized(self):
        a = CacheKey.for_nodes(FILE_KEY, ["2:2", "1:1", "2:2"])
        b = CacheKey.for_nodes(FILE_KEY, ["1:1", "2:2"])
        assert a == b
        assert a.node_ids == ("1:1", "2:2")
        assert a.digest == b.digest

    def test_file_and_node_requests_differ(self):
        assert CacheKey.for_file(FILE_KEY).digest != CacheKey.for_nodes(FILE_KEY, ["1:1"]).digest
        assert CacheKey.for_file(FILE_KEY).kind == "file"
        assert CacheKey.for_nodes(FILE_KEY, ["1:1"]).kind == "nodes"

    def test_depth_is_part_of_the_key(self):
        assert CacheKey.for_file(FILE_KEY, 2).digest != CacheKey.for_file(FILE_KEY).digest

    def test_digest_is_stable_sha256(self):
        digest = KEY.digest
        assert len(digest) == 64
        assert digest == CacheKey(FILE_KEY).digest


class TestGetPut:

    def test_miss(self, cache):
        assert cache.get(KEY) is None
        assert cache.misses == 1

    def test_put_then_get(self, cache, document):
        meta = cache.put(KEY, document)

        assert cache.get(KEY) == document
        assert meta.key == KEY.digest
        assert meta.version == "1234567890"
        assert meta.size_bytes > 0
        assert cache.hits == 1

    def test_put_is_idempotent(self, cache, document):
        cache.put(KEY, document)
        cache.put(KEY, document)

        assert len(cache) == 1
        assert cache.get(KEY) == document

    def test_put_replaces(self, cache, clock):
        cache.put(KEY, tiny_document("First"))
        clock.advance(10)
        cache.put(KEY, tiny_document("Second"))

        assert cache.get(KEY).name == "Second"
        assert len(cache.list()) == 1
        assert cache.list()[0].created_at == clock()

    def test_replacement_with_same_timestamp(self, cache):
        cache.put(KEY, tiny_document("First"))
        cache.put(KEY, tiny_document("Second"))
        assert cache.get(KEY).name == "Second"

    def test_hit_updates_accessed_at(self, cache, clock, document):
        cache.put(KEY, document)
        clock.advance(60)
        entry = cache.get_entry(KEY)

        assert entry.metadata.accessed_at == clock()
        assert entry.metadata.created_at < entry.metadata.accessed_at
        assert cache.list()[0].accessed_at == clock()

    def test_node_selection_document(self, cache, clock):
        document = decode_document(sample_nodes_payload())
        key = CacheKey.for_nodes(FILE_KEY, ["1:1", "9:9"])
        cache.put(key, document)

        reopened = DocumentCache(cache.cache_dir, clock=clock)
        assert reopened.get(key) == document

    def test_payload_layout(self, cache, document):
        cache.put(KEY, document)
        payload = json.loads((cache.cache_dir / f"{KEY.digest}.json").read_text())

        assert payload["key"] == KEY.digest
        assert payload["origin_id"] == FILE_KEY
        assert payload["depth"] is None
        assert payload["node_ids"] == []
        assert payload["document"]["name"] == "Sample File"

    def test_non_serializable_document(self, cache):
        document = Document(make_node("DOCUMENT", "0:0", "Document"), "Bad", extra={"x": object()})
        with pytest.raises(CacheWriteError):
            cache.put(KEY, document)
        assert cache.get(KEY) is None


class TestExpiry:

    def test_ttl_zero_is_always_expired(self, cache, document):
        cache.put(KEY, document, ttl_seconds=0)

        assert cache.contains(KEY) is False
        assert cache.get(KEY) is None
        assert len(cache) == 0
        assert not (cache.cache_dir / f"{KEY.digest}.json").exists()

    def test_expires_exactly_at_ttl(self, cache, clock, document):
        cache.put(KEY, document, ttl_seconds=100)
        clock.advance(99)
        assert cache.get(KEY) == document
        clock.advance(1)
        assert cache.get(KEY) is None

    def test_default_ttl(self, cache, document):
        meta = cache.put(KEY, document)
        assert meta.ttl_seconds == 3600

    def test_negative_ttl_rejected(self, cache, document):
        with pytest.raises(ValueError):
            cache.put(KEY, document, ttl_seconds=-1)

    def test_purge_expired(self, cache, clock):
        cache.put(CacheKey("a" * 22), tiny_document("A"), ttl_seconds=10)
        cache.put(CacheKey("b" * 22), tiny_document("B"), ttl_seconds=1000)
        clock.advance(20)

        assert cache.stats().expired_entries == 1
        assert cache.purge_expired() == 1
        assert [meta.origin_id for meta in cache.list()] == ["b" * 22]


class TestCorruption:

    def test_corrupt_payload_is_a_miss_and_evicted(self, cache, clock, document, caplog):
        cache.put(KEY, document)
        (cache.cache_dir / f"{KEY.digest}.json").write_text("{not json")

        # Bypass the in-memory copy to force a read from disk
        reopened = DocumentCache(cache.cache_dir, clock=clock)
        with caplog.at_level(logging.WARNING, logger="figtreelib.caching.store"):
            assert reopened.get(KEY) is None

        assert len(reopened) == 0
        assert "corrupt" in caplog.text
        assert json.loads((cache.cache_dir / INDEX_FILE).read_text())["entries"] == {}

    def test_missing_payload_is_a_miss(self, cache, clock, document):
        cache.put(KEY, document)
        (cache.cache_dir / f"{KEY.digest}.json").unlink()

        reopened = DocumentCache(cache.cache_dir, clock=clock)
        assert reopened.get(KEY) is None
        assert len(reopened) == 0

    def test_schema_violation_in_payload(self, cache, clock, document):
        cache.put(KEY, document)
        path = cache.cache_dir / f"{KEY.digest}.json"
        payload = json.loads(path.read_text())
        payload["document"]["document"]["type"] = "HOLOGRAM"
        path.write_text(json.dumps(payload))

        assert DocumentCache(cache.cache_dir, clock=clock).get(KEY) is None

    def test_corrupt_index_starts_empty(self, tmp_path, caplog):
        cache_dir = tmp_path / "cache"
        cache_dir.mkdir()
        (cache_dir / INDEX_FILE).write_text("[]")

        with caplog.at_level(logging.WARNING, logger="figtreelib.caching.store"):
            cache = DocumentCache(cache_dir)
        assert len(cache) == 0
        assert "Ignoring" in caplog.text


class TestPersistence:

    def test_index_survives_reopen(self, cache, document, clock):
        cache.put(KEY, document)

        reopened = DocumentCache(cache.cache_dir, clock=clock)
        assert reopened.get(KEY) == document
        assert reopened.list()[0].origin_id == FILE_KEY

    def test_index_layout(self, cache, document):
        cache.put(KEY, document)
        index = json.loads((cache.cache_dir / INDEX_FILE).read_text())

        assert index["version"] == 1
        entry = index["entries"][KEY.digest]
        assert CacheMetadata.from_dict(entry) == cache.list()[0]

    def test_no_temp_files_left_behind(self, cache, document):
        cache.put(KEY, document)
        names = sorted(path.name for path in cache.cache_dir.iterdir())
        assert names == sorted([INDEX_FILE, f"{KEY.digest}.json"])


class TestIntrospection:

    def test_stats(self, cache, clock, document):
        cache.put(KEY, document)
        cache.put(CacheKey.for_file(FILE_KEY, depth=1), tiny_document(), ttl_seconds=0)
        stats = cache.stats()

        assert stats.total_entries == 2
        assert stats.expired_entries == 1
        assert stats.total_size_bytes == sum(meta.size_bytes for meta in cache.list())
        assert stats.default_ttl_seconds == 3600
        assert stats.cache_dir == cache.cache_dir
        assert stats.to_dict()["cache_dir"] == str(cache.cache_dir)

    def test_list_sorted_by_creation(self, cache, clock):
        for name in ("c", "a", "b"):
            cache.put(CacheKey(name * 22), tiny_document(name))
            clock.advance(1)
        assert [meta.origin_id[0] for meta in cache.list()] == ["c", "a", "b"]

    def test_list_does_not_touch_entries(self, cache, clock, document):
        cache.put(KEY, document)
        before = cache.list()
        clock.advance(30)
        assert cache.list() == before

    def test_clear(self, cache, document):
        cache.put(KEY, document)
        cache.put(CacheKey.for_nodes(FILE_KEY, ["1:1"]), document)

        assert cache.clear() == 2
        assert len(cache) == 0
        assert cache.get(KEY) is None
        assert [path.name for path in cache.cache_dir.iterdir()] == [INDEX_FILE]

    def test_invalidate(self, cache, document):
        cache.put(KEY, document)
        assert cache.invalidate(KEY) is True
        assert cache.invalidate(KEY) is False
        assert cache.get(KEY) is None

    def test_memory_memo_disabled(self, tmp_path, document):
        cache = DocumentCache(tmp_path, memory_entries=0)
        cache.put(KEY, document)
        assert cache.get(KEY) == document


class TestFailedIndexWrite:
    """A put whose index cannot be persisted leaves the previous entry in place."""

    def fail_index_writes(self, cache, monkeypatch):
        write_atomic = cache._write_atomic

        def write(path, data):
            if path.name == INDEX_FILE:
                raise CacheWriteError("disk full")
            write_atomic(path, data)

        monkeypatch.setattr(cache, "_write_atomic", write)

    def test_previous_entry_survives(self, cache, clock, monkeypatch):
        cache.put(KEY, tiny_document("One"))
        self.fail_index_writes(cache, monkeypatch)

        with pytest.raises(CacheWriteError):
            cache.put(KEY, tiny_document("Two"))

        assert cache.get(KEY).name == "One"
        reopened = DocumentCache(cache.cache_dir, clock=clock)
        assert reopened.get(KEY).name == "One"
        assert len(reopened) == 1

    def test_first_put_leaves_nothing_behind(self, cache, monkeypatch, caplog):
        self.fail_index_writes(cache, monkeypatch)

        with caplog.at_level(logging.WARNING, logger="figtreelib.caching.store"):
            with pytest.raises(CacheWriteError):
                cache.put(KEY, tiny_document())

        assert len(cache) == 0
        assert cache.get(KEY) is None
        assert not (cache.cache_dir / f"{KEY.digest}.json").exists()
        assert "Rolled back" in caplog.text

    def test_stale_index_entry_is_evicted(self, cache, clock):
        cache.put(KEY, tiny_document("One"))
        stale_index = (cache.cache_dir / INDEX_FILE).read_text()
        cache.put(KEY, tiny_document("Two"))
        (cache.cache_dir / INDEX_FILE).write_text(stale_index)

        reopened = DocumentCache(cache.cache_dir, clock=clock)
        assert reopened.get(KEY) is None
        assert len(reopened) == 0
        assert not (cache.cache_dir / f"{KEY.digest}.json").exists()
        assert json.loads((cache.cache_dir / INDEX_FILE).read_text())["entries"] == {}


class TestIsolation:
    """Documents handed out by the cache do not share state with callers."""

    def test_mutating_a_query_result_leaves_the_entry_alone(self, cache, document):
        cache.put(KEY, document)
        components = query(cache.get(KEY), "components")
        components["1:9"] = {"name": "Injected"}

        assert cache.get(KEY).extra["components"] == {}

    def test_mutating_the_source_payload_after_put(self, cache, file_payload):
        cache.put(KEY, decode_document(file_payload))
        file_payload["styles"]["S:1"] = {"name": "Late"}
        assert cache.get(KEY).extra["styles"] == {}

    def test_overlapping_selection_round_trip(self, cache, clock):
        payload = sample_nodes_payload()
        title = payload["nodes"]["1:1"]["document"]["children"][0]
        payload["nodes"]["1:2"] = {"document": dict(title)}
        key = CacheKey.for_nodes(FILE_KEY, ["1:1", "1:2"])
        cache.put(key, decode_document(payload))

        reopened = DocumentCache(cache.cache_dir, clock=clock)
        document = reopened.get(key)
        assert [child.id for child in document.root.children] == ["1:1", "1:2"]


class TestKeyLocks:

    def test_lock_pool_is_fixed(self, cache):
        for index in range(KEY_LOCK_STRIPES * 2):
            cache.put(CacheKey.for_file(FILE_KEY, depth=index + 1), tiny_document())
        assert len(cache._key_locks) == KEY_LOCK_STRIPES

    def test_string_node_ids_rejected(self):
        with pytest.raises(TypeError, match="parse_node_ids"):
            CacheKey(FILE_KEY, None, "1:2")
        with pytest.raises(TypeError):
            CacheKey.for_nodes(FILE_KEY, "1:2,1:3")
