"""
Concurrency tests for the cache store and its reader/writer lock.

These check that concurrent puts never lose index entries, that same-key
puts leave the payload and index describing one snapshot, and that index
persistence never runs while the write lock is held.
"""

import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from figtreelib.caching._rwlock import ReadWriteLock
from figtreelib.caching.store import INDEX_FILE, CacheKey, DocumentCache
from figtreelib.core.document import Document
from figtreelib.core.node import make_node


def named_document(name):
    root = make_node("DOCUMENT", "0:0", "Document", children=[make_node("CANVAS", "0:1", name)])
    return Document(root, name, version=name)


def origin(i):
    return f"{i:022d}"


class TestReadWriteLock:

    def test_multiple_readers(self):
        lock = ReadWriteLock()
        lock.acquire_read()
        lock.acquire_read()
        assert lock.readers == 2
        lock.release_read()
        lock.release_read()
        assert lock.readers == 0

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        acquired = threading.Event()

        lock.acquire_write()
        reader = threading.Thread(target=lambda: (lock.acquire_read(), acquired.set(), lock.release_read()))
        reader.start()
        assert not acquired.wait(0.1)

        lock.release_write()
        assert acquired.wait(2)
        reader.join(2)

    def test_waiting_writer_blocks_new_readers(self):
        lock = ReadWriteLock()
        writer_done = threading.Event()
        late_reader_done = threading.Event()

        lock.acquire_read()
        writer = threading.Thread(target=lambda: (lock.acquire_write(), writer_done.set(), lock.release_write()))
        writer.start()
        # Give the writer time to start waiting
        while not lock._waiting_writers:
            time.sleep(0.01)

        late_reader = threading.Thread(target=lambda: (lock.acquire_read(), late_reader_done.set(), lock.release_read()))
        late_reader.start()
        assert not late_reader_done.wait(0.1)

        lock.release_read()
        assert writer_done.wait(2)
        assert late_reader_done.wait(2)
        writer.join(2)
        late_reader.join(2)

    def test_unbalanced_release(self):
        lock = ReadWriteLock()
        with pytest.raises(RuntimeError):
            lock.release_read()
        with pytest.raises(RuntimeError):
            lock.release_write()

    def test_context_managers(self):
        lock = ReadWriteLock()
        with lock.write_locked():
            assert lock.write_held
        with lock.read_locked():
            assert lock.readers == 1
        assert not lock.write_held and lock.readers == 0


class TestConcurrentPuts:

    def test_distinct_keys_all_indexed(self, tmp_path):
        cache = DocumentCache(tmp_path)
        count = 32

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda i: cache.put(CacheKey(origin(i)), named_document(str(i))), range(count)))

        assert len(cache) == count
        index = json.loads((tmp_path / INDEX_FILE).read_text())
        assert len(index["entries"]) == count

        reopened = DocumentCache(tmp_path)
        assert len(reopened) == count
        for i in range(count):
            assert reopened.get(CacheKey(origin(i))).name == str(i)

    def test_same_key_last_write_is_consistent(self, tmp_path):
        cache = DocumentCache(tmp_path)
        key = CacheKey(origin(1))

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda i: cache.put(key, named_document(str(i))), range(40)))

        # Payload on disk and index entry must describe the same snapshot
        reopened = DocumentCache(tmp_path)
        meta = reopened.list()[0]
        document = reopened.get(key)
        assert document is not None
        assert document.version == meta.version

    @pytest.mark.slow
    def test_readers_and_writers_interleaved(self, tmp_path):
        cache = DocumentCache(tmp_path)
        keys = [CacheKey(origin(i)) for i in range(8)]
        errors = []

        def writer(n):
            for round_ in range(25):
                cache.put(keys[n % len(keys)], named_document(f"{n}-{round_}"))

        def reader(n):
            for _ in range(100):
                document = cache.get(keys[n % len(keys)])
                if document is not None and document.name != document.version:
                    errors.append(document.name)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        threads += [threading.Thread(target=reader, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(30)

        assert errors == []
        assert len(cache) == 4


class TestLockDiscipline:

    def test_index_never_written_under_write_lock(self, tmp_path, monkeypatch):
        cache = DocumentCache(tmp_path)
        original = cache._write_atomic
        observed = []

        def checking_write(path, data):
            if path.name == INDEX_FILE:
                observed.append(cache._lock.write_held)
            original(path, data)

        monkeypatch.setattr(cache, "_write_atomic", checking_write)

        key = CacheKey(origin(7))
        cache.put(key, named_document("a"))
        cache.get(key)
        cache.purge_expired()
        cache.invalidate(key)
        cache.put(key, named_document("b"))
        cache.clear()

        assert observed
        assert not any(observed)
