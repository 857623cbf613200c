"""
Persistent, content-keyed cache of decoded design documents.

Layout under the cache directory::

    index.json          {"version": 1, "entries": {<digest>: <metadata>}}
    <digest>.json       {"key": ..., "origin_id": ..., "depth": ...,
                         "node_ids": [...], "snapshot": ..., "document": {...}}

The index is the only shared mutable state. It is guarded by a
reader/writer lock and every mutation happens in two phases: the index is
changed under the write lock, then a read-locked snapshot of it is written
to ``index.json`` outside the write lock. Payload files are replaced
atomically (temp file + ``os.replace``), and puts for the same key are
serialized so a payload file and its index entry always describe the same
snapshot. A put whose index write fails is rolled back, restoring the
previous entry.

Recently used documents are also kept decoded in memory
(``cachetools.LRUCache``) so repeated hits skip JSON parsing.
"""

import hashlib
import json
import logging
import os
import re
import tempfile
import threading
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from cachetools import LRUCache

from ..config import DEFAULT_TTL_SECONDS, CacheConfig
from ..core.document import Document, decode_document, encode_document
from ..errors import CacheCorrupt, CacheWriteError, MalformedDocument
from ._rwlock import ReadWriteLock


logger = logging.getLogger(__name__)

INDEX_FILE = 'index.json'
INDEX_VERSION = 1

_DIGEST_FILE = re.compile(r'^[0-9a-f]{64}\.json$')

# Per-key locks are striped over a fixed pool so the pool never grows
KEY_LOCK_STRIPES = 64


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheKey:
    """Identity of a cached fetch: origin document, depth and node selection.

    ``node_ids`` is normalized (sorted, deduplicated) so the same selection
    always maps to the same entry. An empty selection means the whole file.
    """

    origin_id: str
    depth: Optional[int] = None
    node_ids: Tuple[str, ...] = ()

    def __post_init__(self):
        if isinstance(self.node_ids, str):
            raise TypeError(
                f"node_ids must be a sequence of ids, not the string {self.node_ids!r} "
                "(use validation.parse_node_ids to split a comma separated list)"
            )
        object.__setattr__(self, 'node_ids', tuple(sorted(set(self.node_ids))))

    @classmethod
    def for_file(cls, origin_id: str, depth: Optional[int] = None) -> 'CacheKey':
        return cls(origin_id, depth)

    @classmethod
    def for_nodes(cls, origin_id: str, node_ids, depth: Optional[int] = None) -> 'CacheKey':
        return cls(origin_id, depth, node_ids)

    @property
    def kind(self) -> str:
        return 'nodes' if self.node_ids else 'file'

    @property
    def digest(self) -> str:
        """SHA-256 hex digest of the canonical key encoding."""
        canonical = json.dumps(
            [self.kind, self.origin_id, self.depth, list(self.node_ids)],
            separators=(',', ':'),
            ensure_ascii=False,
        )
        return hashlib.sha256(canonical.encode('utf-8')).hexdigest()

    def __str__(self) -> str:
        parts = [self.origin_id]
        if self.depth is not None:
            parts.append(f"depth={self.depth}")
        if self.node_ids:
            parts.append(f"nodes={','.join(self.node_ids)}")
        return ' '.join(parts)


@dataclass(frozen=True)
class CacheMetadata:
    """Index record for one cached document."""

    key: str                          # Digest, also the payload file stem
    origin_id: str
    depth: Optional[int]
    node_ids: Tuple[str, ...]
    version: Optional[str]
    created_at: datetime
    accessed_at: datetime
    ttl_seconds: float
    size_bytes: int
    snapshot: str = ''                # Identifies one put; matches the payload file

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()

    def is_expired(self, now: datetime) -> bool:
        # ttl_seconds == 0 means expired immediately
        return self.age_seconds(now) >= self.ttl_seconds

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['node_ids'] = list(self.node_ids)
        data['created_at'] = self.created_at.isoformat()
        data['accessed_at'] = self.accessed_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CacheMetadata':
        return cls(
            key=data['key'],
            origin_id=data['origin_id'],
            depth=data.get('depth'),
            node_ids=tuple(data.get('node_ids') or ()),
            version=data.get('version'),
            created_at=datetime.fromisoformat(data['created_at']),
            accessed_at=datetime.fromisoformat(data['accessed_at']),
            ttl_seconds=float(data['ttl_seconds']),
            size_bytes=int(data['size_bytes']),
            snapshot=data.get('snapshot', ''),
        )


@dataclass(frozen=True)
class CacheEntry:
    metadata: CacheMetadata
    document: Document


@dataclass(frozen=True)
class CacheStats:
    total_entries: int
    total_size_bytes: int
    expired_entries: int
    default_ttl_seconds: float
    cache_dir: Path
    hits: int = 0
    misses: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['cache_dir'] = str(self.cache_dir)
        return data


class DocumentCache:
    """
    Thread-safe on-disk cache of decoded documents with TTL expiry.

    Expired entries are evicted lazily when looked up, or in bulk by
    ``purge_expired()``. Corrupt payloads are treated as misses and evicted.

    Example:
        cache = DocumentCache(Path("~/.cache/figtree").expanduser())
        key = CacheKey.for_file("AbCdEf...")
        document = cache.get(key)
        if document is None:
            document = decode_document(fetch(...))
            cache.put(key, document)
    """

    def __init__(self,
                 cache_dir: Path,
                 default_ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 memory_entries: int = 32,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Open (or create) a cache directory.

        Args:
            cache_dir: Directory holding the index and payload files
            default_ttl_seconds: TTL for puts that do not pass one
            memory_entries: Decoded documents kept in memory (0 disables)
            clock: Returns the current time as an aware datetime

        Raises:
            CacheWriteError: If the directory cannot be created
        """
        if default_ttl_seconds < 0:
            raise ValueError("default_ttl_seconds cannot be negative")

        self.cache_dir = Path(cache_dir)
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock or _utcnow

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheWriteError(f"Cannot create cache directory {self.cache_dir}: {e}") from e

        self._lock = ReadWriteLock()
        self._persist_lock = threading.Lock()
        self._key_locks: List[threading.Lock] = [threading.Lock() for _ in range(KEY_LOCK_STRIPES)]

        # digest -> (snapshot, document)
        self._memo: Optional[LRUCache] = LRUCache(maxsize=memory_entries) if memory_entries > 0 else None
        self._memo_lock = threading.Lock()

        self.hits = 0
        self.misses = 0

        self._index: Dict[str, CacheMetadata] = self._load_index()

    @classmethod
    def from_config(cls, config: CacheConfig,
                    clock: Optional[Callable[[], datetime]] = None) -> 'DocumentCache':
        return cls(config.directory, config.ttl_seconds, config.memory_entries, clock)

    # Lookup

    def get(self, key: CacheKey) -> Optional[Document]:
        """Return the cached document for ``key``, or None on a miss."""
        entry = self.get_entry(key)
        return entry.document if entry is not None else None

    def get_entry(self, key: CacheKey) -> Optional[CacheEntry]:
        """Return the cached document and its metadata, or None on a miss.

        A hit bumps ``accessed_at``. Expired and unreadable entries are
        evicted and reported as misses.
        """
        digest = key.digest
        now = self._clock()

        with self._lock.read_locked():
            meta = self._index.get(digest)

        if meta is None:
            logger.debug("Cache miss for %s", key)
            self._count(hit=False)
            return None

        if meta.is_expired(now):
            logger.debug("Cache entry for %s expired after %.0fs", key, meta.age_seconds(now))
            self._evict(digest, meta)
            self._count(hit=False)
            return None

        try:
            document = self._load_document(digest, meta)
        except CacheCorrupt as e:
            logger.warning("%s; evicting", e)
            self._evict(digest, meta)
            self._count(hit=False)
            return None

        if document is None:
            # The payload holds another snapshot. Either a concurrent put moved
            # the index on (the evict is a no-op) or this entry is dead.
            logger.debug("Cache entry for %s does not match its payload", key)
            self._evict(digest, meta)
            self._count(hit=False)
            return None

        updated = replace(meta, accessed_at=now)
        with self._lock.write_locked():
            current = self._index.get(digest)
            if current is not None and current.snapshot == meta.snapshot:
                self._index[digest] = updated
        self._persist_quietly()

        logger.debug("Cache hit for %s", key)
        self._count(hit=True)
        return CacheEntry(updated, document)

    def contains(self, key: CacheKey) -> bool:
        """True if an unexpired entry exists for ``key`` (no side effects)."""
        now = self._clock()
        with self._lock.read_locked():
            meta = self._index.get(key.digest)
        return meta is not None and not meta.is_expired(now)

    # Mutation

    def put(self, key: CacheKey, document: Document,
            ttl_seconds: Optional[float] = None) -> CacheMetadata:
        """Store ``document`` under ``key``, replacing any previous entry.

        Args:
            key: Cache key
            document: Document to store
            ttl_seconds: Override the default TTL for this entry

        Returns:
            Metadata of the new entry

        Raises:
            CacheWriteError: If the payload or index cannot be written. The
                previous entry (if any) is left in place.
        """
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl < 0:
            raise ValueError("ttl_seconds cannot be negative")

        digest = key.digest
        snapshot = uuid.uuid4().hex
        payload = {
            'key': digest,
            'origin_id': key.origin_id,
            'depth': key.depth,
            'node_ids': list(key.node_ids),
            'snapshot': snapshot,
            'document': encode_document(document),
        }
        try:
            data = json.dumps(payload, indent=2, ensure_ascii=False).encode('utf-8')
        except (TypeError, ValueError) as e:
            raise CacheWriteError(f"Document for {key} is not serializable: {e}") from e

        now = self._clock()
        meta = CacheMetadata(
            key=digest,
            origin_id=key.origin_id,
            depth=key.depth,
            node_ids=key.node_ids,
            version=document.version,
            created_at=now,
            accessed_at=now,
            ttl_seconds=ttl,
            size_bytes=len(data),
            snapshot=snapshot,
        )

        path = self._payload_path(digest)
        with self._key_lock(digest):
            with self._lock.read_locked():
                previous = self._index.get(digest)
            previous_data = self._read_payload_bytes(path) if previous is not None else None

            self._write_atomic(path, data)
            with self._lock.write_locked():
                self._index[digest] = meta
            self._remember(digest, snapshot, document)

            # The put commits only once the index is on disk
            try:
                self._persist_index()
            except CacheWriteError:
                self._rollback_put(digest, meta, previous, previous_data)
                raise

        logger.debug("Cached %s (%d bytes, ttl %ss)", key, len(data), ttl)
        return meta

    def invalidate(self, key: CacheKey) -> bool:
        """Remove the entry for ``key``. Returns True if one existed."""
        digest = key.digest
        with self._key_lock(digest):
            with self._lock.write_locked():
                meta = self._index.pop(digest, None)
            if meta is None:
                return False
            self._forget(digest)
            self._remove_payload(digest)
        self._persist_index()
        return True

    def purge_expired(self) -> int:
        """Evict every expired entry. Returns the number removed."""
        now = self._clock()
        with self._lock.read_locked():
            expired = [meta for meta in self._index.values() if meta.is_expired(now)]

        removed = 0
        for meta in expired:
            if self._evict(meta.key, meta, persist=False):
                removed += 1
        if removed:
            self._persist_index()
            logger.debug("Purged %d expired cache entries", removed)
        return removed

    def clear(self) -> int:
        """Remove every entry and payload file. Returns the number of entries."""
        with self._lock.write_locked():
            count = len(self._index)
            self._index.clear()
        if self._memo is not None:
            with self._memo_lock:
                self._memo.clear()

        for path in self.cache_dir.iterdir():
            if _DIGEST_FILE.match(path.name):
                try:
                    path.unlink()
                except FileNotFoundError:
                    pass
                except OSError as e:
                    raise CacheWriteError(f"Cannot remove {path}: {e}") from e

        self._persist_index()
        logger.debug("Cleared %d cache entries", count)
        return count

    # Introspection

    def stats(self) -> CacheStats:
        now = self._clock()
        with self._lock.read_locked():
            entries = list(self._index.values())
        return CacheStats(
            total_entries=len(entries),
            total_size_bytes=sum(meta.size_bytes for meta in entries),
            expired_entries=sum(1 for meta in entries if meta.is_expired(now)),
            default_ttl_seconds=self.default_ttl_seconds,
            cache_dir=self.cache_dir,
            hits=self.hits,
            misses=self.misses,
        )

    def list(self) -> List[CacheMetadata]:
        """All index entries, oldest first."""
        with self._lock.read_locked():
            entries = list(self._index.values())
        return sorted(entries, key=lambda meta: meta.created_at)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._index)

    # Internals

    def _payload_path(self, digest: str) -> Path:
        return self.cache_dir / f"{digest}.json"

    def _key_lock(self, digest: str) -> threading.Lock:
        # Never held two at a time, so keys sharing a stripe cannot deadlock
        return self._key_locks[int(digest[:8], 16) % KEY_LOCK_STRIPES]

    def _count(self, hit: bool) -> None:
        with self._memo_lock:
            if hit:
                self.hits += 1
            else:
                self.misses += 1

    def _remember(self, digest: str, snapshot: str, document: Document) -> None:
        if self._memo is None:
            return
        with self._memo_lock:
            self._memo[digest] = (snapshot, document)

    def _forget(self, digest: str) -> None:
        if self._memo is None:
            return
        with self._memo_lock:
            self._memo.pop(digest, None)

    def _load_document(self, digest: str, meta: CacheMetadata) -> Optional[Document]:
        """Decode the payload for ``meta``.

        Returns None if the payload belongs to a newer snapshot.

        Raises:
            CacheCorrupt: If the payload is missing or cannot be decoded
        """
        if self._memo is not None:
            with self._memo_lock:
                memoized = self._memo.get(digest)
            if memoized is not None and memoized[0] == meta.snapshot:
                return memoized[1]

        path = self._payload_path(digest)
        try:
            raw = json.loads(path.read_text(encoding='utf-8'))
        except FileNotFoundError:
            raise CacheCorrupt(digest, "payload file is missing") from None
        except (OSError, ValueError) as e:
            raise CacheCorrupt(digest, str(e)) from e

        if not isinstance(raw, dict) or 'document' not in raw:
            raise CacheCorrupt(digest, "payload has no document")
        if raw.get('snapshot', '') != meta.snapshot:
            return None

        try:
            document = decode_document(raw['document'])
        except MalformedDocument as e:
            raise CacheCorrupt(digest, str(e)) from e

        self._remember(digest, meta.snapshot, document)
        return document

    def _evict(self, digest: str, meta: CacheMetadata, persist: bool = True) -> bool:
        """Remove the entry if it still holds the snapshot described by ``meta``."""
        with self._key_lock(digest):
            with self._lock.write_locked():
                current = self._index.get(digest)
                if current is None or current.snapshot != meta.snapshot:
                    return False
                del self._index[digest]
            self._forget(digest)
            try:
                self._remove_payload(digest)
            except CacheWriteError as e:
                logger.warning("%s", e)
        if persist:
            self._persist_quietly()
        return True

    def _read_payload_bytes(self, path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except OSError:
            return None

    def _rollback_put(self, digest: str, meta: CacheMetadata,
                      previous: Optional[CacheMetadata], previous_data: Optional[bytes]) -> None:
        """Undo a put whose index could not be persisted. Caller holds the key lock.

        The previous entry and its payload come back when the old payload
        was read before being replaced; otherwise the key is dropped.
        """
        self._forget(digest)
        restored = False
        if previous is not None and previous_data is not None:
            try:
                self._write_atomic(self._payload_path(digest), previous_data)
                restored = True
            except CacheWriteError as e:
                logger.warning("Could not restore previous payload: %s", e)

        with self._lock.write_locked():
            current = self._index.get(digest)
            if current is not None and current.snapshot == meta.snapshot:
                if restored:
                    self._index[digest] = previous
                else:
                    del self._index[digest]

        if not restored:
            try:
                self._remove_payload(digest)
            except CacheWriteError as e:
                logger.warning("%s", e)
        logger.warning("Rolled back cache write for %s", digest)

    def _remove_payload(self, digest: str) -> None:
        try:
            self._payload_path(digest).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CacheWriteError(f"Cannot remove payload {digest}: {e}") from e

    def _persist_index(self) -> None:
        """Write a consistent snapshot of the index to disk.

        Must not be called while holding the write lock.
        """
        with self._persist_lock:
            with self._lock.read_locked():
                entries = {digest: meta.to_dict() for digest, meta in self._index.items()}
            data = json.dumps({'version': INDEX_VERSION, 'entries': entries},
                              indent=2, sort_keys=True, ensure_ascii=False)
            self._write_atomic(self.cache_dir / INDEX_FILE, data.encode('utf-8'))

    def _persist_quietly(self) -> None:
        # Used on read paths, where a failed index write must not fail the lookup
        try:
            self._persist_index()
        except CacheWriteError as e:
            logger.warning("Could not persist cache index: %s", e)

    def _write_atomic(self, path: Path, data: bytes) -> None:
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(dir=self.cache_dir, prefix='.tmp-', suffix='.json',
                                             delete=False) as tmp:
                tmp_path = tmp.name
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
            raise CacheWriteError(f"Cannot write {path}: {e}") from e

    def _load_index(self) -> Dict[str, CacheMetadata]:
        path = self.cache_dir / INDEX_FILE
        if not path.exists():
            return {}
        try:
            raw = json.loads(path.read_text(encoding='utf-8'))
            if raw.get('version') != INDEX_VERSION:
                logger.warning("Ignoring cache index %s with unsupported version %r",
                               path, raw.get('version'))
                return {}
            return {digest: CacheMetadata.from_dict(item) for digest, item in raw['entries'].items()}
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Ignoring unreadable cache index %s: %s", path, e)
            return {}
