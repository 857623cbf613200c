"""High-level API for FigTreeLib.

Simple functions covering the common operations: fetch a document through
the cache, walk it, query it, extract its text, and manage the cache.
Applications that fetch many documents should build one
``FetchOrchestrator`` and reuse it so the concurrency limit is shared.
"""

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..caching.store import CacheMetadata, CacheStats, DocumentCache
from ..config import CoreConfig
from ..core.collector import ExtractedText, PageSummary, TextExtractor, summarize_page
from ..core.document import Document
from ..core.traverser import NodeVisitor, traverse_document
from ..query import query as _query
from .orchestrator import FetchOrchestrator
from .transport import Transport


def open_cache(config: Optional[CoreConfig] = None,
               cache_dir: Optional[Path] = None) -> DocumentCache:
    """Open the document cache described by ``config``.

    Args:
        config: Configuration (defaults to ``CoreConfig()``)
        cache_dir: Overrides ``config.cache.directory``
    """
    config = config or CoreConfig()
    cache_config = config.cache
    return DocumentCache(
        cache_dir if cache_dir is not None else cache_config.directory,
        cache_config.ttl_seconds,
        cache_config.memory_entries,
    )


async def fetch_document(
    transport: Transport,
    origin_id: str,
    depth: Optional[int] = None,
    node_ids: Optional[Sequence[str]] = None,
    cache: Optional[DocumentCache] = None,
    config: Optional[CoreConfig] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Document:
    """Fetch a document through the cache.

    Args:
        transport: Performs the remote fetch on a cache miss
        origin_id: File key of the document
        depth: Maximum tree depth (None = full tree)
        node_ids: Fetch only these nodes
        cache: Cache to use (None = fetch without caching)
        config: Retry and concurrency settings
        sleep: Awaitable used for backoff waits

    Returns:
        The decoded document

    Example:
        >>> cache = open_cache()
        >>> document = await fetch_document(transport, "AbCdEf...", cache=cache)
    """
    orchestrator = FetchOrchestrator(transport, cache, config, sleep=sleep)
    return await orchestrator.fetch_document(origin_id, depth, node_ids)


def traverse(document: Document, visitor: NodeVisitor) -> None:
    """Walk the whole document depth-first, calling ``visitor.visit_node``."""
    traverse_document(document, visitor)


def query(document: Document, expression: str) -> Any:
    """Evaluate a JMESPath expression against the document."""
    return _query(document, expression)


def extract_texts(document: Document, page_ids: Optional[Sequence[str]] = None) -> List[ExtractedText]:
    """Collect non-blank text from ``TEXT`` and ``STICKY`` nodes.

    Args:
        document: Document to read
        page_ids: Restrict extraction to these pages

    Returns:
        Texts in traversal order, numbered from 0
    """
    return TextExtractor().collect(document, page_ids)


def summarize_pages(document: Document) -> List[PageSummary]:
    """Frame and text counts for every page of the document."""
    return [summarize_page(page) for page in document.pages]


def cache_stats(cache: DocumentCache) -> CacheStats:
    return cache.stats()


def cache_list(cache: DocumentCache) -> List[CacheMetadata]:
    return cache.list()


def cache_clear(cache: DocumentCache) -> int:
    """Remove every cached document. Returns the number removed."""
    return cache.clear()


def cache_summary(cache: DocumentCache) -> Dict[str, Any]:
    """Cache statistics plus per-entry metadata, JSON-ready."""
    return {
        'stats': cache.stats().to_dict(),
        'entries': [meta.to_dict() for meta in cache.list()],
    }
