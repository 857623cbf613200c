"""Asynchronous fetch pipeline for FigTreeLib.

The orchestrator drives cache lookups and remote fetches with retry and
bounded concurrency; the transport contract is what applications implement
to reach the remote service.
"""

from .transport import Transport, error_from_status, parse_retry_after
from .retry import RetryPolicy
from .orchestrator import FetchOrchestrator, FetchRequest, FetchState

# High-level API
from .api import (
    cache_clear,
    cache_list,
    cache_stats,
    cache_summary,
    extract_texts,
    fetch_document,
    open_cache,
    query,
    summarize_pages,
    traverse,
)

__all__ = [
    "Transport",
    "error_from_status",
    "parse_retry_after",
    "RetryPolicy",
    "FetchOrchestrator",
    "FetchRequest",
    "FetchState",
    "cache_clear",
    "cache_list",
    "cache_stats",
    "cache_summary",
    "extract_texts",
    "fetch_document",
    "open_cache",
    "query",
    "summarize_pages",
    "traverse",
]
