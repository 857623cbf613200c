"""FigTreeLib - cached document pipeline for design files.

FigTreeLib fetches hierarchical design documents (Figma-style file JSON)
through a local content-keyed cache, decodes them into a typed node tree,
and lets you walk and query that tree.

Typical use:
━━━━━━━━━━━━━━━━━━━━━━━━━━
    from figtreelib import CoreConfig, open_cache, fetch_document, query

    config = CoreConfig.from_env()
    cache = open_cache(config)
    document = await fetch_document(transport, file_key, cache=cache, config=config)
    query(document, "document.children[*].name")
━━━━━━━━━━━━━━━━━━━━━━━━━━

The transport (HTTP client, authentication) is supplied by the application;
see ``figtreelib.aio.Transport``.
"""

__version__ = "0.1.0"

from .errors import (
    CacheCorrupt,
    CacheError,
    CacheWriteError,
    ConfigError,
    CoreError,
    EvaluationError,
    InvalidExpression,
    MalformedDocument,
    NetworkError,
    NotFound,
    QueryError,
    RateLimited,
    TransportError,
    TransportFatal,
    TransportTransient,
    Unauthorized,
    ValidationError,
)
from .config import CacheConfig, CoreConfig, PerformanceConfig, RetryConfig, StatusMapping
from .core import (
    Document,
    FunctionVisitor,
    Node,
    NodeType,
    NodeVisitor,
    TextExtractor,
    decode_document,
    decode_node,
    encode_document,
    encode_node,
    iter_nodes,
    traverse_pages,
)
from .caching import CacheKey, CacheMetadata, CacheStats, DocumentCache
from .query import QueryEngine, to_structured_value, validate_query
from .aio import (
    FetchOrchestrator,
    FetchRequest,
    FetchState,
    RetryPolicy,
    Transport,
    cache_clear,
    cache_list,
    cache_stats,
    error_from_status,
    extract_texts,
    fetch_document,
    open_cache,
    query,
    summarize_pages,
    traverse,
)

__all__ = [
    "__version__",
    # Errors
    "CoreError",
    "MalformedDocument",
    "CacheError",
    "CacheCorrupt",
    "CacheWriteError",
    "TransportError",
    "TransportTransient",
    "TransportFatal",
    "RateLimited",
    "NetworkError",
    "Unauthorized",
    "NotFound",
    "QueryError",
    "InvalidExpression",
    "EvaluationError",
    "ConfigError",
    "ValidationError",
    # Configuration
    "CoreConfig",
    "CacheConfig",
    "RetryConfig",
    "PerformanceConfig",
    "StatusMapping",
    # Document model and traversal
    "Document",
    "Node",
    "NodeType",
    "NodeVisitor",
    "FunctionVisitor",
    "TextExtractor",
    "decode_document",
    "encode_document",
    "decode_node",
    "encode_node",
    "iter_nodes",
    "traverse_pages",
    # Cache
    "CacheKey",
    "CacheMetadata",
    "CacheStats",
    "DocumentCache",
    # Query
    "QueryEngine",
    "to_structured_value",
    "validate_query",
    # Fetching and high-level API
    "Transport",
    "error_from_status",
    "RetryPolicy",
    "FetchOrchestrator",
    "FetchRequest",
    "FetchState",
    "fetch_document",
    "traverse",
    "query",
    "extract_texts",
    "summarize_pages",
    "open_cache",
    "cache_stats",
    "cache_list",
    "cache_clear",
]
