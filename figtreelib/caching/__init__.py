"""
Persistent document cache for FigTreeLib.
"""

from .store import CacheEntry, CacheKey, CacheMetadata, CacheStats, DocumentCache

__all__ = [
    'CacheEntry',
    'CacheKey',
    'CacheMetadata',
    'CacheStats',
    'DocumentCache',
]
