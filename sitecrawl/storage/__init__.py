"""
Storage layer for the site crawler.
"""

from .render_cache import RenderCache, CacheEntry, CacheBackend, RedisCacheBackend
from .chunk_store import (
    ChunkStore, ChunkStoreError, FileChunkStore, SourceRegistry, split_into_chunks
)

__all__ = [
    'RenderCache', 'CacheEntry', 'CacheBackend', 'RedisCacheBackend',
    'ChunkStore', 'ChunkStoreError', 'FileChunkStore', 'SourceRegistry', 'split_into_chunks',
]
