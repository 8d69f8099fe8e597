"""
Two-tier cache of fetched HTML.

The memory tier is a bounded FIFO consulted first; the persistent tier (Redis)
is written in the background and backfills memory on a hit. Entry validity
(``age < ttl``) is checked on every read, independently for each tier.
"""

import asyncio
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional, Set

import redis.asyncio as redis


@dataclass
class CacheEntry:
    """Cached HTML for one URL."""
    url: str
    html: str
    title: str
    timestamp: float
    ttl: int

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_valid(self, now: float) -> bool:
        return self.age(now) < self.ttl

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_json(cls, data) -> 'CacheEntry':
        if isinstance(data, bytes):
            data = data.decode('utf-8')
        fields = json.loads(data)
        return cls(
            url=fields['url'],
            html=fields['html'],
            title=fields.get('title', ''),
            timestamp=float(fields['timestamp']),
            ttl=int(fields['ttl'])
        )


class CacheBackend:
    """Abstract base class for persistent cache tiers."""

    async def get(self, url: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    async def set(self, entry: CacheEntry):
        raise NotImplementedError

    async def delete(self, url: str):
        raise NotImplementedError

    async def clear(self):
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError


class RedisCacheBackend(CacheBackend):
    """Stores entries as JSON strings in Redis."""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "sitecrawl:render_cache:"):
        self.redis_client = redis_client
        self.key_prefix = key_prefix
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, redis_config) -> 'RedisCacheBackend':
        client = redis.Redis(
            host=redis_config.host,
            port=redis_config.port,
            db=redis_config.db,
            password=redis_config.password,
            decode_responses=False
        )
        return cls(client, key_prefix=redis_config.key_prefix)

    def _key(self, url: str) -> str:
        return f"{self.key_prefix}{url}"

    async def get(self, url: str) -> Optional[CacheEntry]:
        data = await self.redis_client.get(self._key(url))
        if data is None:
            return None
        return CacheEntry.from_json(data)

    async def set(self, entry: CacheEntry):
        # Redis expiry only reclaims space; validity is still checked on read
        await self.redis_client.set(self._key(entry.url), entry.to_json(), ex=max(1, int(entry.ttl)))

    async def delete(self, url: str):
        await self.redis_client.delete(self._key(url))

    async def clear(self):
        keys = [key async for key in self.redis_client.scan_iter(match=f"{self.key_prefix}*")]
        if keys:
            await self.redis_client.delete(*keys)

    async def close(self):
        await self.redis_client.aclose()


class RenderCache:
    """
    HTML cache shared across crawl jobs.

    Persistent writes are fire-and-forget: failures are logged and never reach the
    caller, and a read racing a pending write of the same key may miss.
    """

    def __init__(self, backend: Optional[CacheBackend] = None,
                 max_memory_entries: int = 100, default_ttl: int = 3600,
                 sweep_interval: float = 60.0, clock: Callable[[], float] = time.time):
        self.backend = backend
        self.max_memory_entries = max_memory_entries
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        self._memory: 'OrderedDict[str, CacheEntry]' = OrderedDict()
        self._pending_writes: Set[asyncio.Task] = set()
        self._sweep_task: Optional[asyncio.Task] = None

        self.stats = {
            'memory_hits': 0,
            'backend_hits': 0,
            'misses': 0,
            'writes': 0,
            'write_errors': 0,
            'evictions': 0,
        }

    async def start(self):
        """Start the periodic sweep of expired memory entries."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def get(self, url: str) -> Optional[CacheEntry]:
        """Return a valid entry for ``url`` from memory, then the backend, else None."""
        now = self.clock()

        entry = self._memory.get(url)
        if entry is not None and entry.is_valid(now):
            self.stats['memory_hits'] += 1
            self.logger.debug(f"Memory hit for {url}")
            return entry

        if self.backend is not None:
            try:
                entry = await self.backend.get(url)
            except Exception as e:
                self.logger.warning(f"Cache backend read failed for {url}: {e}")
                entry = None

            if entry is not None and entry.is_valid(self.clock()):
                self._add_to_memory(entry)
                self.stats['backend_hits'] += 1
                self.logger.debug(f"Backend hit for {url}")
                return entry

        self.stats['misses'] += 1
        return None

    async def set(self, url: str, html: str, title: str, ttl: Optional[int] = None) -> CacheEntry:
        """Store an entry in memory now and in the backend in the background."""
        entry = CacheEntry(
            url=url,
            html=html,
            title=title,
            timestamp=self.clock(),
            ttl=self.default_ttl if ttl is None else ttl
        )
        self._add_to_memory(entry)

        if self.backend is not None:
            task = asyncio.create_task(self._save_to_backend(entry))
            self._pending_writes.add(task)
            task.add_done_callback(self._pending_writes.discard)

        self.logger.debug(f"Stored {url} with TTL {entry.ttl}s")
        return entry

    async def _save_to_backend(self, entry: CacheEntry):
        try:
            await self.backend.set(entry)
            self.stats['writes'] += 1
        except Exception as e:
            self.stats['write_errors'] += 1
            self.logger.error(f"Failed to save {entry.url} to cache backend: {e}")

    def _add_to_memory(self, entry: CacheEntry):
        self._memory.pop(entry.url, None)
        while len(self._memory) >= self.max_memory_entries:
            self._memory.popitem(last=False)
            self.stats['evictions'] += 1
        self._memory[entry.url] = entry

    def sweep_expired(self) -> int:
        """Drop expired memory entries. Returns the number removed."""
        now = self.clock()
        expired = [url for url, entry in self._memory.items() if not entry.is_valid(now)]
        for url in expired:
            del self._memory[url]
        if expired:
            self.logger.info(f"Cleaned up {len(expired)} expired cache entries")
        return len(expired)

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep_expired()

    async def flush(self):
        """Wait for outstanding backend writes."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    async def clear_all(self):
        """Clear both tiers."""
        self._memory.clear()
        if self.backend is not None:
            try:
                await self.backend.clear()
                self.logger.info("Cleared all cache entries")
            except Exception as e:
                self.logger.error(f"Failed to clear cache backend: {e}")

    async def close(self):
        """Stop the sweep, drain pending writes and close the backend."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        await self.flush()

        if self.backend is not None:
            await self.backend.close()

    def __len__(self) -> int:
        return len(self._memory)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        now = self.clock()
        stats: Dict[str, Any] = dict(self.stats)
        stats.update({
            'memory_cache_size': len(self._memory),
            'max_memory_cache_size': self.max_memory_entries,
            'pending_writes': len(self._pending_writes),
            'entries': [
                {
                    'url': url,
                    'age': int(entry.age(now)),
                    'ttl': entry.ttl,
                    'expired': not entry.is_valid(now),
                }
                for url, entry in self._memory.items()
            ],
        })
        return stats
