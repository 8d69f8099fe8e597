import logging

from sitecrawl.storage.render_cache import CacheEntry, RedisCacheBackend, RenderCache

from conftest import FakeClock, MemoryCacheBackend


class RecordingRedis:
    """Minimal async client exposing the calls RedisCacheBackend makes."""

    def __init__(self):
        self.data = {}
        self.expiry = {}
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value.encode('utf-8') if isinstance(value, str) else value
        self.expiry[key] = ex

    async def delete(self, *keys):
        for key in keys:
            self.data.pop(key, None)

    async def scan_iter(self, match=None):
        prefix = match.rstrip('*') if match else ''
        for key in list(self.data):
            if key.startswith(prefix):
                yield key

    async def aclose(self):
        self.closed = True


async def test_set_then_get_returns_entry():
    cache = RenderCache(clock=FakeClock())

    await cache.set("https://example.com", "<html>hi</html>", "Hi")
    entry = await cache.get("https://example.com")

    assert entry.html == "<html>hi</html>"
    assert entry.title == "Hi"
    assert entry.ttl == 3600
    assert cache.stats['memory_hits'] == 1


async def test_entry_expires_after_ttl():
    clock = FakeClock()
    cache = RenderCache(clock=clock)
    await cache.set("https://example.com", "<html></html>", "T", ttl=10)

    clock.advance(9)
    assert await cache.get("https://example.com") is not None

    clock.advance(2)
    assert await cache.get("https://example.com") is None
    assert cache.stats['misses'] == 1


async def test_zero_ttl_is_kept_and_never_served():
    cache = RenderCache(clock=FakeClock())

    entry = await cache.set("https://example.com", "<html></html>", "T", ttl=0)

    assert entry.ttl == 0
    assert await cache.get("https://example.com") is None


async def test_memory_tier_evicts_oldest_first():
    cache = RenderCache(max_memory_entries=2, clock=FakeClock())

    for name in ("a", "b", "c"):
        await cache.set(f"https://example.com/{name}", name, name)

    assert len(cache) == 2
    assert await cache.get("https://example.com/a") is None
    assert (await cache.get("https://example.com/c")).html == "c"
    assert cache.stats['evictions'] == 1


async def test_rewriting_a_key_does_not_evict():
    cache = RenderCache(max_memory_entries=2, clock=FakeClock())

    await cache.set("https://example.com/a", "1", "a")
    await cache.set("https://example.com/b", "1", "b")
    await cache.set("https://example.com/a", "2", "a")

    assert len(cache) == 2
    assert cache.stats['evictions'] == 0
    assert (await cache.get("https://example.com/a")).html == "2"


async def test_backend_hit_backfills_memory():
    clock = FakeClock()
    backend = MemoryCacheBackend()
    backend.entries["https://example.com"] = CacheEntry(
        url="https://example.com", html="<p>stored</p>", title="Stored",
        timestamp=clock(), ttl=60
    )
    cache = RenderCache(backend=backend, clock=clock)

    entry = await cache.get("https://example.com")

    assert entry.html == "<p>stored</p>"
    assert len(cache) == 1
    assert cache.stats['backend_hits'] == 1

    backend.entries.clear()
    assert (await cache.get("https://example.com")).title == "Stored"


async def test_stale_backend_entry_is_a_miss():
    clock = FakeClock()
    backend = MemoryCacheBackend()
    backend.entries["https://example.com"] = CacheEntry(
        url="https://example.com", html="old", title="Old",
        timestamp=clock() - 120, ttl=60
    )
    cache = RenderCache(backend=backend, clock=clock)

    assert await cache.get("https://example.com") is None
    assert len(cache) == 0


async def test_backend_writes_happen_in_background():
    backend = MemoryCacheBackend()
    cache = RenderCache(backend=backend, clock=FakeClock())

    await cache.set("https://example.com", "<html></html>", "T")
    await cache.flush()

    assert "https://example.com" in backend.entries
    assert cache.stats['writes'] == 1


async def test_backend_write_failure_is_logged(caplog):
    backend = MemoryCacheBackend()
    backend.fail_writes = True
    cache = RenderCache(backend=backend, clock=FakeClock())

    with caplog.at_level(logging.ERROR):
        entry = await cache.set("https://example.com", "<html></html>", "T")
        await cache.flush()

    assert entry.url == "https://example.com"
    assert cache.stats['write_errors'] == 1
    assert "Failed to save https://example.com" in caplog.text
    assert await cache.get("https://example.com") is not None


async def test_backend_read_failure_is_a_miss():
    backend = MemoryCacheBackend()
    backend.fail_reads = True
    cache = RenderCache(backend=backend, clock=FakeClock())

    assert await cache.get("https://example.com") is None


async def test_sweep_removes_expired_memory_entries():
    clock = FakeClock()
    cache = RenderCache(clock=clock)
    await cache.set("https://example.com/short", "x", "x", ttl=5)
    await cache.set("https://example.com/long", "y", "y", ttl=500)

    clock.advance(10)

    assert cache.sweep_expired() == 1
    assert len(cache) == 1


async def test_close_drains_writes_and_closes_backend():
    backend = MemoryCacheBackend()
    cache = RenderCache(backend=backend, clock=FakeClock())
    await cache.start()
    await cache.set("https://example.com", "x", "x")

    await cache.close()

    assert backend.closed
    assert "https://example.com" in backend.entries


async def test_clear_all_empties_both_tiers():
    backend = MemoryCacheBackend()
    cache = RenderCache(backend=backend, clock=FakeClock())
    await cache.set("https://example.com", "x", "x")
    await cache.flush()

    await cache.clear_all()

    assert len(cache) == 0
    assert backend.entries == {}


async def test_redis_backend_round_trip():
    client = RecordingRedis()
    backend = RedisCacheBackend(client, key_prefix="test:")
    entry = CacheEntry(url="https://example.com", html="<p>é</p>", title="T",
                       timestamp=100.0, ttl=30)

    await backend.set(entry)
    loaded = await backend.get("https://example.com")

    assert loaded == entry
    assert client.expiry["test:https://example.com"] == 30
    assert await backend.get("https://example.com/other") is None

    await backend.clear()
    assert client.data == {}

    await backend.close()
    assert client.closed


def test_cache_entry_validity():
    entry = CacheEntry(url="u", html="", title="", timestamp=100.0, ttl=10)
    assert entry.is_valid(109.9)
    assert not entry.is_valid(110.0)
