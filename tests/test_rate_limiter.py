from sitecrawl.crawler.rate_limiter import DomainRateLimiter

from conftest import FakeClock


async def test_first_request_does_not_wait():
    clock = FakeClock()
    limiter = DomainRateLimiter(1.0, clock=clock, sleep=clock.sleep)

    assert await limiter.wait("https://example.com/a") == 0.0
    assert clock.sleeps == []


async def test_same_domain_requests_are_spaced():
    clock = FakeClock()
    limiter = DomainRateLimiter(1.0, clock=clock, sleep=clock.sleep)
    starts = []

    for path in ("a", "b", "c"):
        await limiter.wait(f"https://Example.com/{path}")
        starts.append(clock())

    assert all(later - earlier >= 1.0 for earlier, later in zip(starts, starts[1:]))
    assert limiter.get_stats()['throttled'] == 2


async def test_only_remaining_delay_is_slept():
    clock = FakeClock()
    limiter = DomainRateLimiter(1.0, clock=clock, sleep=clock.sleep)

    await limiter.wait("https://example.com/a")
    clock.advance(0.75)
    waited = await limiter.wait("https://example.com/b")

    assert abs(waited - 0.25) < 1e-9


async def test_domains_are_independent():
    clock = FakeClock()
    limiter = DomainRateLimiter(1.0, clock=clock, sleep=clock.sleep)

    await limiter.wait("https://example.com/")
    assert await limiter.wait("https://other.org/") == 0.0
    assert limiter.get_stats()['domains'] == 2


async def test_unparseable_url_is_not_throttled():
    clock = FakeClock()
    limiter = DomainRateLimiter(1.0, clock=clock, sleep=clock.sleep)
    assert await limiter.wait("not a url") == 0.0


async def test_reset_forgets_domains():
    clock = FakeClock()
    limiter = DomainRateLimiter(1.0, clock=clock, sleep=clock.sleep)

    await limiter.wait("https://example.com/")
    limiter.reset()

    assert await limiter.wait("https://example.com/") == 0.0
