from __future__ import annotations

import asyncio

import pytest

from conftest import FakeLoop, drain
from custom_components.simplisafe3.cache import RequestCache


class _Upstream:
    """Counts calls and lets the test decide when each one settles."""

    def __init__(self) -> None:
        self.calls = 0
        self.release = asyncio.Event()
        self.error: Exception | None = None

    async def fetch(self) -> dict[str, int]:
        self.calls += 1
        call = self.calls
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return {"call": call}


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_request() -> None:
    loop = FakeLoop()
    cache = RequestCache(ttl=3.0, loop=loop)
    upstream = _Upstream()

    waiters = [
        asyncio.create_task(cache.async_get("sub", upstream.fetch)) for _ in range(5)
    ]
    await drain()
    assert upstream.calls == 1
    assert "sub" in cache

    upstream.release.set()
    results = await asyncio.gather(*waiters)

    assert results == [{"call": 1}] * 5
    assert upstream.calls == 1


@pytest.mark.asyncio
async def test_ttl_runs_from_completion() -> None:
    loop = FakeLoop()
    cache = RequestCache(ttl=3.0, loop=loop)
    upstream = _Upstream()

    pending = asyncio.create_task(cache.async_get("sub", upstream.fetch))
    await drain()
    # Time spent in flight does not count against the TTL.
    loop.advance(10.0)
    assert "sub" in cache

    upstream.release.set()
    assert await pending == {"call": 1}

    loop.advance(2.9)
    assert await cache.async_get("sub", upstream.fetch) == {"call": 1}
    assert upstream.calls == 1

    loop.advance(0.2)
    assert "sub" not in cache
    assert await cache.async_get("sub", upstream.fetch) == {"call": 2}
    assert upstream.calls == 2


@pytest.mark.asyncio
async def test_errors_are_shared_then_expire() -> None:
    loop = FakeLoop()
    cache = RequestCache(ttl=3.0, loop=loop)
    upstream = _Upstream()
    upstream.error = RuntimeError("upstream down")
    upstream.release.set()

    results = await asyncio.gather(
        cache.async_get("sensors", upstream.fetch),
        cache.async_get("sensors", upstream.fetch),
        return_exceptions=True,
    )

    assert all(isinstance(item, RuntimeError) for item in results)
    assert results[0] is results[1]
    assert upstream.calls == 1

    with pytest.raises(RuntimeError):
        await cache.async_get("sensors", upstream.fetch)
    assert upstream.calls == 1

    loop.advance(3.0)
    upstream.error = None
    assert await cache.async_get("sensors", upstream.fetch) == {"call": 2}


@pytest.mark.asyncio
async def test_force_refresh_replaces_entry_and_old_eviction_is_ignored() -> None:
    loop = FakeLoop()
    cache = RequestCache(ttl=3.0, loop=loop)
    upstream = _Upstream()
    upstream.release.set()

    assert await cache.async_get("locks", upstream.fetch) == {"call": 1}
    loop.advance(2.0)
    assert await cache.async_get("locks", upstream.fetch, force_refresh=True) == {
        "call": 2
    }

    # The first entry's eviction time passes; the refreshed entry survives.
    loop.advance(1.5)
    assert "locks" in cache
    assert await cache.async_get("locks", upstream.fetch) == {"call": 2}

    loop.advance(1.5)
    assert "locks" not in cache


@pytest.mark.asyncio
async def test_keys_are_independent() -> None:
    loop = FakeLoop()
    cache = RequestCache(ttl=3.0, loop=loop)
    upstream = _Upstream()
    upstream.release.set()

    await cache.async_get("a", upstream.fetch)
    await cache.async_get("b", upstream.fetch)

    assert upstream.calls == 2
    assert len(cache) == 2


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_request() -> None:
    loop = FakeLoop()
    cache = RequestCache(ttl=3.0, loop=loop)
    upstream = _Upstream()

    first = asyncio.create_task(cache.async_get("sub", upstream.fetch))
    second = asyncio.create_task(cache.async_get("sub", upstream.fetch))
    await drain()
    first.cancel()
    await drain()

    upstream.release.set()
    assert await second == {"call": 1}
    assert first.cancelled()


@pytest.mark.asyncio
async def test_clear_cancels_pending_work() -> None:
    loop = FakeLoop()
    cache = RequestCache(ttl=3.0, loop=loop)
    upstream = _Upstream()

    waiter = asyncio.create_task(cache.async_get("sub", upstream.fetch))
    await drain()
    cache.clear()

    with pytest.raises(asyncio.CancelledError):
        await waiter
    assert len(cache) == 0
    assert loop.pending_timers == []


@pytest.mark.asyncio
async def test_zero_ttl_shares_in_flight_only() -> None:
    loop = FakeLoop()
    cache = RequestCache(ttl=0, loop=loop)
    upstream = _Upstream()

    waiters = [
        asyncio.create_task(cache.async_get("user", upstream.fetch)) for _ in range(3)
    ]
    await drain()
    upstream.release.set()
    results = await asyncio.gather(*waiters)

    assert upstream.calls == 1
    assert results == [{"call": 1}] * 3
    assert "user" not in cache
    assert loop.pending_timers == []

    assert await cache.async_get("user", upstream.fetch) == {"call": 2}


@pytest.mark.asyncio
async def test_zero_ttl_does_not_keep_errors() -> None:
    loop = FakeLoop()
    cache = RequestCache(ttl=0, loop=loop)
    upstream = _Upstream()
    upstream.release.set()
    upstream.error = RuntimeError("down")

    with pytest.raises(RuntimeError):
        await cache.async_get("user", upstream.fetch)

    upstream.error = None
    assert await cache.async_get("user", upstream.fetch) == {"call": 2}
