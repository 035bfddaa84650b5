"""
Test the in-memory response cache.
"""
import asyncio

import pytest

from app.services.cache_service import (
    ResponseCache,
    compute_etag,
    etag_matches,
    make_fingerprint,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingCompute:
    def __init__(self, payload=b'{"value":1}'):
        self.calls = 0
        self.payload = payload

    async def __call__(self):
        self.calls += 1
        return self.payload


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResponseCache(max_size=10, default_ttl=60, clock=clock)


@pytest.mark.asyncio
async def test_second_call_within_ttl_is_a_hit(cache):
    compute = CountingCompute()

    first = await cache.get_or_compute("/companies|page=1", compute, 60)
    second = await cache.get_or_compute("/companies|page=1", compute, 60)

    assert compute.calls == 1
    assert first.hit is False
    assert second.hit is True
    assert second.payload == first.payload
    assert second.etag == first.etag == compute_etag(b'{"value":1}')


@pytest.mark.asyncio
async def test_entry_expires_after_ttl(cache, clock):
    compute = CountingCompute()

    await cache.get_or_compute("key", compute, 30)
    clock.advance(29)
    assert (await cache.get_or_compute("key", compute, 30)).hit is True

    clock.advance(1.5)
    lookup = await cache.get_or_compute("key", compute, 30)
    assert lookup.hit is False
    assert compute.calls == 2


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_compute(cache):
    calls = 0

    async def slow_compute():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return b"[1,2,3]"

    lookups = await asyncio.gather(*(cache.get_or_compute("/x", slow_compute) for _ in range(5)))

    assert calls == 1
    assert [lookup.hit for lookup in lookups] == [False, True, True, True, True]
    assert {lookup.payload for lookup in lookups} == {b"[1,2,3]"}
    assert len({lookup.etag for lookup in lookups}) == 1


@pytest.mark.asyncio
async def test_concurrent_waiters_see_compute_error(cache):
    calls = 0

    async def failing_compute():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        raise LookupError("no rows")

    results = await asyncio.gather(
        *(cache.get_or_compute("/x", failing_compute) for _ in range(3)),
        return_exceptions=True,
    )

    assert calls == 1
    assert all(isinstance(result, LookupError) for result in results)
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_waiter_recomputes_when_first_caller_is_cancelled(cache):
    started = asyncio.Event()

    async def hanging_compute():
        started.set()
        await asyncio.sleep(10)

    first = asyncio.ensure_future(cache.get_or_compute("/x", hanging_compute))
    await started.wait()
    waiter = asyncio.ensure_future(cache.get_or_compute("/x", CountingCompute()))
    await asyncio.sleep(0)

    first.cancel()
    lookup = await waiter

    assert lookup.hit is False
    assert lookup.payload == b'{"value":1}'


@pytest.mark.asyncio
async def test_default_ttl_applies(cache, clock):
    compute = CountingCompute()
    await cache.get_or_compute("key", compute)
    clock.advance(61)
    assert (await cache.get_or_compute("key", compute)).hit is False


@pytest.mark.asyncio
async def test_compute_errors_propagate_and_are_not_cached(cache):
    async def failing():
        raise LookupError("not found")

    with pytest.raises(LookupError):
        await cache.get_or_compute("key", failing)

    assert len(cache) == 0


@pytest.mark.asyncio
async def test_store_failure_degrades_to_miss(cache, monkeypatch):
    def broken_set(*args, **kwargs):
        raise MemoryError("no room")

    monkeypatch.setattr(cache, "set", broken_set)
    compute = CountingCompute()

    lookup = await cache.get_or_compute("key", compute)

    assert lookup.hit is False
    assert lookup.payload == compute.payload
    assert lookup.etag == compute_etag(compute.payload)


def test_eviction_removes_oldest_fifth(clock):
    cache = ResponseCache(max_size=10, default_ttl=600, clock=clock)
    for i in range(10):
        cache.set(f"k{i}", i)
        clock.advance(1)

    # re-reading an old entry does not protect it
    assert cache.get("k0") is not None

    cache.set("k10", 10)

    assert len(cache) == 9
    assert cache.get("k0") is None
    assert cache.get("k1") is None
    assert cache.get("k2") is not None
    assert cache.get("k10") is not None


def test_overwrite_refreshes_write_time(cache, clock):
    cache.set("key", "old")
    clock.advance(50)
    cache.set("key", "new")
    clock.advance(50)

    entry = cache.get("key")
    assert entry is not None
    assert entry.payload == "new"


def test_invalidate_by_prefix(cache):
    cache.set("/companies|page=1", 1)
    cache.set("/companies|page=2", 2)
    cache.set("/companies/AAPL", 3)
    cache.set("/other", 4)

    assert cache.invalidate("/companies|") == 2
    assert len(cache) == 2


def test_fingerprint_uses_declared_params_in_order():
    params = {"limit": "10", "page": "2", "apikey": "secret"}

    fingerprint = make_fingerprint("/companies", params, ("page", "limit", "sector"))

    assert fingerprint == "/companies|page=2|limit=10|sector="
    assert "secret" not in fingerprint
    assert fingerprint == make_fingerprint("/companies", dict(reversed(params.items())), ("page", "limit", "sector"))


def test_fingerprint_with_headers():
    fingerprint = make_fingerprint(
        "/companies", {}, (), headers={"Accept-Language": "fr"}, vary_headers=("Accept-Language",)
    )
    assert fingerprint == "/companies|h:accept-language=fr"


def test_etag_is_content_hash():
    assert compute_etag({"a": 1, "b": 2}) == compute_etag({"b": 2, "a": 1})
    assert compute_etag(b"x") != compute_etag(b"y")
    assert compute_etag("x") == compute_etag(b"x")
    assert compute_etag(b"x").startswith('"')


def test_etag_matching():
    etag = compute_etag(b"payload")

    assert etag_matches(etag, etag)
    assert etag_matches(f'"other", {etag}', etag)
    assert etag_matches(f"W/{etag}", etag)
    assert etag_matches("*", etag)
    assert not etag_matches(None, etag)
    assert not etag_matches('"other"', etag)
