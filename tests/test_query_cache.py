"""Tests for QueryCache and QueryObserver."""

import asyncio
import logging

import httpx
import pytest

from dokuma import HttpError, NetworkError, QueryCache

KEY = ("/api/master/fabrics",)


async def drain() -> None:
    """Let every ready callback on the loop run."""
    for _ in range(5):
        await asyncio.sleep(0)


class Counter:
    """Fetcher returning queued results and counting calls."""

    def __init__(self, *results) -> None:
        self.results = list(results)
        self.calls = 0

    async def __call__(self, key):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        if isinstance(result, asyncio.Future):
            return await result
        return result


class TestObserve:
    """Tests for observe() subscriptions."""

    async def test_observe_fetches_and_notifies(self, cache: QueryCache) -> None:
        fetch = Counter(["Pamuk"])
        seen = []
        q = cache.observe(KEY, fetch, on_change=lambda s: seen.append(s.status))
        assert q.status == "loading"

        snapshot = await q.settled()
        assert snapshot.data == ["Pamuk"]
        assert q.is_success
        assert q.last_fetched_at is not None
        assert seen == ["loading", "success"]
        assert fetch.calls == 1

    async def test_structurally_equal_keys_share_one_request(self, cache: QueryCache) -> None:
        """Two views observing equal keys cause exactly one request."""
        gate = asyncio.get_running_loop().create_future()
        fetch = Counter(gate)

        q1 = cache.observe(["/api/orders", 7, {"page": 1, "size": 20}], fetch)
        q2 = cache.observe(("/api/orders", 7, {"size": 20, "page": 1}), fetch)
        await drain()
        gate.set_result({"id": 7})
        await q1.settled()
        await q2.settled()

        assert fetch.calls == 1
        assert len(cache) == 1
        assert q1.data == q2.data == {"id": 7}

    async def test_fresh_entry_is_not_refetched(self, cache: QueryCache) -> None:
        fetch = Counter(["a"])
        with cache.observe(KEY, fetch) as q:
            await q.settled()
        q2 = cache.observe(KEY, fetch)
        await q2.settled()
        assert fetch.calls == 1
        assert q2.data == ["a"]

    async def test_zero_stale_time_refetches_on_mount(self) -> None:
        cache = QueryCache(stale_time=0, retry=0)
        fetch = Counter(["a"], ["b"])
        try:
            with cache.observe(KEY, fetch) as q:
                await q.settled()
            q2 = cache.observe(KEY, fetch)
            assert q2.data == ["a"]  # Old data stays visible while loading
            await q2.settled()
            assert q2.data == ["b"]
            assert fetch.calls == 2
        finally:
            await cache.close()

    async def test_disabled_observer_does_not_fetch(self, cache: QueryCache) -> None:
        fetch = Counter(["a"])
        q = cache.observe(KEY, fetch, enabled=False)
        await drain()
        assert fetch.calls == 0
        assert q.status == "idle"

        q.set_enabled(True)
        await q.settled()
        assert fetch.calls == 1
        assert q.data == ["a"]

    async def test_no_callbacks_after_close(self, cache: QueryCache) -> None:
        """Unmounting mid-request still fills the cache but notifies nobody."""
        gate = asyncio.get_running_loop().create_future()
        seen = []
        q = cache.observe(KEY, Counter(gate), on_change=seen.append)
        seen.clear()
        q.close()
        q.close()  # Idempotent

        gate.set_result(["late"])
        await drain()
        assert seen == []
        assert cache.get_query_data(KEY) == ["late"]

    async def test_failing_listener_is_logged(self, cache: QueryCache, caplog) -> None:
        def boom(_snapshot) -> None:
            raise RuntimeError("render failed")

        with caplog.at_level(logging.ERROR, logger="dokuma.query_cache"):
            q = cache.observe(KEY, Counter(["a"]), on_change=boom)
            await q.settled()

        assert q.data == ["a"]
        assert "Query listener failed" in caplog.text

    async def test_missing_fetcher_raises(self, cache: QueryCache) -> None:
        with pytest.raises(RuntimeError, match="No fetcher"):
            cache.observe(KEY)


class TestStaleResponses:
    """A response issued earlier never overwrites a later one."""

    async def test_superseded_response_is_discarded(self, cache: QueryCache) -> None:
        loop = asyncio.get_running_loop()
        first, second = loop.create_future(), loop.create_future()
        fetch = Counter(first, second)
        seen = []

        q = cache.observe(KEY, fetch, on_change=lambda s: seen.append(s.data))
        await drain()
        newer = q.refetch()
        await drain()
        assert fetch.calls == 2

        second.set_result(["B"])
        await newer
        first.set_result(["A"])
        await drain()

        assert q.data == ["B"]
        assert cache.get_query_data(KEY) == ["B"]
        assert ["A"] not in seen

    async def test_superseded_error_is_discarded(self, cache: QueryCache) -> None:
        loop = asyncio.get_running_loop()
        first, second = loop.create_future(), loop.create_future()
        q = cache.observe(KEY, Counter(first, second))
        await drain()
        newer = q.refetch()
        await drain()

        second.set_result(["B"])
        await newer
        first.set_exception(HttpError(500, "late failure"))
        await drain()

        assert q.is_success
        assert q.error is None


class TestErrors:
    """Failed reads keep the last good data."""

    async def test_first_failure_has_no_data(self, cache: QueryCache) -> None:
        q = cache.observe(KEY, Counter(HttpError(404, "Not found")))
        await q.settled()
        assert q.is_error
        assert q.data is None
        assert isinstance(q.error, HttpError)

    async def test_refetch_failure_keeps_previous_data(self, cache: QueryCache) -> None:
        q = cache.observe(KEY, Counter(["a"], HttpError(500, "down")))
        await q.settled()
        await q.refetch()

        assert q.is_error
        assert q.data == ["a"]
        assert q.error.message == "down"

    async def test_success_clears_error(self, cache: QueryCache) -> None:
        q = cache.observe(KEY, Counter(NetworkError("offline"), ["a"]))
        await q.settled()
        assert q.is_error
        await q.refetch()
        assert q.is_success
        assert q.error is None

    async def test_fetch_query_raises(self, cache: QueryCache) -> None:
        with pytest.raises(HttpError):
            await cache.fetch_query(KEY, Counter(HttpError(403, "Forbidden")))


class TestRetry:
    """Only transient read failures are retried."""

    async def test_network_error_is_retried(self) -> None:
        cache = QueryCache(retry=1, retry_delay=0)
        fetch = Counter(NetworkError("offline"), ["a"])
        try:
            assert await cache.fetch_query(KEY, fetch) == ["a"]
            assert fetch.calls == 2
        finally:
            await cache.close()

    async def test_server_error_is_retried_until_limit(self) -> None:
        cache = QueryCache(retry=2, retry_delay=0)
        fetch = Counter(HttpError(503, "busy"))
        try:
            with pytest.raises(HttpError):
                await cache.fetch_query(KEY, fetch)
            assert fetch.calls == 3
        finally:
            await cache.close()

    async def test_client_error_is_not_retried(self) -> None:
        cache = QueryCache(retry=3, retry_delay=0)
        fetch = Counter(HttpError(404, "Not found"))
        try:
            with pytest.raises(HttpError):
                await cache.fetch_query(KEY, fetch)
            assert fetch.calls == 1
        finally:
            await cache.close()

    def test_negative_retry_rejected(self) -> None:
        with pytest.raises(ValueError):
            QueryCache(retry=-1)


class TestFetchQuery:
    async def test_concurrent_reads_share_request(self, cache: QueryCache) -> None:
        fetch_count = 0

        async def slow_fetch(key) -> list:
            nonlocal fetch_count
            fetch_count += 1
            await asyncio.sleep(0.01)
            return ["a"]

        results = await asyncio.gather(
            *(cache.fetch_query(KEY, slow_fetch) for _ in range(5))
        )
        assert all(r == ["a"] for r in results)
        assert fetch_count == 1  # Only one fetch despite 5 reads

    async def test_fresh_read_uses_cache(self, cache: QueryCache) -> None:
        fetch = Counter(["a"])
        await cache.fetch_query(KEY, fetch)
        await cache.fetch_query(KEY, fetch)
        assert fetch.calls == 1

    async def test_get_query_data_never_fetches(self, cache: QueryCache) -> None:
        assert cache.get_query_data(KEY) is None
        assert cache.get_entry(KEY) is None
        assert KEY not in cache


class TestInvalidate:
    """Tests for prefix invalidation."""

    async def test_observed_entry_refetches(self, cache: QueryCache) -> None:
        fetch = Counter(["v1"], ["v2"])
        seen = []
        q = cache.observe(KEY, fetch, on_change=lambda s: seen.append((s.status, s.data)))
        await q.settled()
        seen.clear()

        await cache.invalidate(KEY)
        assert fetch.calls == 2
        # Previous data stays visible during the refetch
        assert seen == [("loading", ["v1"]), ("success", ["v2"])]

    async def test_prefix_matches_detail_keys(self, cache: QueryCache) -> None:
        await cache.fetch_query(("/api/orders",), Counter([]))
        await cache.fetch_query(("/api/orders", 1), Counter({"id": 1}))
        await cache.fetch_query(("/api/users",), Counter([]))

        await cache.invalidate(("/api/orders",))

        assert cache.get_entry(("/api/orders",)).is_stale
        assert cache.get_entry(("/api/orders", 1)).is_stale
        assert not cache.get_entry(("/api/users",)).is_stale

    async def test_unobserved_entry_refetches_lazily(self, cache: QueryCache) -> None:
        fetch = Counter(["v1"], ["v2"])
        await cache.fetch_query(KEY, fetch)
        await cache.invalidate(KEY)
        assert fetch.calls == 1
        assert cache.get_query_data(KEY) == ["v1"]

        assert await cache.fetch_query(KEY, fetch) == ["v2"]
        assert fetch.calls == 2

    async def test_unobserved_read_in_flight_is_not_fresh(self, cache: QueryCache) -> None:
        """A response requested before an invalidation is never served as fresh."""
        gate = asyncio.get_running_loop().create_future()
        fetch = Counter(gate, ["v2"])
        first = asyncio.create_task(cache.fetch_query(KEY, fetch))
        await drain()

        await cache.invalidate(KEY)
        gate.set_result(["v1"])
        await first

        assert await cache.fetch_query(KEY) == ["v2"]
        assert fetch.calls == 2
        assert not cache.get_entry(KEY).is_stale

    async def test_observer_closed_before_response(self, cache: QueryCache) -> None:
        """Unmounting after an invalidation leaves the late response stale."""
        gate = asyncio.get_running_loop().create_future()
        fetch = Counter(gate, ["v2"])
        q = cache.observe(KEY, fetch)
        await drain()

        invalidation = asyncio.create_task(cache.invalidate(KEY))
        await drain()
        q.close()
        gate.set_result(["v1"])
        await invalidation

        assert fetch.calls == 1
        assert cache.get_entry(KEY).is_stale

        q2 = cache.observe(KEY)
        await q2.settled()
        assert q2.data == ["v2"]
        assert fetch.calls == 2

    async def test_no_prefix_invalidates_everything(self, cache: QueryCache) -> None:
        await cache.fetch_query(("/api/orders",), Counter([]))
        await cache.fetch_query(("/api/users",), Counter([]))
        await cache.invalidate()
        assert cache.get_entry(("/api/orders",)).is_stale
        assert cache.get_entry(("/api/users",)).is_stale

    async def test_invalidations_during_flight_coalesce(self, cache: QueryCache) -> None:
        """Several invalidations while a request is in flight cause one refetch."""
        gate = asyncio.get_running_loop().create_future()
        fetch = Counter(gate, ["fresh"])
        q = cache.observe(KEY, fetch)
        await drain()

        pending = [asyncio.create_task(cache.invalidate(KEY)) for _ in range(3)]
        await drain()
        gate.set_result(["old"])
        await asyncio.gather(*pending)

        assert fetch.calls == 2
        assert q.data == ["fresh"]
        assert not cache.get_entry(KEY).is_stale

    async def test_disabled_observer_is_not_refetched(self, cache: QueryCache) -> None:
        fetch = Counter(["v1"], ["v2"])
        await cache.fetch_query(KEY, fetch)
        q = cache.observe(KEY, fetch, enabled=False)
        await cache.invalidate(KEY)
        assert fetch.calls == 1
        assert q.snapshot.is_stale


class TestGarbageCollection:
    async def test_unobserved_entry_kept_until_gc_time(self, cache: QueryCache) -> None:
        q = cache.observe(KEY, Counter(["a"]))
        await q.settled()
        q.close()
        assert KEY in cache

    async def test_zero_gc_time_collects_on_close(self) -> None:
        cache = QueryCache(gc_time=0, retry=0)
        try:
            q = cache.observe(KEY, Counter(["a"]))
            await q.settled()
            q.close()
            assert KEY not in cache
        finally:
            await cache.close()

    async def test_entry_collected_after_gc_time(self) -> None:
        cache = QueryCache(gc_time="10ms", retry=0)
        try:
            await cache.fetch_query(KEY, Counter(["a"]))
            assert KEY in cache
            await asyncio.sleep(0.05)
            assert KEY not in cache
        finally:
            await cache.close()

    async def test_resubscribe_cancels_collection(self) -> None:
        cache = QueryCache(gc_time="10ms", retry=0)
        try:
            await cache.fetch_query(KEY, Counter(["a"]))
            q = cache.observe(KEY)
            await asyncio.sleep(0.05)
            assert KEY in cache
            assert q.data == ["a"]
        finally:
            await cache.close()

    async def test_in_flight_entry_collected_when_done(self) -> None:
        cache = QueryCache(gc_time=0, retry=0)
        gate = asyncio.get_running_loop().create_future()
        try:
            q = cache.observe(KEY, Counter(gate))
            q.close()
            assert KEY in cache
            gate.set_result(["a"])
            await drain()
            assert KEY not in cache
        finally:
            await cache.close()


class TestDefaultFetcher:
    """Keys map to GET requests through the client."""

    async def test_key_becomes_path_and_params(self, api, api_cache: QueryCache) -> None:
        route = api.get("/api/orders/7", params={"expand": "items"}).mock(
            return_value=httpx.Response(200, json={"id": 7})
        )
        data = await api_cache.fetch_query(["/api/orders", 7, {"expand": "items"}])
        assert data == {"id": 7}
        assert route.call_count == 1

    async def test_unauthorized_reads_as_none(self, api, api_cache: QueryCache) -> None:
        api.get("/api/admin/users").mock(
            return_value=httpx.Response(401, json={"message": "Unauthorized"})
        )
        assert await api_cache.fetch_query("/api/admin/users") is None

    async def test_unauthorized_can_raise(self, api, client) -> None:
        api.get("/api/admin/users").mock(return_value=httpx.Response(401))
        cache = QueryCache(client=client, retry=0, on_unauthorized="raise")
        try:
            with pytest.raises(HttpError) as exc_info:
                await cache.fetch_query("/api/admin/users")
            assert exc_info.value.status == 401
        finally:
            await cache.close()
