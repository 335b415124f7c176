"""Shared pytest fixtures."""

import pytest
import respx

from dokuma import AppContext, QueryCache, ResourceClient, Toaster

BASE_URL = "http://erp.test"


@pytest.fixture
def api():
    """Mock the ERP REST API."""
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
        yield router


@pytest.fixture
async def client():
    """Create a ResourceClient pointed at the mocked API."""
    async with ResourceClient(BASE_URL) as c:
        yield c


@pytest.fixture
async def cache():
    """Create a fresh QueryCache with no retries for each test."""
    c = QueryCache(stale_time="1m", gc_time="5m", retry=0)
    yield c
    await c.close()


@pytest.fixture
async def api_cache(client: ResourceClient):
    """Create a QueryCache whose default fetcher goes through the client."""
    c = QueryCache(client=client, retry=0)
    yield c
    await c.close()


@pytest.fixture
def toaster() -> Toaster:
    """Create an in-memory notifier."""
    return Toaster(limit=20)


@pytest.fixture
def ctx(client: ResourceClient, api_cache: QueryCache, toaster: Toaster) -> AppContext:
    """Application context wired to the mocked API."""
    return AppContext(client=client, cache=api_cache, notifier=toaster)
