"""QueryCache - process-wide store of remote query results.

Provides:
- observe(): subscribe to a key (the view-side query hook)
- fetch_query(): imperative read with request de-duplication
- invalidate(): prefix invalidation with refetch of observed entries
- get_query_data(), get_entry(): read-only access
- close(): lifecycle
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from dokuma.duration import parse_duration
from dokuma.errors import is_transient
from dokuma.http import ResourceClient, UnauthorizedBehavior, default_fetcher
from dokuma.keys import format_key, is_key_prefix, make_key
from dokuma.types import (
    CacheEntry,
    Duration,
    Fetcher,
    KeyLike,
    QueryStatus,
    ResourceKey,
)

logger = logging.getLogger(__name__)

Listener = Callable[[CacheEntry[Any]], None]


@dataclass(eq=False)
class _EntryState:
    """Mutable bookkeeping for one key. Never leaves the cache."""

    key: ResourceKey
    fetcher: Fetcher | None = None
    data: Any = None
    status: QueryStatus = "idle"
    error: BaseException | None = None
    last_fetched_at: float | None = None
    stale: bool = True
    generation: int = 0
    task: asyncio.Task[None] | None = None
    refetch_pending: bool = False
    observers: list[QueryObserver] = field(default_factory=list)
    gc_handle: asyncio.TimerHandle | None = None

    def snapshot(self) -> CacheEntry[Any]:
        return CacheEntry(
            key=self.key,
            data=self.data,
            status=self.status,
            error=self.error,
            last_fetched_at=self.last_fetched_at,
            is_stale=self.stale,
        )

    @property
    def has_active_observers(self) -> bool:
        return any(o.enabled for o in self.observers)


class QueryObserver:
    """A subscription to one cache entry, owned by a view.

    Usage:
        with cache.observe(("/api/master/fabrics",), on_change=render) as q:
            await q.settled()
            rows = q.data
    """

    __slots__ = ("_cache", "_state", "_on_change", "_enabled", "_closed")

    def __init__(
        self,
        cache: QueryCache,
        state: _EntryState,
        *,
        enabled: bool,
        on_change: Listener | None,
    ) -> None:
        self._cache = cache
        self._state = state
        self._on_change = on_change
        self._enabled = enabled
        self._closed = False

    def __enter__(self) -> QueryObserver:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def key(self) -> ResourceKey:
        return self._state.key

    @property
    def snapshot(self) -> CacheEntry[Any]:
        return self._state.snapshot()

    @property
    def data(self) -> Any:
        return self._state.data

    @property
    def status(self) -> QueryStatus:
        return self._state.status

    @property
    def error(self) -> BaseException | None:
        return self._state.error

    @property
    def last_fetched_at(self) -> float | None:
        return self._state.last_fetched_at

    @property
    def is_loading(self) -> bool:
        return self._state.status == "loading"

    @property
    def is_error(self) -> bool:
        return self._state.status == "error"

    @property
    def is_success(self) -> bool:
        return self._state.status == "success"

    @property
    def enabled(self) -> bool:
        return self._enabled and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    def refetch(self) -> asyncio.Task[None]:
        """Issue a new request for this key, superseding any in flight."""
        return self._cache._start_fetch(self._state)

    def set_enabled(self, enabled: bool) -> None:
        """Toggle fetching. Turning on fetches if the entry needs data."""
        was_enabled = self._enabled
        self._enabled = enabled
        if enabled and not was_enabled and not self._closed:
            self._cache._fetch_if_needed(self._state)

    async def settled(self) -> CacheEntry[Any]:
        """Wait until no request is in flight for this key."""
        await self._cache._settle(self._state)
        return self._state.snapshot()

    def close(self) -> None:
        """Detach from the entry. No callbacks are delivered afterwards."""
        if self._closed:
            return
        self._closed = True
        self._cache._detach(self)

    def _deliver(self, snapshot: CacheEntry[Any]) -> None:
        if self._closed or self._on_change is None:
            return
        try:
            self._on_change(snapshot)
        except Exception:
            logger.exception("Query listener failed for %s", format_key(self.key))


class QueryCache:
    """Keyed cache of remote resources with prefix invalidation.

    Structurally equal keys share one entry and one in-flight request.
    Requests are tagged with a generation so a response that lands after
    a newer request was issued is discarded.

    Usage:
        cache = QueryCache(client=client, stale_time="1m")
        fabrics = await cache.fetch_query("/api/master/fabrics")
        await cache.invalidate(("/api/master/fabrics",))
    """

    def __init__(
        self,
        *,
        client: ResourceClient | None = None,
        fetcher: Fetcher | None = None,
        stale_time: Duration = "1m",
        gc_time: Duration = "5m",
        retry: int = 1,
        retry_delay: Duration = "1s",
        on_unauthorized: UnauthorizedBehavior = "return_none",
    ) -> None:
        if retry < 0:
            raise ValueError("retry must be >= 0")
        if fetcher is None and client is not None:
            fetcher = default_fetcher(client, on_unauthorized=on_unauthorized)
        self._default_fetcher = fetcher
        self._stale_time = parse_duration(stale_time)
        self._gc_time = parse_duration(gc_time)
        self._retry = retry
        self._retry_delay = parse_duration(retry_delay)
        self._entries: dict[ResourceKey, _EntryState] = {}
        self._background_tasks: set[asyncio.Task[None]] = set()

    def __contains__(self, key: KeyLike) -> bool:
        return make_key(key) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def observe(
        self,
        key: KeyLike,
        fetcher: Fetcher | None = None,
        *,
        enabled: bool = True,
        on_change: Listener | None = None,
    ) -> QueryObserver:
        """Subscribe to a key, fetching it if missing or stale.

        Must be called from a running event loop.
        """
        state = self._get_or_create(make_key(key), fetcher)
        if state.gc_handle is not None:
            state.gc_handle.cancel()
            state.gc_handle = None

        observer = QueryObserver(self, state, enabled=enabled, on_change=on_change)
        state.observers.append(observer)
        if enabled:
            self._fetch_if_needed(state)
        return observer

    async def fetch_query(self, key: KeyLike, fetcher: Fetcher | None = None) -> Any:
        """Return fresh data for key, fetching at most once per key at a time.

        Raises:
            The fetch error if the request failed.
        """
        state = self._get_or_create(make_key(key), fetcher)
        try:
            while self._needs_fetch(state):
                if state.task is None:
                    self._start_fetch(state)
                await self._settle(state)
                if state.status == "error" and state.error is not None:
                    raise state.error
            return state.data
        finally:
            if not state.observers:
                self._schedule_gc(state)

    async def invalidate(self, *prefixes: KeyLike) -> None:
        """Mark entries under each prefix stale and refetch observed ones.

        By default an empty prefix matches every entry. Entries with no
        enabled observer refetch on their next read. Returns once the
        triggered refetches have settled.
        """
        normalized = [make_key(p) for p in prefixes] or [()]
        refreshing: list[_EntryState] = []
        for state in list(self._entries.values()):
            if not any(is_key_prefix(p, state.key) for p in normalized):
                continue
            state.stale = True
            if state.task is not None:
                # Coalesce with the request in flight; its response stays stale
                state.refetch_pending = True
            elif state.has_active_observers:
                self._start_fetch(state)
            if state.has_active_observers:
                refreshing.append(state)

        logger.debug(
            "Invalidated %s; refetching %d entr%s",
            ", ".join(format_key(p) for p in normalized),
            len(refreshing),
            "y" if len(refreshing) == 1 else "ies",
        )
        for state in refreshing:
            await self._settle(state)

    def get_query_data(self, key: KeyLike) -> Any:
        """Cached data for key, or None. Never fetches."""
        state = self._entries.get(make_key(key))
        return state.data if state is not None else None

    def get_entry(self, key: KeyLike) -> CacheEntry[Any] | None:
        """Snapshot of the entry for key, or None."""
        state = self._entries.get(make_key(key))
        return state.snapshot() if state is not None else None

    async def close(self) -> None:
        """Cancel in-flight requests and pending collection."""
        for state in self._entries.values():
            if state.gc_handle is not None:
                state.gc_handle.cancel()
                state.gc_handle = None
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._entries.clear()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _get_or_create(self, key: ResourceKey, fetcher: Fetcher | None) -> _EntryState:
        state = self._entries.get(key)
        if state is None:
            state = _EntryState(key=key)
            self._entries[key] = state
        if fetcher is not None:
            state.fetcher = fetcher
        return state

    def _needs_fetch(self, state: _EntryState) -> bool:
        if state.status in ("idle", "error") or state.stale:
            return True
        if state.last_fetched_at is None:
            return True
        return time.time() - state.last_fetched_at >= self._stale_time

    def _fetch_if_needed(self, state: _EntryState) -> None:
        if state.task is None and self._needs_fetch(state):
            self._start_fetch(state)

    def _start_fetch(self, state: _EntryState) -> asyncio.Task[None]:
        fetcher = state.fetcher or self._default_fetcher
        if fetcher is None:
            raise RuntimeError(
                f"No fetcher for {format_key(state.key)} and no default client"
            )
        state.generation += 1
        state.refetch_pending = False
        state.status = "loading"
        task = asyncio.create_task(self._run(state, state.generation, fetcher))
        state.task = task
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        self._publish(state)
        return task

    async def _run(self, state: _EntryState, generation: int, fetcher: Fetcher) -> None:
        try:
            data = await self._call_with_retry(state.key, fetcher)
        except Exception as e:
            if generation != state.generation:
                return
            logger.warning("Query %s failed: %s", format_key(state.key), e)
            state.status = "error"
            state.error = e
        else:
            if generation != state.generation:
                logger.debug("Discarded superseded response for %s", format_key(state.key))
                return
            state.data = data
            state.status = "success"
            state.error = None
            state.stale = state.refetch_pending
            state.last_fetched_at = time.time()

        state.task = None
        if state.refetch_pending and state.has_active_observers:
            self._start_fetch(state)
            return
        state.refetch_pending = False
        self._publish(state)
        if not state.observers:
            self._schedule_gc(state)

    async def _call_with_retry(self, key: ResourceKey, fetcher: Fetcher) -> Any:
        attempt = 0
        while True:
            try:
                return await fetcher(key)
            except Exception as e:
                if attempt >= self._retry or not is_transient(e):
                    raise
                attempt += 1
                logger.info(
                    "Retrying %s after %s (attempt %d/%d)",
                    format_key(key),
                    e,
                    attempt,
                    self._retry,
                )
                await asyncio.sleep(self._retry_delay)

    async def _settle(self, state: _EntryState) -> None:
        """Wait until the latest request for state has finished."""
        while state.task is not None:
            task = state.task
            await asyncio.shield(task)
            if state.task is task:
                # Cancelled before it could clear itself
                break

    def _publish(self, state: _EntryState) -> None:
        snapshot = state.snapshot()
        for observer in list(state.observers):
            observer._deliver(snapshot)

    def _detach(self, observer: QueryObserver) -> None:
        state = observer._state
        if observer in state.observers:
            state.observers.remove(observer)
        if not state.observers:
            self._schedule_gc(state)

    def _schedule_gc(self, state: _EntryState) -> None:
        if state.gc_handle is not None:
            state.gc_handle.cancel()
            state.gc_handle = None
        if self._gc_time <= 0:
            self._collect(state.key)
            return
        loop = asyncio.get_running_loop()
        state.gc_handle = loop.call_later(self._gc_time, self._collect, state.key)

    def _collect(self, key: ResourceKey) -> None:
        state = self._entries.get(key)
        if state is None:
            return
        state.gc_handle = None
        if state.observers:
            return
        if state.task is not None:
            # The request in flight reschedules collection when it finishes
            return
        del self._entries[key]
        logger.debug("Collected %s", format_key(key))
