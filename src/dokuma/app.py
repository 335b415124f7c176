"""Application context: the process-wide cache and its collaborators.

The context is installed in a context variable by init() at startup and
read with current(). Tests install their own with scope().

Usage:
    ctx = init()
    fabrics = await current().cache.fetch_query("/api/master/fabrics")
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass

from dokuma.http import ResourceClient
from dokuma.notify import LogNotifier, Navigator, Notifier
from dokuma.query_cache import QueryCache
from dokuma.settings import Settings, get_settings


@dataclass(frozen=True)
class AppContext:
    """Long-lived services shared by every view."""

    client: ResourceClient
    cache: QueryCache
    notifier: Notifier
    navigator: Navigator | None = None

    async def aclose(self) -> None:
        await self.cache.close()
        await self.client.aclose()


_current_context: ContextVar[AppContext | None] = ContextVar(
    "dokuma_app_context", default=None
)


def build_context(
    settings: Settings | None = None,
    *,
    client: ResourceClient | None = None,
    notifier: Notifier | None = None,
    navigator: Navigator | None = None,
) -> AppContext:
    """Create a context from settings without installing it."""
    settings = settings or get_settings()
    client = client or ResourceClient(settings.base_url, timeout=settings.timeout)
    cache = QueryCache(
        client=client,
        stale_time=settings.stale_time,
        gc_time=settings.gc_time,
        retry=settings.retry,
        retry_delay=settings.retry_delay,
    )
    return AppContext(
        client=client,
        cache=cache,
        notifier=notifier or LogNotifier(),
        navigator=navigator,
    )


def init(
    settings: Settings | None = None,
    *,
    client: ResourceClient | None = None,
    notifier: Notifier | None = None,
    navigator: Navigator | None = None,
) -> AppContext:
    """Build the application context and make it current."""
    ctx = build_context(settings, client=client, notifier=notifier, navigator=navigator)
    _current_context.set(ctx)
    return ctx


def current() -> AppContext:
    """Return the current context.

    Raises:
        RuntimeError: If init() has not been called.
    """
    ctx = _current_context.get()
    if ctx is None:
        raise RuntimeError("dokuma is not initialized; call dokuma.app.init() first")
    return ctx


@contextmanager
def scope(ctx: AppContext) -> Iterator[AppContext]:
    """Make ctx current for the duration of the block."""
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)
