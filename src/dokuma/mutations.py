"""Mutation orchestrator: write, then invalidate, then notify."""

from __future__ import annotations

import logging
from typing import Generic

from dokuma.app import current
from dokuma.errors import DokumaError
from dokuma.keys import format_key
from dokuma.notify import Navigator, Notifier
from dokuma.query_cache import QueryCache
from dokuma.types import I, R, MutationDescriptor, MutationResult

logger = logging.getLogger(__name__)


class Mutation(Generic[I, R]):
    """Runs one kind of write for a view.

    Failures are terminal here: they become an error notification and an
    unsuccessful MutationResult, never an exception for the caller.

    Usage:
        create = Mutation(resources.FABRIC_TYPES.create(client))
        result = await create.mutate({"name": "Pamuklu", "code": "KMS-PM-1234"})
        if result.ok:
            close_dialog()
    """

    def __init__(
        self,
        descriptor: MutationDescriptor[I, R],
        *,
        cache: QueryCache | None = None,
        notifier: Notifier | None = None,
        navigator: Navigator | None = None,
    ) -> None:
        self._descriptor = descriptor
        self._cache = cache
        self._notifier = notifier
        self._navigator = navigator
        self._pending = 0

    @property
    def is_pending(self) -> bool:
        return self._pending > 0

    def _services(self) -> tuple[QueryCache, Notifier, Navigator | None]:
        if self._cache is not None and self._notifier is not None:
            return self._cache, self._notifier, self._navigator
        ctx = current()
        return (
            ctx.cache if self._cache is None else self._cache,
            ctx.notifier if self._notifier is None else self._notifier,
            ctx.navigator if self._navigator is None else self._navigator,
        )

    async def mutate(self, input: I) -> MutationResult[R]:
        """Execute the write and settle its side effects."""
        cache, notifier, navigator = self._services()
        descriptor = self._descriptor
        self._pending += 1
        try:
            try:
                data = await descriptor.execute(input)
            except Exception as e:
                if isinstance(e, DokumaError):
                    logger.warning("Mutation failed: %s", e)
                else:
                    logger.exception("Mutation failed unexpectedly")
                message = str(e) or descriptor.failure.description
                notifier.notify("error", descriptor.failure.title, message)
                return MutationResult(error=e)

            if descriptor.invalidates:
                logger.debug(
                    "Mutation succeeded; invalidating %s",
                    ", ".join(format_key(k) for k in descriptor.invalidates),
                )
                await cache.invalidate(*descriptor.invalidates)
            if descriptor.success is not None:
                notifier.notify(
                    "success", descriptor.success.title, descriptor.success.description
                )
            if navigator is not None and descriptor.redirect is not None:
                path = descriptor.redirect(data)
                if path:
                    navigator.navigate(path)
            return MutationResult(data=data)
        finally:
            self._pending -= 1
