"""Non-blocking confirmation dialog for destructive actions."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any


class ConfirmDialog:
    """A pending yes/no question that resolves exactly once.

    Usage:
        dialog = ConfirmDialog("Delete this fabric type?", on_confirm=remove)
        ...
        await dialog.confirm()   # runs remove(), resolves True
        dialog.cancel()          # or resolves False without running it
    """

    def __init__(
        self,
        message: str,
        *,
        on_confirm: Callable[[], Awaitable[Any] | Any] | None = None,
    ) -> None:
        self.message = message
        self._on_confirm = on_confirm
        self._future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()

    @property
    def is_open(self) -> bool:
        return not self._future.done()

    async def confirm(self) -> Any:
        """Accept. Runs the confirm callback and returns what it returned."""
        if not self.is_open:
            return None
        self._future.set_result(True)
        if self._on_confirm is None:
            return None
        outcome = self._on_confirm()
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    def cancel(self) -> None:
        """Decline. The confirm callback never runs."""
        if self.is_open:
            self._future.set_result(False)

    async def result(self) -> bool:
        """Wait for the user's answer."""
        return await asyncio.shield(self._future)
