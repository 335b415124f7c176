"""Notification surface used by mutations."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from dokuma.types import NotificationKind

logger = logging.getLogger(__name__)


@runtime_checkable
class Notifier(Protocol):
    """Anything that can show a user notification."""

    def notify(self, kind: NotificationKind, title: str, description: str = "") -> None:
        """Show a notification."""
        ...


@runtime_checkable
class Navigator(Protocol):
    """Moves the user to another page after a successful write."""

    def navigate(self, path: str) -> None:
        """Go to path."""
        ...


class LogNotifier:
    """Notifier that writes notifications to the log."""

    def notify(self, kind: NotificationKind, title: str, description: str = "") -> None:
        level = logging.WARNING if kind == "error" else logging.INFO
        logger.log(level, "[%s] %s: %s", kind, title, description)


@dataclass(frozen=True, slots=True)
class Toast:
    id: int
    kind: NotificationKind
    title: str
    description: str = ""


class Toaster:
    """In-memory notification queue, newest first, capped at limit."""

    def __init__(self, limit: int = 5) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._limit = limit
        self._ids = itertools.count(1)
        self._toasts: list[Toast] = []

    def notify(self, kind: NotificationKind, title: str, description: str = "") -> None:
        toast = Toast(id=next(self._ids), kind=kind, title=title, description=description)
        self._toasts.insert(0, toast)
        del self._toasts[self._limit :]
        logger.debug("Toast %d (%s): %s", toast.id, kind, title)

    @property
    def toasts(self) -> list[Toast]:
        return list(self._toasts)

    def dismiss(self, toast_id: int | None = None) -> None:
        """Dismiss one toast, or all of them when no id is given."""
        if toast_id is None:
            self._toasts.clear()
        else:
            self._toasts = [t for t in self._toasts if t.id != toast_id]
