"""Core types for the dokuma data-flow core."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Hashable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

T = TypeVar("T")
I = TypeVar("I")  # noqa: E741
R = TypeVar("R")

# Structural identity of a cached query, e.g. ("/api/orders", 7)
ResourceKey = tuple[Hashable, ...]
KeyLike = str | Sequence[Any]

QueryStatus = Literal["idle", "loading", "success", "error"]
NotificationKind = Literal["success", "error", "info"]

# Async fetch function; receives the normalized key it fetches for
Fetcher = Callable[[ResourceKey], Awaitable[Any]]

# "30s", "5m", "2h", "1d" or seconds
Duration = str | int | float


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    """Read-only snapshot of a cached query."""

    key: ResourceKey
    data: T | None = None
    status: QueryStatus = "idle"
    error: BaseException | None = None
    last_fetched_at: float | None = None  # Unix timestamp seconds
    is_stale: bool = True

    @property
    def is_loading(self) -> bool:
        return self.status == "loading"


@dataclass(frozen=True, slots=True)
class Message:
    """Title and description of a user notification."""

    title: str
    description: str = ""


@dataclass(frozen=True, slots=True)
class MutationDescriptor(Generic[I, R]):
    """A write operation and the cache keys it makes stale."""

    execute: Callable[[I], Awaitable[R]]
    invalidates: tuple[ResourceKey, ...] = ()
    success: Message | None = None
    failure: Message = field(default_factory=lambda: Message("Error"))
    redirect: Callable[[R], str | None] | None = None


@dataclass(frozen=True, slots=True)
class MutationResult(Generic[R]):
    """Outcome of a mutation. Errors are carried, never raised."""

    data: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
