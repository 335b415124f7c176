"""Resource key normalization and matching."""

from __future__ import annotations

from collections.abc import Hashable, Mapping
from typing import Any

from dokuma.types import KeyLike, ResourceKey


class QueryParams(tuple):
    """Frozen mapping segment of a key. Sent as query parameters."""

    __slots__ = ()

    def as_dict(self) -> dict[str, Any]:
        return dict(self)


def _freeze(part: Any) -> Hashable:
    if isinstance(part, QueryParams):
        return part
    if isinstance(part, Mapping):
        return QueryParams(sorted((str(k), _freeze(v)) for k, v in part.items()))
    if isinstance(part, (list, tuple)):
        return tuple(_freeze(p) for p in part)
    if isinstance(part, (set, frozenset)):
        return frozenset(_freeze(p) for p in part)
    return part


def make_key(key: KeyLike) -> ResourceKey:
    """
    Normalize a key into a hashable tuple compared by structure.

    A bare string is a one-segment key. Lists become tuples and mappings
    become sorted item tuples, so equal structures hash equally.

    Example:
        make_key("/api/master/fabrics")        # ("/api/master/fabrics",)
        make_key(["/api/orders", 7])           # ("/api/orders", 7)
        make_key(["/api/orders", {"page": 2}]) # ("/api/orders", (("page", 2),))
    """
    if isinstance(key, str):
        return (key,)
    return tuple(_freeze(part) for part in key)


def is_key_prefix(prefix: ResourceKey, key: ResourceKey) -> bool:
    """Check if prefix matches the leading segments of key."""
    if len(prefix) > len(key):
        return False
    return key[: len(prefix)] == prefix


def format_key(key: ResourceKey) -> str:
    """Readable form of a key for log messages."""
    return "[" + ", ".join(repr(part) for part in key) + "]"
