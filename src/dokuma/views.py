"""List/detail view composition over the query cache.

A view subscribes to a primary list and any lookup tables, filters rows on
the client, and routes create/update/delete through mutations. It owns at
most one form at a time.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel

from dokuma.app import current
from dokuma.dialogs import ConfirmDialog
from dokuma.forms import FormController
from dokuma.keys import make_key
from dokuma.mutations import Mutation
from dokuma.notify import Navigator, Notifier
from dokuma.query_cache import QueryCache, QueryObserver
from dokuma.types import (
    CacheEntry,
    Fetcher,
    KeyLike,
    MutationDescriptor,
    MutationResult,
    ResourceKey,
)

Row = Mapping[str, Any]
ViewKind = Literal["loading", "error", "empty", "ready"]


def _matches_search(row: Row, term: str, fields: Sequence[str]) -> bool:
    for name in fields:
        value = row.get(name)
        if value is not None and term in str(value).casefold():
            return True
    return False


def filter_rows(
    rows: Iterable[Row] | None,
    search: str = "",
    fields: Sequence[str] = ("name",),
    *,
    category_field: str | None = None,
    category: Any = None,
) -> list[Row]:
    """Rows matching the search term and category, in their original order.

    The search is a case-insensitive substring match over fields. A None
    category (or no category_field) disables the equality filter. The
    input is never modified.

    Example:
        filter_rows(fabrics, "pol", ("name", "code"))
    """
    if rows is None:
        return []
    term = search.strip().casefold()
    result: list[Row] = []
    for row in rows:
        if term and not _matches_search(row, term, fields):
            continue
        if category_field is not None and category is not None:
            if row.get(category_field) != category:
                continue
        result.append(row)
    return result


@dataclass(frozen=True, slots=True)
class LookupSpec:
    """A table used to turn foreign keys into display labels."""

    key: ResourceKey
    id_field: str = "id"
    label_field: str = "name"
    fetcher: Fetcher | None = None


@dataclass(frozen=True, slots=True)
class ViewState:
    """What the view should render right now."""

    kind: ViewKind
    rows: tuple[Row, ...] = ()
    error: BaseException | None = None
    total: int = 0


@dataclass(frozen=True)
class EntityActions:
    """Writes and form setup for one kind of entity."""

    schema: type[BaseModel]
    create: MutationDescriptor[Any, Any] | None = None
    update: MutationDescriptor[Any, Any] | None = None
    delete: MutationDescriptor[Any, Any] | None = None
    edit_schema: type[BaseModel] | None = None
    defaults: Mapping[str, Any] | None = None
    secret_fields: tuple[str, ...] = ()
    id_field: str = "id"
    delete_prompt: str = "Are you sure you want to delete this record?"


@dataclass
class _Subscriptions:
    primary: QueryObserver | None = None
    lookups: dict[str, QueryObserver] = field(default_factory=dict)


class ListView:
    """A filtered entity list with its create/edit dialog and delete action.

    Usage:
        view = ListView(("/api/product-development/fabric-types",),
                        search_fields=("name", "code", "description"),
                        actions=FABRIC_TYPES.actions(client))
        view.mount()
        view.search = "pol"
        for row in view.state.rows:
            ...
    """

    def __init__(
        self,
        key: KeyLike,
        *,
        search_fields: Sequence[str] = ("name",),
        category_field: str | None = None,
        lookups: Mapping[str, LookupSpec] | None = None,
        actions: EntityActions | None = None,
        fetcher: Fetcher | None = None,
        cache: QueryCache | None = None,
        notifier: Notifier | None = None,
        navigator: Navigator | None = None,
        on_change: Callable[[ListView], None] | None = None,
    ) -> None:
        self._key = make_key(key)
        self._search_fields = tuple(search_fields)
        self._category_field = category_field
        self._lookups = dict(lookups or {})
        self._actions = actions
        self._fetcher = fetcher
        self._cache = cache
        self._on_change = on_change
        self._subs = _Subscriptions()
        self._search = ""
        self._category: Any = None
        self._form: FormController[Any] | None = None
        self.pending_confirmation: ConfirmDialog | None = None

        self._mutations: dict[str, Mutation[Any, Any]] = {}
        if actions is not None:
            for name in ("create", "update", "delete"):
                descriptor = getattr(actions, name)
                if descriptor is not None:
                    self._mutations[name] = Mutation(
                        descriptor,
                        cache=cache,
                        notifier=notifier,
                        navigator=navigator,
                    )

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    @property
    def cache(self) -> QueryCache:
        return current().cache if self._cache is None else self._cache

    @property
    def is_mounted(self) -> bool:
        return self._subs.primary is not None

    def mount(self) -> None:
        """Subscribe to the list and its lookup tables."""
        if self.is_mounted:
            return
        cache = self.cache
        self._subs.primary = cache.observe(
            self._key, self._fetcher, on_change=self._changed
        )
        for name, spec in self._lookups.items():
            self._subs.lookups[name] = cache.observe(
                spec.key, spec.fetcher, on_change=self._changed
            )

    def unmount(self) -> None:
        """Drop every subscription. Requests in flight may still fill the cache."""
        if self._subs.primary is not None:
            self._subs.primary.close()
        for observer in self._subs.lookups.values():
            observer.close()
        self._subs = _Subscriptions()
        if self.pending_confirmation is not None:
            self.pending_confirmation.cancel()
            self.pending_confirmation = None
        self._form = None

    async def settled(self) -> ViewState:
        """Wait for the list and lookups to finish loading."""
        if self._subs.primary is not None:
            await self._subs.primary.settled()
        for observer in self._subs.lookups.values():
            await observer.settled()
        return self.state

    def refetch(self) -> None:
        """Retry affordance for the error state."""
        if self._subs.primary is not None:
            self._subs.primary.refetch()

    def _changed(self, _snapshot: CacheEntry[Any]) -> None:
        if self._on_change is not None:
            self._on_change(self)

    # -------------------------------------------------------------------------
    # Filtering and rendering
    # -------------------------------------------------------------------------

    @property
    def search(self) -> str:
        return self._search

    @search.setter
    def search(self, value: str) -> None:
        self._search = value or ""

    @property
    def category(self) -> Any:
        return self._category

    @category.setter
    def category(self, value: Any) -> None:
        self._category = value

    @property
    def state(self) -> ViewState:
        primary = self._subs.primary
        if primary is None or (primary.data is None and primary.status in ("idle", "loading")):
            return ViewState(kind="loading")
        if primary.data is None and primary.error is not None:
            return ViewState(kind="error", error=primary.error)

        data = primary.data or []
        rows = filter_rows(
            data,
            self._search,
            self._search_fields,
            category_field=self._category_field,
            category=self._category,
        )
        if not rows:
            return ViewState(kind="empty", error=primary.error, total=len(data))
        return ViewState(
            kind="ready", rows=tuple(rows), error=primary.error, total=len(data)
        )

    def label_for(self, lookup: str, value: Any, *, default: str = "-") -> str:
        """Display label of value in the named lookup table."""
        spec = self._lookups[lookup]
        observer = self._subs.lookups.get(lookup)
        rows = observer.data if observer is not None else None
        if value is None or not rows:
            return default
        for row in rows:
            if row.get(spec.id_field) == value:
                label = row.get(spec.label_field)
                return default if label is None else str(label)
        return default

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    @property
    def form(self) -> FormController[Any] | None:
        return self._form

    def is_pending(self, action: str) -> bool:
        mutation = self._mutations.get(action)
        return mutation is not None and mutation.is_pending

    def _require_actions(self) -> EntityActions:
        if self._actions is None:
            raise RuntimeError("This view has no entity actions")
        return self._actions

    def _ensure_form(self) -> FormController[Any]:
        if self._form is None:
            actions = self._require_actions()
            self._form = FormController(
                actions.schema,
                actions.defaults,
                edit_schema=actions.edit_schema,
                secret_fields=actions.secret_fields,
            )
        return self._form

    def open_create(self) -> FormController[Any]:
        """Open the dialog for a new entity."""
        form = self._ensure_form()
        form.clear()
        return form

    def open_edit(self, entity: Row) -> FormController[Any]:
        """Open the dialog for entity, replacing any target already open."""
        form = self._ensure_form()
        form.load(entity, id_field=self._require_actions().id_field)
        return form

    def close_form(self) -> None:
        self._form = None

    async def submit(self) -> MutationResult[Any] | None:
        """Validate the open form and send it.

        Returns None when there is no form or validation failed; otherwise
        the mutation result. The dialog closes on success.
        """
        form = self._form
        if form is None:
            return None
        actions = self._require_actions()
        name = "update" if form.mode == "edit" else "create"
        mutation = self._mutations.get(name)
        if mutation is None:
            raise RuntimeError(f"No {name} action for this view")

        outcome: MutationResult[Any] | None = None

        async def send(payload: dict[str, Any]) -> None:
            nonlocal outcome
            if form.mode == "edit":
                payload = {actions.id_field: form.target_id, **payload}
            outcome = await mutation.mutate(payload)

        if not await form.handle_submit(send):
            return None
        if outcome is None:
            return None
        form.finish(success=outcome.ok)
        if outcome.ok:
            self.close_form()
        return outcome

    def request_delete(self, entity: Row) -> ConfirmDialog:
        """Ask before deleting. The delete runs only on confirm."""
        actions = self._require_actions()
        mutation = self._mutations.get("delete")
        if mutation is None:
            raise RuntimeError("No delete action for this view")
        entity_id = entity.get(actions.id_field)

        async def remove() -> MutationResult[Any]:
            self.pending_confirmation = None
            return await mutation.mutate(entity_id)

        if self.pending_confirmation is not None:
            self.pending_confirmation.cancel()
        self.pending_confirmation = ConfirmDialog(actions.delete_prompt, on_confirm=remove)
        return self.pending_confirmation
