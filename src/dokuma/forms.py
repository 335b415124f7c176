"""Entity form controller bound to a pydantic schema.

Field rules (required, min_length, pattern, ge/le) come from the schema's
Field declarations. Cross-field rules are validators that read previously
validated fields, so their errors land on the field they validate.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, Generic, Literal, TypeVar

import pydantic
from pydantic import BaseModel

from dokuma.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)

FormMode = Literal["create", "edit"]

# Errors raised by model-level validators have no field
FORM_ERRORS = "__all__"


def _field_of(loc: tuple[Any, ...]) -> str:
    if not loc:
        return FORM_ERRORS
    return ".".join(str(part) for part in loc)


def _defaults_from(schema: type[BaseModel]) -> dict[str, Any]:
    defaults: dict[str, Any] = {}
    for name, info in schema.model_fields.items():
        if info.is_required():
            defaults[name] = ""
        else:
            defaults[name] = info.get_default(call_default_factory=True)
    return defaults


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class FormController(Generic[ModelT]):
    """Editable values, per-field errors and submit state for one form.

    Usage:
        form = FormController(UserCreate, edit_schema=UserUpdate,
                              secret_fields=("password",))
        form.load(user)               # edit this user
        form.set_field("full_name", "Ayşe Demir")
        await form.handle_submit(save)
    """

    def __init__(
        self,
        schema: type[ModelT],
        defaults: Mapping[str, Any] | None = None,
        *,
        edit_schema: type[BaseModel] | None = None,
        secret_fields: Iterable[str] = (),
    ) -> None:
        self._schema = schema
        self._edit_schema = edit_schema or schema
        self._defaults = dict(defaults) if defaults is not None else _defaults_from(schema)
        self._secret_fields = frozenset(secret_fields)
        self._mode: FormMode = "create"
        self._target_id: Any = None
        self._reset(self._defaults)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def mode(self) -> FormMode:
        return self._mode

    @property
    def target_id(self) -> Any:
        return self._target_id

    @property
    def values(self) -> dict[str, Any]:
        return dict(self._values)

    @property
    def errors(self) -> dict[str, list[str]]:
        return {field: list(messages) for field, messages in self._errors.items()}

    @property
    def is_valid(self) -> bool:
        return self._is_valid

    @property
    def is_dirty(self) -> bool:
        return self._values != self._initial

    @property
    def is_submitting(self) -> bool:
        return self._submitting

    @property
    def schema(self) -> type[BaseModel]:
        return self._edit_schema if self._mode == "edit" else self._schema

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    def set_field(self, name: str, value: Any) -> None:
        """Update one value and refresh errors of every touched field."""
        if name not in self._values:
            raise KeyError(f"Unknown form field: {name!r}")
        self._values[name] = value
        self._touched.add(name)
        self._refresh()

    def load(self, entity: Mapping[str, Any], *, id_field: str = "id") -> None:
        """Switch to editing entity. Nothing from the previous target survives."""
        values = {
            name: entity.get(name, default) for name, default in self._defaults.items()
        }
        for name in self._secret_fields & values.keys():
            values[name] = ""
        self._mode = "edit"
        self._target_id = entity.get(id_field)
        self._reset(values)

    def clear(self) -> None:
        """Switch to creating a new entity from the defaults."""
        self._mode = "create"
        self._target_id = None
        self._reset(self._defaults)

    # -------------------------------------------------------------------------
    # Validation and submit
    # -------------------------------------------------------------------------

    def validate(self) -> dict[str, list[str]]:
        """Full-schema errors for the current values. Does not change state."""
        _, errors = self._check()
        return errors

    def payload(self) -> dict[str, Any]:
        """The validated payload.

        Raises:
            ValidationError: If any rule fails.
        """
        model, errors = self._check()
        if model is None:
            raise ValidationError(errors)
        return model.model_dump(mode="json", exclude_unset=True)

    async def handle_submit(
        self,
        on_valid: Callable[[dict[str, Any]], Awaitable[Any] | Any],
    ) -> bool:
        """Validate everything and hand the payload to on_valid.

        Returns False without calling on_valid when validation fails or a
        submit is already running. is_submitting stays set until finish().
        """
        if self._submitting:
            return False
        try:
            payload = self.payload()
        except ValidationError as e:
            self._touched.update(self._values)
            self._errors = e.errors
            self._is_valid = False
            return False

        self._submitting = True
        try:
            outcome = on_valid(payload)
            if inspect.isawaitable(outcome):
                await outcome
        except BaseException:
            self._submitting = False
            raise
        return True

    def finish(self, success: bool) -> None:
        """Signal that the submit completed. Success resets the form."""
        self._submitting = False
        if success:
            self.clear()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _reset(self, values: Mapping[str, Any]) -> None:
        self._values: dict[str, Any] = dict(values)
        self._initial: dict[str, Any] = dict(values)
        self._touched: set[str] = set()
        self._errors: dict[str, list[str]] = {}
        self._submitting = False
        self._is_valid = self._check()[0] is not None

    def _input(self) -> dict[str, Any]:
        data = dict(self._values)
        if self._mode == "edit":
            # Blank secret on edit means unchanged: leave it out entirely
            for name in self._secret_fields:
                if name in data and _is_blank(data[name]):
                    del data[name]
        return data

    def _check(self) -> tuple[BaseModel | None, dict[str, list[str]]]:
        try:
            return self.schema.model_validate(self._input()), {}
        except pydantic.ValidationError as e:
            errors: dict[str, list[str]] = {}
            for error in e.errors():
                errors.setdefault(_field_of(error["loc"]), []).append(error["msg"])
            return None, errors

    def _refresh(self) -> None:
        model, errors = self._check()
        self._is_valid = model is not None
        self._errors = {
            field: messages
            for field, messages in errors.items()
            if field == FORM_ERRORS or field.split(".", 1)[0] in self._touched
        }
