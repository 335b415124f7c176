"""Form schemas for ERP entities."""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

FABRIC_CODE_PATTERN = r"^KMS-[A-Z]{2}-\d{4}$"


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class _Form(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


# -----------------------------------------------------------------------------
# Master data
# -----------------------------------------------------------------------------


class FabricProperties(_Form):
    """Technical card of a fabric type."""

    desen_varyant: str | None = None
    grup_adi: str | None = None
    en: float | None = Field(default=None, gt=0, le=400)  # width, cm
    gramaj: float | None = Field(default=None, gt=0, le=2000)  # g/m2
    harman: str | None = None
    orgu: str | None = None
    strech_yonu: str | None = None
    tuse: str | None = None
    tarih: date | None = None
    boyama_turu: str | None = None

    @field_validator("en", "gramaj", "tarih", mode="before")
    @classmethod
    def blank_numbers(cls, value: Any) -> Any:
        return _blank_to_none(value)


class FabricTypeForm(_Form):
    name: str = Field(min_length=2)
    # Generated on create when left empty
    code: str | None = Field(default=None, pattern=FABRIC_CODE_PATTERN)
    description: str | None = ""
    properties: FabricProperties | None = None

    @field_validator("code", mode="before")
    @classmethod
    def blank_code(cls, value: Any) -> Any:
        return _blank_to_none(value)


class MasterItemForm(_Form):
    """Fabrics and yarns of the master data screens."""

    name: str = Field(min_length=2)
    code: str = Field(min_length=2)
    description: str | None = ""


class RawMaterialForm(MasterItemForm):
    unit: str = Field(min_length=1)


class DepartmentForm(_Form):
    name: str = Field(min_length=2)
    code: str = Field(min_length=2, max_length=10)
    description: str | None = ""


class RoleForm(_Form):
    name: str = Field(min_length=2)
    description: str | None = ""
    permissions: list[str] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Users
# -----------------------------------------------------------------------------


class UserCreate(_Form):
    username: str = Field(min_length=3, pattern=r"^[A-Za-z0-9_.-]+$")
    full_name: str = Field(min_length=2)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(min_length=6)
    department_id: int | None = None
    role: str = Field(min_length=1)
    is_active: bool = True

    @field_validator("department_id", mode="before")
    @classmethod
    def blank_department(cls, value: Any) -> Any:
        return _blank_to_none(value)


class UserUpdate(UserCreate):
    """Same rules; a missing password keeps the current one."""

    password: str | None = Field(default=None, min_length=6)  # type: ignore[assignment]


# -----------------------------------------------------------------------------
# Dye recipes
# -----------------------------------------------------------------------------


class ChemicalForm(_Form):
    code: str = Field(min_length=2)
    name: str = Field(min_length=2)
    type: str = Field(min_length=1)
    unit: str = Field(default="g/L", min_length=1)
    concentration: float | None = Field(default=None, ge=0, le=100)  # percent
    supplier: str | None = None
    stock: float = Field(default=0, ge=0)

    @field_validator("concentration", mode="before")
    @classmethod
    def blank_concentration(cls, value: Any) -> Any:
        return _blank_to_none(value)


# -----------------------------------------------------------------------------
# Yarn spinning and warehouse
# -----------------------------------------------------------------------------


class TwistingOrderForm(_Form):
    order_number: str = Field(min_length=3)
    yarn_type_id: int
    machine_id: int | None = None
    quantity: float = Field(gt=0)  # kg
    twist_per_meter: int = Field(ge=50, le=3000)
    twist_direction: str = Field(pattern=r"^[SZ]$")
    start_date: date
    end_date: date
    notes: str | None = ""

    @field_validator("machine_id", mode="before")
    @classmethod
    def blank_machine(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("end_date")
    @classmethod
    def end_after_start(cls, value: date, info: ValidationInfo) -> date:
        start = info.data.get("start_date")
        if start is not None and value < start:
            raise ValueError("end date must not be before start date")
        return value


class IssueCardForm(_Form):
    card_number: str = Field(min_length=3)
    yarn_type_id: int
    lot_number: str = Field(min_length=1)
    quantity: float = Field(gt=0)  # kg
    department_id: int
    issued_to: str = Field(min_length=2)
    issue_date: date
    notes: str | None = ""
