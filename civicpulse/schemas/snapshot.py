"""
CivicPulse - Add-on Snapshot Value Object

The priced add-on lines frozen on a mandate order at creation. The JSON
form (an array of ``{id, code, name, quantity, unitPrice, totalPrice}``)
is the legal record of what was billed and must round-trip exactly.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterator, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator, model_validator

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantize to cents, half-up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class AddonSnapshotLine(BaseModel):
    """One priced add-on line. Immutable."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: UUID
    code: str
    name: str
    quantity: int = Field(..., ge=0)
    unit_price: Decimal = Field(..., alias="unitPrice", ge=0)
    total_price: Decimal = Field(..., alias="totalPrice", ge=0)

    @field_validator("unit_price", "total_price", mode="after")
    @classmethod
    def _quantize(cls, v: Decimal) -> Decimal:
        return to_money(v)

    @model_validator(mode="after")
    def _check_total(self) -> "AddonSnapshotLine":
        if to_money(self.unit_price * self.quantity) != self.total_price:
            raise ValueError(
                f"totalPrice {self.total_price} does not equal quantity x unitPrice for {self.code}"
            )
        return self

    @classmethod
    def priced(cls, id: UUID, code: str, name: str, quantity: int, unit_price: Decimal) -> "AddonSnapshotLine":
        unit = to_money(unit_price)
        return cls(
            id=id,
            code=code,
            name=name,
            quantity=quantity,
            unit_price=unit,
            total_price=to_money(unit * quantity),
        )


class AddonsSnapshot(RootModel[Tuple[AddonSnapshotLine, ...]]):
    """Ordered, immutable collection of snapshot lines."""

    model_config = ConfigDict(frozen=True)

    root: Tuple[AddonSnapshotLine, ...] = ()

    def __iter__(self) -> Iterator[AddonSnapshotLine]:
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    @property
    def lines(self) -> Tuple[AddonSnapshotLine, ...]:
        return self.root

    @property
    def total(self) -> Decimal:
        return to_money(sum((line.total_price for line in self.root), Decimal("0")))

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str) -> "AddonsSnapshot":
        return cls.model_validate_json(raw or "[]")

    @classmethod
    def of(cls, lines) -> "AddonsSnapshot":
        return cls(tuple(lines))
