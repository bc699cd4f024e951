"""Sale context passed to rule selection and tax calculation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from tax_rules.exceptions import InvalidContext
from tax_rules.rules import MAX_AMOUNT, MAX_QUANTITY, ensure_aware, parse_datetime


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class TaxContext:
    """A single sale to be taxed."""

    base_amount: Decimal
    quantity: int = 1
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    customer_type: Optional[str] = None
    product_type: Optional[str] = None
    as_of: datetime = field(default_factory=_utc_now)
    reference: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "as_of", ensure_aware(self.as_of))

    def validate(self) -> None:
        """Raise ``InvalidContext`` for an amount or quantity out of range."""
        if not isinstance(self.base_amount, Decimal):
            raise InvalidContext(
                "base_amount", self.base_amount, "must be a Decimal"
            )
        if not self.base_amount.is_finite():
            raise InvalidContext("base_amount", self.base_amount, "must be finite")
        if self.base_amount < 0:
            raise InvalidContext(
                "base_amount", self.base_amount, "must be non-negative"
            )
        if self.base_amount > MAX_AMOUNT:
            raise InvalidContext(
                "base_amount", self.base_amount, f"must be at most {MAX_AMOUNT}"
            )
        if self.quantity < 1:
            raise InvalidContext("quantity", self.quantity, "must be at least 1")
        if self.quantity > MAX_QUANTITY:
            raise InvalidContext(
                "quantity", self.quantity, f"must be at most {MAX_QUANTITY}"
            )

    @classmethod
    def from_dict(cls, data: dict) -> "TaxContext":
        """
        Build a context from a CSV row or JSON object.

        Blank strings are treated as absent. Unparseable amounts or
        quantities raise ``InvalidContext``.
        """
        raw_amount = data.get("base_amount", data.get("amount"))
        try:
            amount = Decimal(str(raw_amount).strip())
        except (InvalidOperation, ValueError):
            raise InvalidContext("base_amount", raw_amount, "not a number")

        raw_quantity = data.get("quantity") or 1
        try:
            quantity = int(raw_quantity)
        except (TypeError, ValueError):
            raise InvalidContext("quantity", raw_quantity, "not an integer")

        try:
            as_of = parse_datetime(data.get("as_of")) or _utc_now()
        except ValueError:
            raise InvalidContext("as_of", data.get("as_of"), "not an ISO timestamp")

        return cls(
            base_amount=amount,
            quantity=quantity,
            country=_blank_to_none(data.get("country")),
            state=_blank_to_none(data.get("state")),
            city=_blank_to_none(data.get("city")),
            postal_code=_blank_to_none(data.get("postal_code")),
            customer_type=_blank_to_none(data.get("customer_type")),
            product_type=_blank_to_none(data.get("product_type")),
            as_of=as_of,
            reference=str(data.get("reference") or ""),
        )
