"""
Tax rule data model.

A ``TaxRule`` is one configured tax definition for a tenant: what it
taxes (scope), when (validity window, weekdays, hours), and how
(method, rate or fixed amount, tiers, clamps, rounding). Rules are
immutable; configuration errors surface when the rule is built, not
when it is first used in a calculation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional

from tax_rules.config import DEFAULT_CONFIG, EngineConfig
from tax_rules.exceptions import InvalidRuleConfiguration


class TaxKind(Enum):
    SALES_TAX = "sales_tax"
    VAT = "vat"
    EXCISE = "excise"
    CUSTOMS = "customs"
    SERVICE_TAX = "service_tax"
    LUXURY_TAX = "luxury_tax"
    ENVIRONMENTAL_TAX = "environmental_tax"


class TaxClass(Enum):
    STANDARD = "standard"
    REDUCED = "reduced"
    ZERO = "zero"
    EXEMPT = "exempt"
    REVERSE_CHARGE = "reverse_charge"


class CalculationMethod(Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    TIERED = "tiered"  # one bracket applies to the whole base
    PROGRESSIVE = "progressive"  # each bracket taxes its own slice


class RoundingMode(Enum):
    NEAREST = "nearest"  # half away from zero
    FLOOR = "floor"
    CEILING = "ceiling"
    NONE = "none"

    @classmethod
    def parse(cls, value: str) -> "RoundingMode":
        key = value.strip().lower()
        return cls(_ROUNDING_ALIASES.get(key, key))


# Spellings used by older rule exports
_ROUNDING_ALIASES: dict[str, str] = {
    "round": "nearest",
    "ceil": "ceiling",
    "no_rounding": "none",
}

_HUNDRED = Decimal("100")

# Money is stored as DECIMAL(15,4) and quantities as 32-bit integers
MAX_AMOUNT = Decimal("99999999999.9999")
MAX_QUANTITY = 2_147_483_647


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a JSON/CSV number to Decimal through its string form."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def ensure_aware(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_aware(datetime.fromisoformat(text))


def slugify(name: str) -> str:
    """Lower-case, drop non-alphanumerics, join words with dashes."""
    slug = re.sub(r"[^a-zA-Z0-9\s]", "", name).lower()
    slug = re.sub(r"\s+", "-", slug)
    return slug.strip("-")


@dataclass(frozen=True)
class TaxTier:
    """A ``[lower, upper)`` bracket; ``upper=None`` means unbounded."""

    lower: Decimal
    upper: Optional[Decimal]
    rate: Decimal  # percentage, e.g. 5 = 5%

    def __post_init__(self) -> None:
        object.__setattr__(self, "lower", to_decimal(self.lower))
        object.__setattr__(self, "upper", to_decimal(self.upper))
        object.__setattr__(self, "rate", to_decimal(self.rate))

    @property
    def is_unbounded(self) -> bool:
        return self.upper is None

    def contains(self, amount: Decimal) -> bool:
        return amount >= self.lower and (self.upper is None or amount < self.upper)

    @classmethod
    def from_dict(cls, data: dict) -> "TaxTier":
        return cls(
            lower=to_decimal(data.get("min", 0)) or Decimal("0"),
            upper=to_decimal(data.get("max")),
            rate=to_decimal(data["rate"]),
        )


def _flag(data: dict, key: str, default: bool) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return value


def _frozen(values: Optional[Iterable[Any]]) -> frozenset:
    if not values:
        return frozenset()
    if isinstance(values, str):
        return frozenset([values])
    return frozenset(values)


@dataclass(frozen=True)
class TaxRule:
    """One configured tax definition for a tenant."""

    rule_id: str
    tenant_id: str
    name: str
    method: CalculationMethod = CalculationMethod.PERCENTAGE
    rate: Decimal = Decimal("0")
    fixed_amount: Optional[Decimal] = None
    tiers: tuple[TaxTier, ...] = ()
    code: Optional[str] = None
    display_name: str = ""
    slug: str = ""
    kind: TaxKind = TaxKind.SALES_TAX
    tax_class: TaxClass = TaxClass.STANDARD

    # Post-calculation clamp
    minimum_amount: Optional[Decimal] = None
    maximum_amount: Optional[Decimal] = None

    rounding_mode: RoundingMode = RoundingMode.NEAREST
    precision: int = 2

    is_inclusive: bool = False
    is_compound: bool = False

    # Scope: empty / None means unrestricted
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    postal_codes: frozenset[str] = field(default_factory=frozenset)
    product_types: frozenset[str] = field(default_factory=frozenset)
    excluded_product_types: frozenset[str] = field(default_factory=frozenset)
    customer_types: frozenset[str] = field(default_factory=frozenset)
    min_order_amount: Decimal = Decimal("0")
    max_order_amount: Optional[Decimal] = None
    min_quantity: int = 0
    max_quantity: Optional[int] = None
    valid_days: frozenset[int] = field(default_factory=frozenset)  # ISO 1=Mon
    valid_hours: Optional[tuple[time, time]] = None

    effective_from: Optional[datetime] = None
    effective_until: Optional[datetime] = None

    priority: int = 0
    is_active: bool = True
    is_default: bool = False
    version: int = 1
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        _set = object.__setattr__
        if not self.display_name:
            _set(self, "display_name", self.name)
        if not self.slug:
            _set(self, "slug", slugify(self.name))

        for name in ("rate", "fixed_amount", "minimum_amount",
                     "maximum_amount", "min_order_amount", "max_order_amount"):
            _set(self, name, to_decimal(getattr(self, name)))
        if self.rate is None:
            _set(self, "rate", Decimal("0"))
        if self.min_order_amount is None:
            _set(self, "min_order_amount", Decimal("0"))

        _set(self, "tiers", tuple(self.tiers))
        for name in ("postal_codes", "product_types",
                     "excluded_product_types", "customer_types", "valid_days"):
            _set(self, name, _frozen(getattr(self, name)))

        if self.effective_from is not None:
            _set(self, "effective_from", ensure_aware(self.effective_from))
        if self.effective_until is not None:
            _set(self, "effective_until", ensure_aware(self.effective_until))

        self._validate()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _fail(self, reason: str) -> None:
        raise InvalidRuleConfiguration(self.rule_id, reason)

    def _validate(self) -> None:
        if not self.rule_id:
            self._fail("rule id is required")
        if not self.tenant_id:
            self._fail("tenant id is required")
        if not self.name or not self.name.strip():
            self._fail("name is required")

        if not self.rate.is_finite() or not Decimal("0") <= self.rate <= _HUNDRED:
            self._fail(f"rate must be between 0 and 100, got {self.rate}")
        for name in ("fixed_amount", "minimum_amount", "maximum_amount",
                     "min_order_amount", "max_order_amount"):
            value = getattr(self, name)
            if value is not None and not (value.is_finite() and value <= MAX_AMOUNT):
                self._fail(f"{name} must be finite and at most {MAX_AMOUNT}")
        if self.method is CalculationMethod.FIXED_AMOUNT and self.fixed_amount is None:
            self._fail("fixed_amount method requires a fixed amount")
        if self.fixed_amount is not None and self.fixed_amount < 0:
            self._fail("fixed amount must be non-negative")

        if self.minimum_amount is not None and self.minimum_amount < 0:
            self._fail("minimum amount must be non-negative")
        if (
            self.maximum_amount is not None
            and self.maximum_amount < (self.minimum_amount or Decimal("0"))
        ):
            self._fail("maximum amount must be >= minimum amount")

        if self.min_order_amount < 0:
            self._fail("minimum order amount must be non-negative")
        if (
            self.max_order_amount is not None
            and self.max_order_amount < self.min_order_amount
        ):
            self._fail("maximum order amount must be >= minimum order amount")
        if self.min_quantity < 0:
            self._fail("minimum quantity must be non-negative")
        if self.max_quantity is not None and self.max_quantity < self.min_quantity:
            self._fail("maximum quantity must be >= minimum quantity")

        if (
            self.effective_from is not None
            and self.effective_until is not None
            and self.effective_until <= self.effective_from
        ):
            self._fail("effective_until must be after effective_from")

        if not 0 <= self.precision <= 10:
            self._fail(f"precision must be 0..10, got {self.precision}")
        if self.priority < 0:
            self._fail("priority must be non-negative")
        if any(day not in range(1, 8) for day in self.valid_days):
            self._fail("valid_days must be ISO weekdays 1..7")
        if self.valid_hours is not None:
            if len(self.valid_hours) != 2:
                self._fail("valid_hours must be a (start, end) pair")
            if self.valid_hours[0] == self.valid_hours[1]:
                self._fail("valid_hours start and end must differ")

        self._validate_tiers()

    def _validate_tiers(self) -> None:
        previous: Optional[TaxTier] = None
        last = len(self.tiers) - 1
        for i, tier in enumerate(self.tiers):
            bounds = (tier.lower, tier.rate) + (() if tier.upper is None else (tier.upper,))
            if not all(b.is_finite() for b in bounds):
                self._fail(f"tier {i} bounds and rate must be finite")
            if tier.lower < 0:
                self._fail(f"tier {i} lower bound must be non-negative")
            if not Decimal("0") <= tier.rate <= _HUNDRED:
                self._fail(f"tier {i} rate must be between 0 and 100")
            if tier.upper is not None and tier.upper <= tier.lower:
                self._fail(f"tier {i} upper bound must exceed its lower bound")
            if tier.upper is None and i != last:
                self._fail("only the last tier may be unbounded")
            if previous is not None and tier.lower < previous.upper:
                self._fail(
                    f"tier {i} overlaps or precedes tier {i - 1}; "
                    "tiers must be sorted and non-overlapping"
                )
            previous = tier

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.priority, self.rule_id)

    @property
    def uses_tiers(self) -> bool:
        return (
            self.method in (CalculationMethod.TIERED, CalculationMethod.PROGRESSIVE)
            and bool(self.tiers)
        )

    def tier_gaps(self) -> list[tuple[Decimal, Decimal]]:
        """Return ``(from, to)`` ranges not covered by any tier."""
        gaps: list[tuple[Decimal, Decimal]] = []
        for before, after in zip(self.tiers, self.tiers[1:]):
            if after.lower > before.upper:
                gaps.append((before.upper, after.lower))
        return gaps

    def is_effective_at(self, moment: datetime) -> bool:
        moment = ensure_aware(moment)
        if self.effective_from is not None and self.effective_from > moment:
            return False
        if self.effective_until is not None and self.effective_until <= moment:
            return False
        return True

    def is_open_at(self, moment: datetime) -> bool:
        """Check the weekday and time-of-day windows."""
        if self.valid_days and moment.isoweekday() not in self.valid_days:
            return False
        if self.valid_hours is not None:
            start, end = self.valid_hours
            now = moment.time().replace(tzinfo=None)
            if start < end:
                return start <= now < end
            # Window wraps past midnight
            return now >= start or now < end
        return True

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(
        cls, data: dict, config: EngineConfig = DEFAULT_CONFIG
    ) -> "TaxRule":
        """
        Build a rule from a JSON-style mapping.

        Tiers are given as ``[{"min": 0, "max": 1000, "rate": 5}, ...]``
        and scope sets as plain lists. Malformed input raises
        ``InvalidRuleConfiguration``.
        """
        rule_id = str(data.get("id", data.get("rule_id", "")))
        try:
            hours = data.get("valid_hours")
            valid_hours = (
                (time.fromisoformat(hours["start"]), time.fromisoformat(hours["end"]))
                if hours
                else None
            )
            return cls(
                rule_id=rule_id,
                tenant_id=str(data["tenant_id"]),
                name=data["name"],
                method=CalculationMethod(data.get("method", "percentage")),
                rate=to_decimal(data.get("rate", 0)),
                fixed_amount=to_decimal(data.get("fixed_amount")),
                tiers=tuple(TaxTier.from_dict(t) for t in data.get("tiers") or []),
                code=data.get("code"),
                display_name=data.get("display_name") or "",
                slug=data.get("slug") or "",
                kind=TaxKind(data.get("kind", "sales_tax")),
                tax_class=TaxClass(data.get("tax_class", "standard")),
                minimum_amount=to_decimal(data.get("minimum_amount")),
                maximum_amount=to_decimal(data.get("maximum_amount")),
                rounding_mode=RoundingMode.parse(
                    data.get("rounding_mode") or config.default_rounding
                ),
                precision=int(data.get("precision", config.default_precision)),
                is_inclusive=_flag(data, "is_inclusive", False),
                is_compound=_flag(data, "is_compound", False),
                country=data.get("country"),
                state=data.get("state"),
                city=data.get("city"),
                postal_codes=_frozen(data.get("postal_codes")),
                product_types=_frozen(data.get("product_types")),
                excluded_product_types=_frozen(data.get("excluded_product_types")),
                customer_types=_frozen(data.get("customer_types")),
                min_order_amount=to_decimal(data.get("min_order_amount", 0)),
                max_order_amount=to_decimal(data.get("max_order_amount")),
                min_quantity=int(data.get("min_quantity", 0)),
                max_quantity=(
                    int(data["max_quantity"])
                    if data.get("max_quantity") is not None
                    else None
                ),
                valid_days=frozenset(int(d) for d in data.get("valid_days") or []),
                valid_hours=valid_hours,
                effective_from=parse_datetime(data.get("effective_from")),
                effective_until=parse_datetime(data.get("effective_until")),
                priority=int(data.get("priority", 0)),
                is_active=_flag(data, "is_active", True),
                is_default=_flag(data, "is_default", False),
            )
        except KeyError as e:
            raise InvalidRuleConfiguration(rule_id or None, f"missing field {e}")
        except (ValueError, TypeError, ArithmeticError) as e:
            raise InvalidRuleConfiguration(rule_id or None, str(e))
