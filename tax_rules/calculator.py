"""
Tax calculation engine.

Handles:
- Rule selection through the registry (one snapshot per calculation)
- Percentage, fixed-amount, tiered and progressive methods
- Compounding on top of previously computed tax, in priority order
- Per-rule minimum/maximum clamps and rounding
- Batch calculation with per-rule collection totals
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal, localcontext
from typing import Iterable, Optional

from tax_rules.config import DEFAULT_CONFIG, EngineConfig
from tax_rules.context import TaxContext
from tax_rules.exceptions import NoApplicableTier, TaxEngineError
from tax_rules.logging_config import get_logger
from tax_rules.registry import TaxRuleRegistry
from tax_rules.rules import CalculationMethod, RoundingMode, TaxRule

logger = get_logger(__name__)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")

# Enough digits for bounded amounts times bounded quantities, compounded,
# at up to 10 decimal places
_WORKING_PRECISION = 60

_ROUNDING: dict[RoundingMode, str] = {
    RoundingMode.NEAREST: ROUND_HALF_UP,
    RoundingMode.FLOOR: ROUND_FLOOR,
    RoundingMode.CEILING: ROUND_CEILING,
}


@dataclass(frozen=True)
class TaxLineResult:
    """One rule's contribution to a calculation."""

    rule_id: str
    rule_name: str
    amount: Decimal
    rate: Optional[Decimal]
    fixed_amount: Optional[Decimal]
    compounded: bool
    method: CalculationMethod
    kind: str
    taxable_base: Decimal
    raw_amount: Decimal
    is_inclusive: bool = False
    priority: int = 0


@dataclass(frozen=True)
class TaxCalculationResult:
    """Ordered per-rule breakdown plus the total."""

    lines: tuple[TaxLineResult, ...]
    total: Decimal
    base_amount: Decimal
    reference: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def inclusive_tax(self) -> Decimal:
        """Tax already embedded in the displayed price."""
        return sum((l.amount for l in self.lines if l.is_inclusive), _ZERO)

    @property
    def exclusive_tax(self) -> Decimal:
        """Tax added on top of the displayed price."""
        return sum((l.amount for l in self.lines if not l.is_inclusive), _ZERO)

    @property
    def total_with_tax(self) -> Decimal:
        return self.base_amount + self.exclusive_tax


@dataclass
class BatchResult:
    """Aggregated result for a batch of contexts."""

    results: list[TaxCalculationResult]
    total_base: Decimal
    total_tax: Decimal
    context_count: int
    rule_totals: dict[str, Decimal]
    errors: list[str] = field(default_factory=list)

    @property
    def calculated_count(self) -> int:
        return len(self.results)


def round_amount(amount: Decimal, mode: RoundingMode, precision: int) -> Decimal:
    """Round ``amount`` to ``precision`` places; ``NONE`` leaves it as is."""
    if mode is RoundingMode.NONE:
        return amount
    exponent = Decimal(1).scaleb(-precision)
    return amount.quantize(exponent, rounding=_ROUNDING[mode])


def clamp_amount(amount: Decimal, rule: TaxRule) -> Decimal:
    if rule.minimum_amount is not None and amount < rule.minimum_amount:
        amount = rule.minimum_amount
    if rule.maximum_amount is not None and amount > rule.maximum_amount:
        amount = rule.maximum_amount
    return amount


def tiered_amount(rule: TaxRule, amount_base: Decimal) -> tuple[Decimal, Decimal]:
    """
    Apply the single bracket containing ``amount_base`` to all of it.

    Returns ``(amount, rate)``. A base that falls in no bracket is a
    configuration gap and raises ``NoApplicableTier``.
    """
    for tier in rule.tiers:
        if tier.contains(amount_base):
            return amount_base * tier.rate / _HUNDRED, tier.rate
    raise NoApplicableTier(rule.rule_id, amount_base)


def progressive_amount(rule: TaxRule, amount_base: Decimal) -> Decimal:
    """Tax each bracket's slice of ``amount_base`` at that bracket's rate."""
    total = _ZERO
    for tier in rule.tiers:
        upper = amount_base if tier.upper is None else min(amount_base, tier.upper)
        taxable = max(_ZERO, upper - tier.lower)
        total += taxable * tier.rate / _HUNDRED
    return total


class TaxCalculationEngine:
    """
    Computes tax for a sale context against a tenant's rule registry.

    The engine holds no mutable state of its own; concurrent calls are
    safe as long as each passes its own context.
    """

    def __init__(
        self,
        registry: TaxRuleRegistry,
        config: EngineConfig = DEFAULT_CONFIG,
    ) -> None:
        self.registry = registry
        self.config = config

    def applicable_rules(self, context: TaxContext) -> list[TaxRule]:
        return self.registry.applicable_rules(context)

    def _raw_amount(
        self, rule: TaxRule, amount_base: Decimal, quantity: int
    ) -> tuple[Decimal, Optional[Decimal]]:
        """Return ``(raw amount, rate used)`` for one rule."""
        method = rule.method
        if method is CalculationMethod.FIXED_AMOUNT:
            return rule.fixed_amount * quantity, None

        if not rule.tiers or method is CalculationMethod.PERCENTAGE:
            # Tier-based methods without tiers fall back to the flat rate
            return amount_base * rule.rate / _HUNDRED, rule.rate

        if method is CalculationMethod.TIERED:
            return tiered_amount(rule, amount_base)

        raw = progressive_amount(rule, amount_base)
        if amount_base == _ZERO:
            return raw, _ZERO
        blended = (raw / amount_base * _HUNDRED).quantize(
            Decimal(1).scaleb(-self.config.rate_places), rounding=ROUND_HALF_UP
        )
        return raw, blended

    def calculate(self, context: TaxContext) -> TaxCalculationResult:
        """
        Calculate every applicable rule for ``context``, in priority order.

        Either returns a complete result or raises before producing any
        line (``InvalidContext``, ``NoApplicableTier``).
        """
        rules = self.registry.applicable_rules(context)
        lines: list[TaxLineResult] = []
        compounding_base = context.base_amount

        with localcontext() as decimal_ctx:
            decimal_ctx.prec = _WORKING_PRECISION
            for rule in rules:
                amount_base = (
                    compounding_base if rule.is_compound else context.base_amount
                )
                raw, rate = self._raw_amount(rule, amount_base, context.quantity)
                amount = round_amount(
                    clamp_amount(raw, rule), rule.rounding_mode, rule.precision
                )
                lines.append(
                    TaxLineResult(
                        rule_id=rule.rule_id,
                        rule_name=rule.display_name,
                        amount=amount,
                        rate=rate,
                        fixed_amount=(
                            rule.fixed_amount
                            if rule.method is CalculationMethod.FIXED_AMOUNT
                            else None
                        ),
                        compounded=rule.is_compound,
                        method=rule.method,
                        kind=rule.kind.value,
                        taxable_base=amount_base,
                        raw_amount=raw,
                        is_inclusive=rule.is_inclusive,
                        priority=rule.priority,
                    )
                )
                logger.debug(
                    "Rule %s (%s) on base %s: raw %s -> %s",
                    rule.rule_id, rule.method.value, amount_base, raw, amount,
                )
                compounding_base += amount

            total = sum((line.amount for line in lines), _ZERO)
        logger.debug(
            "Calculated %d tax line(s) for %s: total %s",
            len(lines), context.reference or "context", total,
        )
        return TaxCalculationResult(
            lines=tuple(lines),
            total=total,
            base_amount=context.base_amount,
            reference=context.reference,
        )

    def calculate_batch(self, contexts: Iterable[TaxContext]) -> BatchResult:
        """
        Calculate tax for each context independently.

        A context that fails is reported in ``errors`` and left out of
        the totals; the others are unaffected.
        """
        results: list[TaxCalculationResult] = []
        errors: list[str] = []
        total_base = _ZERO
        total_tax = _ZERO
        rule_totals: dict[str, Decimal] = {}
        count = 0

        for i, ctx in enumerate(contexts):
            count += 1
            try:
                result = self.calculate(ctx)
            except TaxEngineError as e:
                label = ctx.reference or f"#{i + 1}"
                logger.warning("Context %s failed: %s", label, e)
                errors.append(f"Context {label}: [{e.code}] {e}")
                continue

            results.append(result)
            with localcontext() as decimal_ctx:
                decimal_ctx.prec = _WORKING_PRECISION
                total_base += result.base_amount
                total_tax += result.total
                for line in result.lines:
                    rule_totals[line.rule_id] = (
                        rule_totals.get(line.rule_id, _ZERO) + line.amount
                    )

        return BatchResult(
            results=results,
            total_base=total_base,
            total_tax=total_tax,
            context_count=count,
            rule_totals=rule_totals,
            errors=errors,
        )
