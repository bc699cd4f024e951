#!/usr/bin/env python3
"""
Quick Start Example
===================

Demonstrates basic usage of the TaxCalculationEngine: a VAT rule plus a
compound service tax applied to a business purchase, and the divergence
between tiered and progressive rules on the same brackets.

Usage:
    python examples/quick_start.py
"""

from decimal import Decimal

from tax_rules.calculator import TaxCalculationEngine
from tax_rules.context import TaxContext
from tax_rules.registry import TaxRuleRegistry
from tax_rules.rules import CalculationMethod, TaxKind, TaxRule, TaxTier


def main() -> None:
    registry = TaxRuleRegistry(
        "demo-store",
        [
            TaxRule(
                rule_id="vat",
                tenant_id="demo-store",
                name="VAT",
                kind=TaxKind.VAT,
                rate=Decimal("10"),
                country="SA",
            ),
            TaxRule(
                rule_id="service",
                tenant_id="demo-store",
                name="Service Tax",
                kind=TaxKind.SERVICE_TAX,
                rate=Decimal("5"),
                is_compound=True,
                customer_types=frozenset({"business"}),
                priority=1,
            ),
        ],
    )
    engine = TaxCalculationEngine(registry)

    ctx = TaxContext(
        base_amount=Decimal("100.00"),
        country="SA",
        customer_type="business",
        reference="DEMO-001",
    )
    result = engine.calculate(ctx)

    print(f"Reference:      {result.reference}")
    print(f"Base Amount:    {result.base_amount:.2f}")
    for line in result.lines:
        tag = " (compound)" if line.compounded else ""
        print(f"  {line.rule_name:<12} {line.amount:>8.2f}{tag}")
    print(f"Total Tax:      {result.total:.2f}")
    print(f"Total w/ Tax:   {result.total_with_tax:.2f}")

    # Same brackets, two methods
    print("\n--- Tiered vs Progressive on 1500.00 ---")
    tiers = (
        TaxTier(Decimal("0"), Decimal("1000"), Decimal("5")),
        TaxTier(Decimal("1000"), None, Decimal("10")),
    )
    for method in (CalculationMethod.TIERED, CalculationMethod.PROGRESSIVE):
        reg = TaxRuleRegistry(
            "demo-store",
            [
                TaxRule(
                    rule_id=method.value,
                    tenant_id="demo-store",
                    name=method.value.title(),
                    method=method,
                    tiers=tiers,
                )
            ],
        )
        res = TaxCalculationEngine(reg).calculate(
            TaxContext(base_amount=Decimal("1500.00"))
        )
        print(f"{method.value:<12} {res.total:>8.2f}")


if __name__ == "__main__":
    main()
