"""Tests for the TaxRuleRegistry: applicability and the write path."""

import logging
import threading
from datetime import datetime, time, timezone
from decimal import Decimal

import pytest

from tax_rules.context import TaxContext
from tax_rules.exceptions import (
    ConflictingDefault,
    DuplicateRule,
    InvalidContext,
    InvalidRuleConfiguration,
    RuleNotFound,
)
from tax_rules.registry import TaxRuleRegistry, select_applicable
from tax_rules.rules import CalculationMethod, TaxKind, TaxRule, TaxTier

AS_OF = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)  # Saturday


def _rule(rule_id: str = "r1", **overrides) -> TaxRule:
    fields = {
        "rule_id": rule_id,
        "tenant_id": "t1",
        "name": f"Tax {rule_id}",
        "rate": Decimal("10"),
    }
    fields.update(overrides)
    return TaxRule(**fields)


def _ctx(amount: str = "100.00", **overrides) -> TaxContext:
    fields = {"base_amount": Decimal(amount), "as_of": AS_OF}
    fields.update(overrides)
    return TaxContext(**fields)


def _ids(rules) -> list[str]:
    return [r.rule_id for r in rules]


@pytest.fixture
def registry() -> TaxRuleRegistry:
    return TaxRuleRegistry("t1")


# ── Applicability filters ────────────────────────────────────────────


def test_unrestricted_rule_applies(registry: TaxRuleRegistry):
    registry.add(_rule())
    assert _ids(registry.applicable_rules(_ctx())) == ["r1"]


def test_inactive_rule_excluded(registry: TaxRuleRegistry):
    registry.add(_rule(is_active=False))
    assert registry.applicable_rules(_ctx()) == []


def test_effective_window(registry: TaxRuleRegistry):
    registry.add(_rule("starts-now", effective_from=AS_OF))
    registry.add(_rule("ends-now", effective_until=AS_OF))
    registry.add(
        _rule("future", effective_from=datetime(2027, 1, 1, tzinfo=timezone.utc))
    )
    assert _ids(registry.applicable_rules(_ctx())) == ["starts-now"]


def test_geography_must_match_exactly(registry: TaxRuleRegistry):
    registry.add(_rule("sa", country="SA"))
    registry.add(_rule("riyadh", country="SA", city="Riyadh"))
    registry.add(_rule("us", country="US"))
    result = registry.applicable_rules(_ctx(country="SA", city="Riyadh"))
    assert _ids(result) == ["riyadh", "sa"]
    assert _ids(registry.applicable_rules(_ctx(country="SA", city="Jeddah"))) == ["sa"]


def test_restricted_field_does_not_match_blank_context(registry: TaxRuleRegistry):
    registry.add(_rule(country="SA"))
    assert registry.applicable_rules(_ctx()) == []


def test_postal_code_membership(registry: TaxRuleRegistry):
    registry.add(_rule(postal_codes={"11564", "11565"}))
    assert len(registry.applicable_rules(_ctx(postal_code="11564"))) == 1
    assert registry.applicable_rules(_ctx(postal_code="90210")) == []


def test_customer_type_membership(registry: TaxRuleRegistry):
    registry.add(_rule(customer_types={"business"}))
    assert len(registry.applicable_rules(_ctx(customer_type="business"))) == 1
    assert registry.applicable_rules(_ctx(customer_type="retail")) == []


def test_product_type_membership(registry: TaxRuleRegistry):
    registry.add(_rule(product_types={"tobacco"}))
    assert len(registry.applicable_rules(_ctx(product_type="tobacco"))) == 1
    assert registry.applicable_rules(_ctx(product_type="books")) == []


def test_exclusion_wins_over_unrestricted_inclusion(registry: TaxRuleRegistry):
    registry.add(_rule(product_types=[], excluded_product_types=["digital"]))
    assert registry.applicable_rules(_ctx(product_type="digital")) == []
    assert len(registry.applicable_rules(_ctx(product_type="books"))) == 1


def test_exclusion_wins_over_explicit_inclusion(registry: TaxRuleRegistry):
    registry.add(
        _rule(product_types={"digital"}, excluded_product_types={"digital"})
    )
    assert registry.applicable_rules(_ctx(product_type="digital")) == []


def test_order_amount_bounds_inclusive(registry: TaxRuleRegistry):
    registry.add(
        _rule(min_order_amount=Decimal("50"), max_order_amount=Decimal("500"))
    )
    assert len(registry.applicable_rules(_ctx("50"))) == 1
    assert len(registry.applicable_rules(_ctx("500"))) == 1
    assert registry.applicable_rules(_ctx("49.99")) == []
    assert registry.applicable_rules(_ctx("500.01")) == []


def test_quantity_bounds(registry: TaxRuleRegistry):
    registry.add(_rule(min_quantity=2, max_quantity=10))
    assert registry.applicable_rules(_ctx(quantity=1)) == []
    assert len(registry.applicable_rules(_ctx(quantity=2))) == 1
    assert len(registry.applicable_rules(_ctx(quantity=10))) == 1
    assert registry.applicable_rules(_ctx(quantity=11)) == []


def test_weekday_and_hour_windows(registry: TaxRuleRegistry):
    registry.add(_rule("weekend", valid_days={6, 7}))
    registry.add(_rule("weekday", valid_days={1, 2, 3, 4, 5}))
    registry.add(_rule("night", valid_hours=(time(22), time(6))))
    registry.add(_rule("office", valid_hours=(time(9), time(17))))
    assert _ids(registry.applicable_rules(_ctx())) == ["office", "weekend"]


# ── Ordering and validation ──────────────────────────────────────────


def test_ordered_by_priority_then_id(registry: TaxRuleRegistry):
    registry.add(_rule("b", priority=1))
    registry.add(_rule("a", priority=1))
    registry.add(_rule("c", priority=0))
    assert _ids(registry.applicable_rules(_ctx())) == ["c", "a", "b"]


def test_no_match_returns_empty_list(registry: TaxRuleRegistry):
    registry.add(_rule(country="US"))
    assert registry.applicable_rules(_ctx(country="SA")) == []


def test_negative_amount_is_invalid(registry: TaxRuleRegistry):
    with pytest.raises(InvalidContext) as exc:
        registry.applicable_rules(_ctx("-1"))
    assert exc.value.field == "base_amount"


def test_zero_quantity_is_invalid(registry: TaxRuleRegistry):
    with pytest.raises(InvalidContext) as exc:
        registry.applicable_rules(_ctx(quantity=0))
    assert exc.value.field == "quantity"


def test_select_applicable_is_pure():
    rules = [_rule("b", priority=2), _rule("a", priority=1, is_active=False)]
    assert _ids(select_applicable(rules, _ctx())) == ["b"]
    assert _ids(rules) == ["b", "a"]


# ── Write path ───────────────────────────────────────────────────────


def test_rule_from_other_tenant_rejected(registry: TaxRuleRegistry):
    with pytest.raises(InvalidRuleConfiguration, match="tenant"):
        registry.add(_rule(tenant_id="t2"))


def test_duplicate_id_name_and_code_rejected(registry: TaxRuleRegistry):
    registry.add(_rule("r1", code="VAT"))
    with pytest.raises(DuplicateRule) as exc:
        registry.add(_rule("r1", name="Other"))
    assert exc.value.field == "id"
    with pytest.raises(DuplicateRule) as exc:
        registry.add(_rule("r2", name="Tax r1"))
    assert exc.value.field == "name"
    with pytest.raises(DuplicateRule) as exc:
        registry.add(_rule("r3", code="VAT"))
    assert exc.value.field == "code"


def test_slugs_made_unique(registry: TaxRuleRegistry):
    first = registry.add(_rule("r1", name="Eco Fee"))
    second = registry.add(_rule("r2", name="Eco Fee!"))
    third = registry.add(_rule("r3", name="eco fee"))
    assert [first.slug, second.slug, third.slug] == ["eco-fee", "eco-fee-1", "eco-fee-2"]


def test_second_active_default_rejected(registry: TaxRuleRegistry):
    registry.add(_rule("vat-1", kind=TaxKind.VAT, is_default=True))
    with pytest.raises(ConflictingDefault) as exc:
        registry.add(_rule("vat-2", kind=TaxKind.VAT, is_default=True))
    assert exc.value.existing_rule_id == "vat-1"
    assert exc.value.kind == "vat"
    assert len(registry) == 1


def test_defaults_of_different_kinds_allowed(registry: TaxRuleRegistry):
    registry.add(_rule("vat", kind=TaxKind.VAT, is_default=True))
    registry.add(_rule("excise", kind=TaxKind.EXCISE, is_default=True))
    assert registry.default_rule(TaxKind.VAT).rule_id == "vat"
    assert registry.default_rule(TaxKind.EXCISE).rule_id == "excise"
    assert registry.default_rule(TaxKind.CUSTOMS) is None


def test_inactive_default_does_not_conflict(registry: TaxRuleRegistry):
    registry.add(_rule("old", kind=TaxKind.VAT, is_default=True, is_active=False))
    registry.add(_rule("new", kind=TaxKind.VAT, is_default=True))
    assert registry.default_rule(TaxKind.VAT).rule_id == "new"


def test_activating_second_default_rejected(registry: TaxRuleRegistry):
    registry.add(_rule("old", kind=TaxKind.VAT, is_default=True, is_active=False))
    registry.add(_rule("new", kind=TaxKind.VAT, is_default=True))
    with pytest.raises(ConflictingDefault):
        registry.activate("old")
    assert registry.get("old").is_active is False


def test_set_default_conflict_leaves_snapshot_unchanged(registry: TaxRuleRegistry):
    registry.add(_rule("a", kind=TaxKind.VAT, is_default=True))
    registry.add(_rule("b", kind=TaxKind.VAT))
    before = registry.rules
    with pytest.raises(ConflictingDefault):
        registry.set_default("b")
    assert registry.rules is before


def test_moving_default_between_rules(registry: TaxRuleRegistry):
    registry.add(_rule("a", kind=TaxKind.VAT, is_default=True))
    registry.add(_rule("b", kind=TaxKind.VAT))
    registry.clear_default("a")
    registry.set_default("b")
    assert registry.default_rule(TaxKind.VAT).rule_id == "b"


def test_update_bumps_version(registry: TaxRuleRegistry):
    registry.add(_rule())
    updated = registry.update(_rule(rate=Decimal("12")))
    assert updated.version == 2
    assert updated.updated_at is not None
    assert registry.get("r1").rate == Decimal("12")


def test_update_unknown_rule(registry: TaxRuleRegistry):
    with pytest.raises(RuleNotFound):
        registry.update(_rule("missing"))


def test_deactivate_keeps_rule(registry: TaxRuleRegistry):
    registry.add(_rule())
    registry.deactivate("r1")
    assert len(registry) == 1
    assert registry.active_rules() == []
    assert registry.applicable_rules(_ctx()) == []


def test_flag_change_does_not_lose_concurrent_update(registry: TaxRuleRegistry):
    registry.add(_rule(rate=Decimal("15")))
    writer = threading.Thread(
        target=lambda: registry.update(_rule(rate=Decimal("5")))
    )
    original_get, original_find = registry.get, registry._find

    def _interleave():
        # Let another writer run while the flag change holds its copy
        if writer.ident is None:
            writer.start()
            writer.join(timeout=0.2)

    def get(rule_id):
        _interleave()
        return original_get(rule_id)

    def find(rule_id, rules):
        _interleave()
        return original_find(rule_id, rules)

    registry.get, registry._find = get, find
    registry.deactivate("r1")
    writer.join(timeout=5)

    stored = registry.get("r1")
    assert stored.rate == Decimal("5")
    assert stored.version == 3


def test_get_unknown_rule(registry: TaxRuleRegistry):
    with pytest.raises(RuleNotFound) as exc:
        registry.get("nope")
    assert exc.value.code == "RULE_NOT_FOUND"


def test_tier_gap_logged_on_write(registry: TaxRuleRegistry, caplog):
    caplog.set_level(logging.WARNING, logger="tax_rules")
    registry.add(
        _rule(
            method=CalculationMethod.TIERED,
            tiers=(
                TaxTier(Decimal("0"), Decimal("100"), Decimal("5")),
                TaxTier(Decimal("200"), None, Decimal("10")),
            ),
        )
    )
    assert "no tier covering [100, 200)" in caplog.text


def test_constructor_applies_write_checks():
    with pytest.raises(ConflictingDefault):
        TaxRuleRegistry(
            "t1",
            [
                _rule("a", kind=TaxKind.VAT, is_default=True),
                _rule("b", kind=TaxKind.VAT, is_default=True),
            ],
        )
