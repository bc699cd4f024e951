"""
Tax rule registry.

Holds one tenant's tax rules and answers "which rules apply to this
sale?". Reads work on an immutable tuple snapshot and take no locks.
Writes build a new snapshot under a per-registry lock, which is where
the one-active-default-per-kind invariant is enforced.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional

from tax_rules.context import TaxContext
from tax_rules.exceptions import (
    ConflictingDefault,
    DuplicateRule,
    InvalidRuleConfiguration,
    RuleNotFound,
)
from tax_rules.logging_config import get_logger
from tax_rules.rules import TaxKind, TaxRule

logger = get_logger(__name__)


def _matches_scope(rule: TaxRule, ctx: TaxContext) -> bool:
    # Geography
    if rule.country is not None and rule.country != ctx.country:
        return False
    if rule.state is not None and rule.state != ctx.state:
        return False
    if rule.city is not None and rule.city != ctx.city:
        return False
    if rule.postal_codes and ctx.postal_code not in rule.postal_codes:
        return False

    if rule.customer_types and ctx.customer_type not in rule.customer_types:
        return False

    # Exclusion wins even when the inclusion set is unrestricted
    if ctx.product_type is not None and ctx.product_type in rule.excluded_product_types:
        return False
    if rule.product_types and ctx.product_type not in rule.product_types:
        return False
    return True


def _matches_bounds(rule: TaxRule, ctx: TaxContext) -> bool:
    if ctx.base_amount < rule.min_order_amount:
        return False
    if rule.max_order_amount is not None and ctx.base_amount > rule.max_order_amount:
        return False
    if ctx.quantity < rule.min_quantity:
        return False
    if rule.max_quantity is not None and ctx.quantity > rule.max_quantity:
        return False
    return True


def is_applicable(rule: TaxRule, ctx: TaxContext) -> bool:
    """True when every populated condition of ``rule`` matches ``ctx``."""
    return (
        rule.is_active
        and rule.is_effective_at(ctx.as_of)
        and rule.is_open_at(ctx.as_of)
        and _matches_scope(rule, ctx)
        and _matches_bounds(rule, ctx)
    )


def select_applicable(
    rules: Iterable[TaxRule], ctx: TaxContext
) -> list[TaxRule]:
    """
    Filter ``rules`` down to those applicable to ``ctx``.

    Ordered by ascending priority, ties broken by rule id. Raises
    ``InvalidContext`` for an amount or quantity out of range.
    """
    ctx.validate()
    matched = [rule for rule in rules if is_applicable(rule, ctx)]
    matched.sort(key=lambda r: r.sort_key)
    return matched


class TaxRuleRegistry:
    """The set of tax rules configured for one tenant."""

    def __init__(self, tenant_id: str, rules: Iterable[TaxRule] = ()) -> None:
        self.tenant_id = tenant_id
        self._rules: tuple[TaxRule, ...] = ()
        self._write_lock = threading.Lock()
        for rule in rules:
            self.add(rule)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def rules(self) -> tuple[TaxRule, ...]:
        """Current snapshot, in ``(priority, id)`` order."""
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[TaxRule]:
        return iter(self._rules)

    def get(self, rule_id: str) -> TaxRule:
        for rule in self._rules:
            if rule.rule_id == rule_id:
                return rule
        raise RuleNotFound(self.tenant_id, rule_id)

    def active_rules(self) -> list[TaxRule]:
        return [r for r in self._rules if r.is_active]

    def default_rule(self, kind: TaxKind) -> Optional[TaxRule]:
        """The active default rule for ``kind``, if one is configured."""
        for rule in self._rules:
            if rule.is_active and rule.is_default and rule.kind is kind:
                return rule
        return None

    def applicable_rules(self, context: TaxContext) -> list[TaxRule]:
        """Rules applicable to ``context``, in evaluation order."""
        snapshot = self._rules
        return select_applicable(snapshot, context)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(self, rule: TaxRule) -> TaxRule:
        """
        Register a new rule.

        The stored rule may differ from ``rule`` by its slug, which is
        made unique within the tenant. Returns the stored rule.
        """
        if rule.tenant_id != self.tenant_id:
            raise InvalidRuleConfiguration(
                rule.rule_id,
                f"belongs to tenant {rule.tenant_id}, not {self.tenant_id}",
            )
        with self._write_lock:
            current = self._rules
            self._check_unique(rule, current)
            rule = replace(rule, slug=self._unique_slug(rule, current))
            self._check_default(rule, current)
            self._commit(current + (rule,))
        logger.info("Added tax rule %s (%s) for tenant %s",
                    rule.rule_id, rule.name, self.tenant_id)
        self._warn_gaps(rule)
        return rule

    def update(self, rule: TaxRule) -> TaxRule:
        """Replace an existing rule, bumping its version."""
        if rule.tenant_id != self.tenant_id:
            raise InvalidRuleConfiguration(
                rule.rule_id,
                f"belongs to tenant {rule.tenant_id}, not {self.tenant_id}",
            )
        with self._write_lock:
            rule = self._update_locked(rule, self._rules)
        logger.info("Updated tax rule %s to version %d", rule.rule_id, rule.version)
        self._warn_gaps(rule)
        return rule

    def activate(self, rule_id: str) -> TaxRule:
        return self._set_flags(rule_id, is_active=True)

    def deactivate(self, rule_id: str) -> TaxRule:
        """Suspend a rule. Rules are never removed, only deactivated."""
        return self._set_flags(rule_id, is_active=False)

    def set_default(self, rule_id: str) -> TaxRule:
        return self._set_flags(rule_id, is_default=True)

    def clear_default(self, rule_id: str) -> TaxRule:
        return self._set_flags(rule_id, is_default=False)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_flags(self, rule_id: str, **flags: bool) -> TaxRule:
        # Read, replace and commit under one lock
        with self._write_lock:
            current = self._rules
            existing = self._find(rule_id, current)
            rule = self._update_locked(replace(existing, **flags), current)
        logger.info("Set %s on tax rule %s (version %d)",
                    ", ".join(f"{k}={v}" for k, v in flags.items()),
                    rule_id, rule.version)
        return rule

    def _update_locked(
        self, rule: TaxRule, current: tuple[TaxRule, ...]
    ) -> TaxRule:
        """Replace ``rule`` in ``current`` and commit. Caller holds the lock."""
        existing = self._find(rule.rule_id, current)
        others = tuple(r for r in current if r.rule_id != rule.rule_id)
        self._check_unique(rule, others)
        rule = replace(
            rule,
            slug=self._unique_slug(rule, others),
            version=existing.version + 1,
            updated_at=datetime.now(timezone.utc),
        )
        self._check_default(rule, others)
        self._commit(others + (rule,))
        return rule

    def _find(self, rule_id: str, rules: tuple[TaxRule, ...]) -> TaxRule:
        for rule in rules:
            if rule.rule_id == rule_id:
                return rule
        raise RuleNotFound(self.tenant_id, rule_id)

    def _commit(self, rules: tuple[TaxRule, ...]) -> None:
        self._rules = tuple(sorted(rules, key=lambda r: r.sort_key))

    def _check_unique(self, rule: TaxRule, others: tuple[TaxRule, ...]) -> None:
        for other in others:
            if other.rule_id == rule.rule_id:
                raise DuplicateRule(self.tenant_id, "id", rule.rule_id)
            if other.name == rule.name:
                raise DuplicateRule(self.tenant_id, "name", rule.name)
            if rule.code and other.code == rule.code:
                raise DuplicateRule(self.tenant_id, "code", rule.code)

    def _check_default(self, rule: TaxRule, others: tuple[TaxRule, ...]) -> None:
        if not (rule.is_active and rule.is_default):
            return
        for other in others:
            if other.is_active and other.is_default and other.kind is rule.kind:
                raise ConflictingDefault(
                    self.tenant_id, rule.kind.value, other.rule_id, rule.rule_id
                )

    @staticmethod
    def _unique_slug(rule: TaxRule, others: tuple[TaxRule, ...]) -> str:
        taken = {r.slug for r in others}
        slug = rule.slug
        counter = 1
        while slug in taken:
            slug = f"{rule.slug}-{counter}"
            counter += 1
        return slug

    @staticmethod
    def _warn_gaps(rule: TaxRule) -> None:
        if rule.uses_tiers:
            for low, high in rule.tier_gaps():
                logger.warning(
                    "Tax rule %s has no tier covering [%s, %s)",
                    rule.rule_id, low, high,
                )
