"""
Typed exceptions for the tax rule engine.

Every error carries a machine-readable ``code`` and the structured data
that caused it, so callers catch by type and never parse messages.

    TaxEngineError
    +-- InvalidContext
    +-- NoApplicableTier
    +-- RuleConfigurationError
        +-- InvalidRuleConfiguration
        +-- ConflictingDefault
        +-- DuplicateRule
        +-- RuleNotFound

All of them are deterministic validation failures. None is retryable.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional


class TaxEngineError(Exception):
    """Base class for all tax engine errors."""

    code: str = "TAX_ENGINE_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidContext(TaxEngineError):
    """The sale context is malformed (negative amount, quantity below 1)."""

    code = "INVALID_CONTEXT"

    def __init__(self, field: str, value: Any, reason: str) -> None:
        self.field = field
        self.value = value
        super().__init__(f"Invalid context {field}={value!r}: {reason}")


class NoApplicableTier(TaxEngineError):
    """A tiered rule has no tier covering the amount base."""

    code = "NO_APPLICABLE_TIER"

    def __init__(self, rule_id: str, amount: Decimal) -> None:
        self.rule_id = rule_id
        self.amount = amount
        super().__init__(
            f"Rule {rule_id} has no tier covering amount {amount}"
        )


class RuleConfigurationError(TaxEngineError):
    """Base for write-time rule configuration errors."""

    code = "RULE_CONFIGURATION_ERROR"


class InvalidRuleConfiguration(RuleConfigurationError):
    code = "INVALID_RULE_CONFIGURATION"

    def __init__(self, rule_id: Optional[str], reason: str) -> None:
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(f"Invalid configuration for rule {rule_id}: {reason}")


class ConflictingDefault(RuleConfigurationError):
    """A second active default rule of the same kind for one tenant."""

    code = "CONFLICTING_DEFAULT"

    def __init__(
        self,
        tenant_id: str,
        kind: str,
        existing_rule_id: str,
        rule_id: str,
    ) -> None:
        self.tenant_id = tenant_id
        self.kind = kind
        self.existing_rule_id = existing_rule_id
        self.rule_id = rule_id
        super().__init__(
            f"Tenant {tenant_id} already has active default {kind} rule "
            f"{existing_rule_id}; cannot make {rule_id} default"
        )


class DuplicateRule(RuleConfigurationError):
    code = "DUPLICATE_RULE"

    def __init__(self, tenant_id: str, field: str, value: str) -> None:
        self.tenant_id = tenant_id
        self.field = field
        self.value = value
        super().__init__(
            f"Tenant {tenant_id} already has a rule with {field}={value!r}"
        )


class RuleNotFound(RuleConfigurationError):
    code = "RULE_NOT_FOUND"

    def __init__(self, tenant_id: str, rule_id: str) -> None:
        self.tenant_id = tenant_id
        self.rule_id = rule_id
        super().__init__(f"Tenant {tenant_id} has no rule {rule_id}")
