"""
File-backed rule store and context readers.

Rule catalogs are JSON documents, either::

    {"tenants": {"store-1": [{...rule...}, ...], "store-2": [...]}}

or a bare list of rules each carrying its own ``tenant_id``. Contexts are
read from CSV with columns ``reference, base_amount, quantity, country,
state, city, postal_code, customer_type, product_type, as_of``.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Optional, Union

from tax_rules.config import DEFAULT_CONFIG, EngineConfig
from tax_rules.context import TaxContext
from tax_rules.exceptions import InvalidContext, InvalidRuleConfiguration
from tax_rules.logging_config import get_logger
from tax_rules.registry import TaxRuleRegistry
from tax_rules.rules import TaxRule

logger = get_logger(__name__)

PathLike = Union[str, Path]


def _rule_documents(document: Any) -> list[dict]:
    if isinstance(document, list):
        return document
    if isinstance(document, dict) and isinstance(document.get("tenants"), dict):
        docs: list[dict] = []
        for tenant_id, rules in document["tenants"].items():
            if not isinstance(rules, list):
                raise InvalidRuleConfiguration(
                    None, f"rules for tenant {tenant_id} must be a list"
                )
            for rule in rules:
                if not isinstance(rule, dict):
                    raise InvalidRuleConfiguration(None, "each rule must be an object")
                docs.append({"tenant_id": tenant_id, **rule})
        return docs
    raise InvalidRuleConfiguration(
        None, "catalog must be a list of rules or an object with 'tenants'"
    )


class RuleStore:
    """
    Supplies a consistent rule snapshot per tenant.

    Each tenant's registry is built once, so every calculation against
    it sees the same rules for the lifetime of the store.
    """

    def __init__(
        self,
        rules: list[TaxRule],
    ) -> None:
        self._by_tenant: dict[str, list[TaxRule]] = {}
        for rule in rules:
            self._by_tenant.setdefault(rule.tenant_id, []).append(rule)
        self._registries: dict[str, TaxRuleRegistry] = {}

    @classmethod
    def from_document(
        cls, document: Any, config: EngineConfig = DEFAULT_CONFIG
    ) -> "RuleStore":
        return cls([TaxRule.from_dict(d, config) for d in _rule_documents(document)])

    @classmethod
    def from_json(
        cls, path: PathLike, config: EngineConfig = DEFAULT_CONFIG
    ) -> "RuleStore":
        """Load a JSON rule catalog. Raises ``FileNotFoundError`` if missing."""
        text = Path(path).read_text(encoding="utf-8")
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidRuleConfiguration(None, f"{path}: invalid JSON ({e})")
        store = cls.from_document(document, config)
        logger.info("Loaded %d tax rule(s) for %d tenant(s) from %s",
                    store.rule_count, len(store.tenants), path)
        return store

    @property
    def tenants(self) -> list[str]:
        return sorted(self._by_tenant)

    @property
    def rule_count(self) -> int:
        return sum(len(rules) for rules in self._by_tenant.values())

    def registry_for(self, tenant_id: str) -> TaxRuleRegistry:
        """
        Return the tenant's registry, an empty one for unknown tenants.

        Building the registry runs the write-path checks (duplicates,
        conflicting defaults).
        """
        registry = self._registries.get(tenant_id)
        if registry is None:
            registry = TaxRuleRegistry(tenant_id, self._by_tenant.get(tenant_id, []))
            self._registries[tenant_id] = registry
        return registry


def load_contexts_csv(path: PathLike) -> list[TaxContext]:
    """
    Read sale contexts from CSV.

    Malformed rows are skipped with a warning; a missing file raises
    ``FileNotFoundError``.
    """
    contexts: list[TaxContext] = []
    csv_path = Path(path)
    with open(csv_path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        for i, row in enumerate(reader):
            if not row.get("reference"):
                row["reference"] = str(i + 1)
            try:
                contexts.append(TaxContext.from_dict(row))
            except InvalidContext as e:
                logger.warning("Skipping row %d of %s: %s", i + 1, csv_path, e)
    return contexts


def load_rules_json(
    path: PathLike,
    tenant_id: Optional[str] = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> list[TaxRule]:
    """Load rules from a catalog, optionally only one tenant's."""
    store = RuleStore.from_json(path, config)
    if tenant_id is None:
        return [rule for t in store.tenants for rule in store.registry_for(t)]
    return list(store.registry_for(tenant_id))
