"""
Tax Rule Engine
===============

Tax applicability resolution and amount calculation for multi-tenant
e-commerce: pick the rules that apply to a sale and compute what each
one owes.

Modules:
    rules            - Tax rule data model and configuration validation
    context          - Sale context passed to selection and calculation
    registry         - Per-tenant rule registry and applicability filter
    calculator       - Multi-rule calculation engine with compounding
    loader           - JSON rule catalogs and CSV sale contexts
    report_generator - Calculation reporting with CSV/JSON export
    config           - Engine defaults and environment overrides
    exceptions       - Typed error hierarchy
    cli              - Command-line interface
"""

__version__ = "1.0.0"

from tax_rules.calculator import (
    BatchResult,
    TaxCalculationEngine,
    TaxCalculationResult,
    TaxLineResult,
)
from tax_rules.config import EngineConfig
from tax_rules.context import TaxContext
from tax_rules.exceptions import (
    ConflictingDefault,
    InvalidContext,
    NoApplicableTier,
    TaxEngineError,
)
from tax_rules.loader import RuleStore
from tax_rules.registry import TaxRuleRegistry
from tax_rules.report_generator import ReportGenerator
from tax_rules.rules import (
    CalculationMethod,
    RoundingMode,
    TaxClass,
    TaxKind,
    TaxRule,
    TaxTier,
)

__all__ = [
    "BatchResult",
    "CalculationMethod",
    "ConflictingDefault",
    "EngineConfig",
    "InvalidContext",
    "NoApplicableTier",
    "ReportGenerator",
    "RoundingMode",
    "RuleStore",
    "TaxCalculationEngine",
    "TaxCalculationResult",
    "TaxClass",
    "TaxContext",
    "TaxEngineError",
    "TaxKind",
    "TaxLineResult",
    "TaxRule",
    "TaxRuleRegistry",
    "TaxTier",
]
