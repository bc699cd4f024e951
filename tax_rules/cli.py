"""
Command-line interface for the tax rule engine.

Provides subcommands for tax calculation, rule listing, applicability
checks and rule catalog validation.
"""

from __future__ import annotations

import argparse
import sys
from decimal import Decimal, InvalidOperation
from typing import Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tax_rules.calculator import TaxCalculationEngine, TaxCalculationResult
from tax_rules.config import EngineConfig
from tax_rules.context import TaxContext
from tax_rules.exceptions import TaxEngineError
from tax_rules.loader import RuleStore, load_contexts_csv, load_rules_json
from tax_rules.logging_config import configure_logging
from tax_rules.registry import TaxRuleRegistry
from tax_rules.report_generator import ReportGenerator
from tax_rules.rules import CalculationMethod, TaxRule

console = Console()


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    sys.exit(1)


def _load_registry(args: argparse.Namespace, config: EngineConfig) -> TaxRuleRegistry:
    try:
        store = RuleStore.from_json(args.rules, config)
        registry = store.registry_for(args.tenant)
    except FileNotFoundError:
        _fail(f"File not found: {args.rules}")
    except TaxEngineError as e:
        _fail(f"[{e.code}] {e}")
    if not len(registry):
        console.print(f"[yellow]No rules configured for tenant {args.tenant}[/yellow]")
    return registry


def _context_from_args(args: argparse.Namespace) -> TaxContext:
    if not args.amount:
        _fail("Provide --amount, or --file")
    try:
        amount = Decimal(args.amount)
    except InvalidOperation:
        _fail(f"Invalid amount: {args.amount}")
    data = {
        "base_amount": amount,
        "quantity": args.quantity,
        "country": args.country,
        "state": args.state,
        "city": args.city,
        "postal_code": args.postal_code,
        "customer_type": args.customer_type,
        "product_type": args.product_type,
        "as_of": args.as_of,
        "reference": "cli-calc",
    }
    try:
        return TaxContext.from_dict(data)
    except TaxEngineError as e:
        _fail(f"[{e.code}] {e}")


def _money(value: Optional[Decimal]) -> str:
    return "-" if value is None else f"{value:,f}"


def _rate(value: Optional[Decimal]) -> str:
    return "-" if value is None else f"{value.normalize():f}%"


def _lines_table(result: TaxCalculationResult) -> Table:
    table = Table(title="Tax Lines", box=box.ROUNDED, show_lines=True)
    table.add_column("Priority", justify="right", style="dim")
    table.add_column("Rule")
    table.add_column("Method")
    table.add_column("Base", justify="right")
    table.add_column("Rate / Fixed", justify="right")
    table.add_column("Amount", justify="right", style="bold")
    table.add_column("Flags")

    for line in result.lines:
        flags = []
        if line.compounded:
            flags.append("compound")
        if line.is_inclusive:
            flags.append("inclusive")
        table.add_row(
            str(line.priority),
            line.rule_name,
            line.method.value,
            _money(line.taxable_base),
            _rate(line.rate) if line.rate is not None else _money(line.fixed_amount),
            _money(line.amount),
            ", ".join(flags),
        )
    return table


def _add_context_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--amount", help="Base amount of the sale")
    p.add_argument("--quantity", type=int, default=1, help="Item quantity")
    p.add_argument("--country", help="Country code")
    p.add_argument("--state", help="State or province")
    p.add_argument("--city", help="City")
    p.add_argument("--postal-code", help="Postal code")
    p.add_argument("--customer-type", help="Customer type")
    p.add_argument("--product-type", help="Product type")
    p.add_argument("--as-of", help="ISO timestamp to evaluate rules at (default: now)")


def _add_catalog_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--rules", "-r", required=True, help="JSON rule catalog")
    p.add_argument("--tenant", "-t", required=True, help="Tenant id")


# -----------------------------------------------------------------------
# Subcommand: calculate
# -----------------------------------------------------------------------


def cmd_calculate(args: argparse.Namespace, config: EngineConfig) -> None:
    """Calculate tax for a single context or a CSV batch."""
    engine = TaxCalculationEngine(_load_registry(args, config), config)
    rg = ReportGenerator(args.output_dir)

    if args.file:
        try:
            contexts = load_contexts_csv(args.file)
        except FileNotFoundError:
            _fail(f"File not found: {args.file}")
        batch = engine.calculate_batch(contexts)

        table = Table(
            title="Tax Calculation Results",
            box=box.ROUNDED,
            show_lines=True,
        )
        table.add_column("Reference", style="dim")
        table.add_column("Base", justify="right")
        table.add_column("Rules", justify="right")
        table.add_column("Tax", justify="right", style="bold")
        for r in batch.results:
            table.add_row(
                r.reference[:16],
                _money(r.base_amount),
                str(len(r.lines)),
                _money(r.total),
            )
        console.print(table)
        console.print(
            Panel(
                f"[bold]Contexts:[/bold] {batch.context_count}\n"
                f"[bold]Calculated:[/bold] {batch.calculated_count}\n"
                f"[bold]Total Base:[/bold] {_money(batch.total_base)}\n"
                f"[bold]Total Tax:[/bold] {_money(batch.total_tax)}",
                title="Batch Summary",
                border_style="green",
            )
        )
        for err in batch.errors:
            console.print(f"[yellow]Warning: {err}[/yellow]")

        report = rg.batch_report(batch, period_label=args.period or "")
        if args.export_json:
            rg.to_json(report, args.export_json)
            console.print(f"[green]JSON exported to {args.export_json}[/green]")
        if args.export_csv:
            rg.to_csv(rg.batch_frame(batch), args.export_csv)
            console.print(f"[green]CSV exported to {args.export_csv}[/green]")
        return

    ctx = _context_from_args(args)
    try:
        result = engine.calculate(ctx)
    except TaxEngineError as e:
        _fail(f"[{e.code}] {e}")

    if result.is_empty:
        console.print("[yellow]No tax rules apply to this sale.[/yellow]")
    else:
        console.print(_lines_table(result))
    console.print(
        Panel(
            f"[bold]Base Amount:[/bold] {_money(result.base_amount)}\n"
            f"[bold]Total Tax:[/bold] {_money(result.total)}\n"
            f"[bold]Included in Price:[/bold] {_money(result.inclusive_tax)}\n"
            f"[bold]Added on Top:[/bold] {_money(result.exclusive_tax)}\n"
            f"[bold]Total w/ Tax:[/bold] {_money(result.total_with_tax)}",
            title="Tax Calculation",
            border_style="blue",
        )
    )

    report = rg.calculation_report(result)
    if args.export_json:
        rg.to_json(report, args.export_json)
        console.print(f"[green]JSON exported to {args.export_json}[/green]")
    if args.export_csv:
        rg.to_csv(rg.lines_frame(result), args.export_csv)
        console.print(f"[green]CSV exported to {args.export_csv}[/green]")


# -----------------------------------------------------------------------
# Subcommand: rules
# -----------------------------------------------------------------------


def _rules_table(title: str, rules: list[TaxRule]) -> Table:
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Priority", justify="right")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Kind")
    table.add_column("Method")
    table.add_column("Rate / Fixed", justify="right")
    table.add_column("Scope")
    table.add_column("Flags")

    for rule in rules:
        scope = "/".join(p for p in (rule.country, rule.state, rule.city) if p)
        flags = []
        if rule.is_default:
            flags.append("default")
        if rule.is_compound:
            flags.append("compound")
        if rule.is_inclusive:
            flags.append("inclusive")
        if not rule.is_active:
            flags.append("inactive")
        if rule.uses_tiers:
            amount = f"{len(rule.tiers)} tiers"
        elif rule.method is CalculationMethod.FIXED_AMOUNT:
            amount = _money(rule.fixed_amount)
        else:
            amount = _rate(rule.rate)
        table.add_row(
            str(rule.priority),
            rule.rule_id,
            rule.display_name,
            rule.kind.value,
            rule.method.value,
            amount,
            scope or "any",
            ", ".join(flags),
            style="dim" if not rule.is_active else "",
        )
    return table


def cmd_rules(args: argparse.Namespace, config: EngineConfig) -> None:
    """List a tenant's configured rules in evaluation order."""
    registry = _load_registry(args, config)
    rules = list(registry.rules) if args.all else registry.active_rules()
    console.print(_rules_table(f"Tax Rules - {args.tenant}", rules))


# -----------------------------------------------------------------------
# Subcommand: applicable
# -----------------------------------------------------------------------


def cmd_applicable(args: argparse.Namespace, config: EngineConfig) -> None:
    """Show which rules apply to a context, in evaluation order."""
    registry = _load_registry(args, config)
    ctx = _context_from_args(args)
    try:
        rules = registry.applicable_rules(ctx)
    except TaxEngineError as e:
        _fail(f"[{e.code}] {e}")
    if not rules:
        console.print("[yellow]No tax rules apply to this sale.[/yellow]")
        return
    console.print(_rules_table("Applicable Rules", rules))


# -----------------------------------------------------------------------
# Subcommand: validate
# -----------------------------------------------------------------------


def cmd_validate(args: argparse.Namespace, config: EngineConfig) -> None:
    """Load a rule catalog and report configuration problems."""
    try:
        rules = load_rules_json(args.rules, config=config)
    except FileNotFoundError:
        _fail(f"File not found: {args.rules}")
    except TaxEngineError as e:
        _fail(f"[{e.code}] {e}")

    gaps = 0
    for rule in rules:
        if not rule.uses_tiers:
            continue
        for low, high in rule.tier_gaps():
            gaps += 1
            console.print(
                f"[yellow]Rule {rule.rule_id}: no tier covers [{low}, {high})[/yellow]"
            )
    console.print(
        f"[green]{len(rules)} rule(s) valid[/green]"
        + (f" [yellow]({gaps} tier gap(s))[/yellow]" if gaps else "")
    )


# -----------------------------------------------------------------------
# Argument parser
# -----------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tax-rules",
        description="Tax Rule Engine - rule applicability and multi-rule tax calculation",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Console log level (default: TAX_RULES_LOG_LEVEL or WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # calculate
    calc_p = subparsers.add_parser("calculate", help="Calculate tax")
    _add_catalog_args(calc_p)
    _add_context_args(calc_p)
    calc_p.add_argument("--file", "-f", help="CSV file with sale contexts")
    calc_p.add_argument("--period", help="Period label for batch reports")
    calc_p.add_argument("--export-json", help="Export report to JSON file")
    calc_p.add_argument("--export-csv", help="Export tax lines to CSV file")
    calc_p.add_argument("--output-dir", help="Output directory for exports")
    calc_p.set_defaults(func=cmd_calculate)

    # rules
    rules_p = subparsers.add_parser("rules", help="List configured rules")
    _add_catalog_args(rules_p)
    rules_p.add_argument(
        "--all", "-a", action="store_true", help="Include inactive rules"
    )
    rules_p.set_defaults(func=cmd_rules)

    # applicable
    appl_p = subparsers.add_parser(
        "applicable", help="Show rules applicable to a sale"
    )
    _add_catalog_args(appl_p)
    _add_context_args(appl_p)
    appl_p.set_defaults(func=cmd_applicable)

    # validate
    val_p = subparsers.add_parser("validate", help="Validate a rule catalog")
    val_p.add_argument("--rules", "-r", required=True, help="JSON rule catalog")
    val_p.set_defaults(func=cmd_validate)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    try:
        config = EngineConfig.from_env()
    except ValueError as e:
        _fail(f"Configuration error: {e}")
    configure_logging(args.log_level or config.log_level)

    args.func(args, config)
