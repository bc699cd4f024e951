"""
Tax calculation report generator.

Produces:
- Per-calculation line breakdowns
- Batch summaries with per-rule collection figures (tax collected,
  calculations, average per calculation)
- pandas DataFrames for further analysis
- CSV and JSON export
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from tax_rules.calculator import BatchResult, TaxCalculationResult, TaxLineResult

_AVERAGE_PLACES = Decimal("0.0001")

_LINE_COLUMNS = [
    "reference",
    "rule_id",
    "rule_name",
    "kind",
    "method",
    "priority",
    "taxable_base",
    "rate",
    "fixed_amount",
    "raw_amount",
    "amount",
    "compounded",
    "is_inclusive",
]


class _DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and date objects."""

    def default(self, o: Any) -> Any:
        if isinstance(o, Decimal):
            return str(o)
        if isinstance(o, (date, datetime)):
            return o.isoformat()
        return super().default(o)


def _line_dict(line: TaxLineResult, reference: str = "") -> dict[str, Any]:
    return {
        "reference": reference,
        "rule_id": line.rule_id,
        "rule_name": line.rule_name,
        "kind": line.kind,
        "method": line.method.value,
        "priority": line.priority,
        "taxable_base": line.taxable_base,
        "rate": line.rate,
        "fixed_amount": line.fixed_amount,
        "raw_amount": line.raw_amount,
        "amount": line.amount,
        "compounded": line.compounded,
        "is_inclusive": line.is_inclusive,
    }


class ReportGenerator:
    """
    Turns calculation results into report dicts, DataFrames and files.

    Decimal amounts are kept exact: JSON exports write them as strings.
    """

    def __init__(self, output_dir: Optional[str] = None) -> None:
        self.output_dir = Path(output_dir) if output_dir else Path("reports")

    def _path(self, filename: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        return self.output_dir / filename

    # ------------------------------------------------------------------
    # Single calculation
    # ------------------------------------------------------------------

    def calculation_report(self, result: TaxCalculationResult) -> dict[str, Any]:
        return {
            "report_type": "tax_calculation",
            "generated_date": date.today().isoformat(),
            "reference": result.reference,
            "summary": {
                "base_amount": result.base_amount,
                "total_tax": result.total,
                "exclusive_tax": result.exclusive_tax,
                "inclusive_tax": result.inclusive_tax,
                "total_with_tax": result.total_with_tax,
                "rules_applied": len(result.lines),
            },
            "lines": [_line_dict(l, result.reference) for l in result.lines],
        }

    def lines_frame(self, result: TaxCalculationResult) -> pd.DataFrame:
        rows = [_line_dict(l, result.reference) for l in result.lines]
        return pd.DataFrame(rows, columns=_LINE_COLUMNS)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def batch_frame(self, batch: BatchResult) -> pd.DataFrame:
        """One row per tax line across every calculated context."""
        rows = [
            _line_dict(line, result.reference)
            for result in batch.results
            for line in result.lines
        ]
        return pd.DataFrame(rows, columns=_LINE_COLUMNS)

    def collection_summary(self, batch: BatchResult) -> list[dict[str, Any]]:
        """
        Per-rule collection figures over a batch.

        ``calculations`` counts the contexts each rule applied to and
        ``average_amount`` is the collected tax divided by that count.
        """
        frame = self.batch_frame(batch)
        if frame.empty:
            return []
        grouped = frame.groupby(["rule_id", "rule_name"], sort=True)["amount"]
        summary: list[dict[str, Any]] = []
        for (rule_id, rule_name), amounts in grouped:
            collected = sum(amounts, Decimal("0"))
            count = len(amounts)
            summary.append(
                {
                    "rule_id": rule_id,
                    "rule_name": rule_name,
                    "tax_collected": collected,
                    "calculations": count,
                    "average_amount": (collected / count).quantize(
                        _AVERAGE_PLACES, rounding=ROUND_HALF_UP
                    ),
                }
            )
        return summary

    def batch_report(
        self, batch: BatchResult, period_label: str = ""
    ) -> dict[str, Any]:
        return {
            "report_type": "tax_batch_summary",
            "period": period_label,
            "generated_date": date.today().isoformat(),
            "summary": {
                "contexts": batch.context_count,
                "calculated": batch.calculated_count,
                "failed": len(batch.errors),
                "total_base": batch.total_base,
                "total_tax": batch.total_tax,
                "effective_rate": (
                    float(batch.total_tax / batch.total_base)
                    if batch.total_base > 0
                    else 0.0
                ),
            },
            "rule_breakdown": self.collection_summary(batch),
            "results": [
                {
                    "reference": r.reference,
                    "base_amount": r.base_amount,
                    "total_tax": r.total,
                    "rules_applied": len(r.lines),
                }
                for r in batch.results
            ],
            "warnings": batch.errors,
        }

    # ------------------------------------------------------------------
    # Export methods
    # ------------------------------------------------------------------

    def to_json(
        self,
        report: dict[str, Any],
        filename: Optional[str] = None,
    ) -> str:
        """Export a report to JSON. Returns the JSON string."""
        json_str = json.dumps(report, indent=2, cls=_DecimalEncoder)
        if filename:
            self._path(filename).write_text(json_str, encoding="utf-8")
        return json_str

    def to_csv(
        self,
        frame: pd.DataFrame,
        filename: Optional[str] = None,
    ) -> str:
        """Export a DataFrame to CSV. Returns the CSV string."""
        csv_str = frame.to_csv(index=False)
        if filename:
            self._path(filename).write_text(csv_str, encoding="utf-8")
        return csv_str

    # ------------------------------------------------------------------
    # Console-formatted text output
    # ------------------------------------------------------------------

    def format_text(self, report: dict[str, Any]) -> str:
        """Format a report as human-readable text for console output."""
        lines: list[str] = []
        title = report.get("report_type", "report").replace("_", " ").title()
        lines.append("=" * 60)
        lines.append(f"  {title}")
        lines.append(f"  Generated: {report.get('generated_date', '')}")
        if report.get("period"):
            lines.append(f"  Period: {report['period']}")
        if report.get("reference"):
            lines.append(f"  Reference: {report['reference']}")
        lines.append("=" * 60)
        lines.append("")

        summary = report.get("summary", {})
        if summary:
            lines.append("SUMMARY")
            lines.append("-" * 40)
            for key, value in summary.items():
                label = key.replace("_", " ").title()
                if isinstance(value, float) and "rate" in key:
                    lines.append(f"  {label}: {value:.2%}")
                elif isinstance(value, Decimal):
                    lines.append(f"  {label}: {value:,f}")
                else:
                    lines.append(f"  {label}: {value}")
            lines.append("")

        tax_lines = report.get("lines", [])
        if tax_lines:
            lines.append("TAX LINES")
            lines.append("-" * 40)
            for l in tax_lines:
                marker = " (compound)" if l["compounded"] else ""
                lines.append(
                    f"  [{l['priority']}] {l['rule_name']}: "
                    f"{l['amount']:>12,f}{marker}"
                )
            lines.append("")

        breakdown = report.get("rule_breakdown", [])
        if breakdown:
            lines.append("RULE BREAKDOWN")
            lines.append("-" * 40)
            for b in breakdown:
                lines.append(
                    f"  {b['rule_name']}: {b['tax_collected']:>12,f} over "
                    f"{b['calculations']} calculation(s)"
                )
            lines.append("")

        warnings = report.get("warnings", [])
        if warnings:
            lines.append("WARNINGS")
            lines.append("-" * 40)
            for w in warnings:
                lines.append(f"  * {w}")
            lines.append("")

        return "\n".join(lines)
