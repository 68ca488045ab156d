from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from domain.engine import ReconciliationReport
from domain.reconciliation import VolumeRollup
from domain.tax_class import TAX_CLASS_LABELS

from .formatting import format_currency, format_gallons, format_liters, format_signed
from .tax_liability import TaxLiability

TOTAL_LABEL = "Total"


def _render_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> list[str]:
    widths = [max(len(header), max((len(row[i]) for row in rows), default=0)) for i, header in enumerate(headers)]

    def line(cells: Sequence[str]) -> str:
        first = f"{cells[0]:<{widths[0]}}"
        rest = [f"{cell:>{width}}" for cell, width in zip(cells[1:], widths[1:])]
        return " ".join([first, *rest])

    header = line(headers)
    lines = [header, "-" * len(header)]
    lines.extend(line(row) for row in rows)
    return lines


def _rollup_label(rollup: VolumeRollup) -> str:
    if rollup.tax_class is None:
        return TOTAL_LABEL
    label = TAX_CLASS_LABELS[rollup.tax_class]
    if rollup.opening_balance_missing:
        return f"{label} *"
    return label


def _rollup_row(rollup: VolumeRollup) -> list[str]:
    balance = rollup.balance
    variance = balance.variance if balance is not None else Decimal(0)
    status = "ok" if balance is None or balance.balanced else "VARIANCE"
    return [
        _rollup_label(rollup),
        format_liters(rollup.opening_balance),
        format_liters(rollup.production),
        format_liters(rollup.transfers_in),
        format_liters(rollup.transfers_out),
        format_liters(rollup.sales),
        format_liters(rollup.losses.total),
        format_liters(rollup.distillation),
        format_liters(rollup.bulk_ending),
        format_liters(rollup.packaged_ending),
        format_signed(variance),
        status,
    ]


def render_reconciliation_summary(report: ReconciliationReport, *, label: str | None = None) -> None:
    window = report.window
    title = label or f"{window.start.isoformat()} → {window.end.isoformat()}"
    print(f"Volume reconciliation (liters), {title}:")
    if not report.per_tax_class:
        print("  (no eligible batches)")
        return

    headers = [
        "Tax class",
        "Opening",
        "Produced",
        "Received",
        "Sent out",
        "Sales",
        "Losses",
        "Distilled",
        "Bulk end",
        "Packaged end",
        "Variance",
        "Status",
    ]
    rows = [_rollup_row(rollup) for rollup in report.per_tax_class]
    rows.append(_rollup_row(report.totals))
    print("\n".join(_render_table(headers, rows)))

    if any(rollup.opening_balance_missing for rollup in report.per_tax_class):
        print("* opening balance missing, treated as zero")
    for warning in report.warnings:
        print(f"warning: {warning}")


def render_flagged_batches(report: ReconciliationReport) -> None:
    flagged = report.flagged_batches
    print("Batches needing review:")
    if not flagged:
        print("  (none)")
        return

    contributions = {c.batch_id: c for c in report.per_batch}
    audits = {a.batch_id: a for a in report.audits}
    rows: list[list[str]] = []
    for batch_id in flagged:
        contribution = contributions.get(batch_id)
        audit = audits.get(batch_id)
        reasons: list[str] = []
        if contribution is not None and contribution.has_identity_issue:
            reasons.append("identity")
        if audit is not None:
            if audit.has_drift:
                reasons.append("drift")
            if audit.has_initial_volume_anomaly:
                reasons.append("initial-volume")
            if audit.exceeds_vessel_capacity:
                reasons.append("capacity")
            if audit.has_packaging_ambiguity:
                reasons.append("packaging")
        rows.append(
            [
                batch_id,
                format_liters(contribution.identity_residual) if contribution is not None else "-",
                format_signed(audit.drift) if audit is not None else "-",
                ", ".join(reasons),
            ]
        )

    print("\n".join(_render_table(["Batch", "Residual", "Drift", "Flags"], rows)))


def render_tax_liability(liability: TaxLiability) -> None:
    print("Excise tax (USD):")
    if not liability.lines:
        print("  (no taxable removals)")
        return

    rows = [
        [
            TAX_CLASS_LABELS[line.tax_class],
            format_gallons(line.taxable_gallons),
            f"{line.rate}",
            format_currency(line.gross_tax),
            format_currency(line.credit),
            format_currency(line.net_tax),
        ]
        for line in liability.lines
    ]
    rows.append(
        [
            TOTAL_LABEL,
            "",
            "",
            format_currency(liability.gross_tax),
            format_currency(liability.credit),
            format_currency(liability.net_tax),
        ]
    )
    print("\n".join(_render_table(["Tax class", "Gallons", "Rate", "Gross", "Credit", "Net"], rows)))
