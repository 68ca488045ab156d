from __future__ import annotations

import argparse
import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Sequence

from config import config
from db.db import init_db
from db.repositories import OpeningBalanceRepository, SqlLedgerStore
from domain.batch import BatchId, ensure_utc
from domain.engine import ReconciliationEngine
from domain.reconciliation import build_window
from domain.tax_class import TaxClassConfig, load_tax_class_config
from utils.formatting import format_liters
from utils.periods import PeriodKind, period_bounds, period_label
from utils.reconciliation_summary import render_flagged_batches, render_reconciliation_summary, render_tax_liability
from utils.tax_liability import compute_tax_liability

logger = logging.getLogger(__name__)


def resolve_tax_class_config(path: Path | None) -> TaxClassConfig | None:
    if path is None:
        return None
    if not path.exists():
        logger.warning("Tax class config %s not found", path)
        return None
    return load_tax_class_config(path)


def parse_instant(value: str) -> datetime:
    try:
        return ensure_utc(datetime.fromisoformat(value))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid ISO timestamp: {value}") from exc


def resolve_bounds(args: argparse.Namespace) -> tuple[datetime, datetime, str | None]:
    if args.period is not None:
        if args.year is None:
            raise SystemExit("--year is required with --period")
        kind = PeriodKind(args.period)
        start, end = period_bounds(kind, args.year, args.number)
        return start, end, period_label(kind, args.year, args.number)
    if args.start is None or args.end is None:
        raise SystemExit("Either --start/--end or --period/--year is required")
    return args.start, args.end, None


def run_reconcile(args: argparse.Namespace) -> None:
    settings = config()
    session = init_db(settings.db_file)
    engine = ReconciliationEngine(SqlLedgerStore(session), tolerances=settings.tolerances())
    tax_config = resolve_tax_class_config(args.tax_config or settings.tax_class_config_file)

    start, end, label = resolve_bounds(args)
    window = build_window(start, end, OpeningBalanceRepository(session))
    report = engine.reconcile(window, tax_config)

    render_reconciliation_summary(report, label=label)
    render_flagged_batches(report)
    if tax_config is not None:
        liability = compute_tax_liability(
            report.per_tax_class,
            tax_config,
            prior_credit_gallons=args.prior_credit_gallons,
        )
        render_tax_liability(liability)


def run_volume_at(args: argparse.Namespace) -> None:
    settings = config()
    session = init_db(settings.db_file)
    engine = ReconciliationEngine(SqlLedgerStore(session), tolerances=settings.tolerances())
    volume = engine.volume_at(BatchId(args.batch_id), args.instant)
    print(f"{args.batch_id} at {args.instant.isoformat()}: {format_liters(volume)} L")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconstruct batch volumes and reconcile them by tax class.")
    parser.add_argument("--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    reconcile = subparsers.add_parser("reconcile", help="Reconcile a reporting window")
    reconcile.add_argument("--start", type=parse_instant)
    reconcile.add_argument("--end", type=parse_instant)
    reconcile.add_argument("--period", choices=[kind.value for kind in PeriodKind])
    reconcile.add_argument("--year", type=int)
    reconcile.add_argument("--number", type=int, help="Month (1-12) or quarter (1-4)")
    reconcile.add_argument("--tax-config", type=Path)
    reconcile.add_argument("--prior-credit-gallons", type=Decimal, default=Decimal(0))
    reconcile.set_defaults(handler=run_reconcile)

    volume_at = subparsers.add_parser("volume-at", help="Reconstruct one batch's volume at an instant")
    volume_at.add_argument("batch_id")
    volume_at.add_argument("instant", type=parse_instant)
    volume_at.set_defaults(handler=run_volume_at)
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    args.handler(args)


if __name__ == "__main__":
    main()
