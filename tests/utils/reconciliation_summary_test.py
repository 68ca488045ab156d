from decimal import Decimal

import pytest

from domain.engine import ReconciliationEngine
from domain.events import DistillationSend, Distribution, PackageType, Packaging
from domain.ledger_store import InMemoryLedgerStore
from domain.tax_class import DEFAULT_TAX_CLASS_CONFIG, TaxClass
from tests.constants import BATCH_A, BATCH_B
from tests.helpers.ledger_builders import day, make_batch, make_window
from utils.reconciliation_summary import (
    render_flagged_batches,
    render_reconciliation_summary,
    render_tax_liability,
)
from utils.tax_liability import compute_tax_liability


@pytest.fixture()
def engine() -> ReconciliationEngine:
    store = InMemoryLedgerStore(
        batches=[
            make_batch(BATCH_A, created=day(1), current="700"),
            make_batch(BATCH_B, created=day(1), initial="50", abv=Decimal("12")),
        ],
        events=[
            Packaging(batch_id=BATCH_A, timestamp=day(2), package_type=PackageType.KEG, volume_taken=Decimal("300")),
            Distribution(batch_id=BATCH_A, timestamp=day(3), volume=Decimal("200")),
            DistillationSend(batch_id=BATCH_B, timestamp=day(2), volume=Decimal("80")),
        ],
    )
    return ReconciliationEngine(store)


def test_render_reconciliation_summary(engine: ReconciliationEngine, capsys: pytest.CaptureFixture[str]) -> None:
    report = engine.reconcile(make_window(day(0), day(10), {TaxClass.HARD_CIDER: "0"}), DEFAULT_TAX_CLASS_CONFIG)

    render_reconciliation_summary(report, label="January 2025")

    out = capsys.readouterr().out
    lines = out.splitlines()
    assert lines[0] == "Volume reconciliation (liters), January 2025:"
    assert lines[1].startswith("Tax class")
    assert any(line.startswith("Hard Cider (<8.5% ABV)") and "1,000.00" in line for line in lines)
    assert any(line.startswith("Wine (<16% ABV) *") for line in lines)
    assert any(line.startswith("Total") for line in lines)
    assert "* opening balance missing, treated as zero" in out
    assert "warning: Opening balance missing for wineUnder16; treated as zero" in out


def test_render_flagged_batches(engine: ReconciliationEngine, capsys: pytest.CaptureFixture[str]) -> None:
    report = engine.reconcile(make_window(day(0), day(10), {TaxClass.HARD_CIDER: "0"}), DEFAULT_TAX_CLASS_CONFIG)

    render_flagged_batches(report)

    out = capsys.readouterr().out
    assert out.startswith("Batches needing review:")
    flagged = [line for line in out.splitlines() if line.startswith(BATCH_B)]
    assert len(flagged) == 1
    assert "-30.00" in flagged[0]
    assert "identity" in flagged[0]
    assert BATCH_A not in out


def test_render_empty_sections(capsys: pytest.CaptureFixture[str]) -> None:
    engine = ReconciliationEngine(InMemoryLedgerStore())
    report = engine.reconcile(make_window(day(0), day(10)), DEFAULT_TAX_CLASS_CONFIG)

    render_reconciliation_summary(report)
    render_flagged_batches(report)
    render_tax_liability(compute_tax_liability(report.per_tax_class, DEFAULT_TAX_CLASS_CONFIG))

    out = capsys.readouterr().out
    assert "(no eligible batches)" in out
    assert "(none)" in out
    assert "(no taxable removals)" in out


def test_render_tax_liability(engine: ReconciliationEngine, capsys: pytest.CaptureFixture[str]) -> None:
    report = engine.reconcile(make_window(day(0), day(10), {TaxClass.HARD_CIDER: "0"}), DEFAULT_TAX_CLASS_CONFIG)

    render_tax_liability(compute_tax_liability(report.per_tax_class, DEFAULT_TAX_CLASS_CONFIG))

    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "Excise tax (USD):"
    cider = next(line for line in lines if line.startswith("Hard Cider"))
    # 200 L = 52.834 gal; 52.834 * 0.226 = 11.94 gross, 2.96 credit.
    assert "52.834" in cider
    assert cider.split()[-3:] == ["11.94", "2.96", "8.98"]
