from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from domain.batch import Batch, BatchId, ProductType, Vessel
from domain.reconciliation import ReconciliationWindow
from domain.tax_class import TaxClass
from tests.constants import BASE_TIME, BIG_TANK, SMALL_TANK


def day(n: int, hour: int = 0) -> datetime:
    """Instant ``n`` days (and ``hour`` hours) after the shared base time."""
    return BASE_TIME + timedelta(days=n, hours=hour)


def make_batch(
    batch_id: str = "batch-a",
    *,
    created: datetime | None = None,
    initial: str | Decimal = "1000",
    current: str | Decimal | None = None,
    **overrides: Any,
) -> Batch:
    initial_volume = Decimal(initial)
    fields: dict[str, Any] = {
        "id": BatchId(batch_id),
        "created_at": created or day(0),
        "initial_volume": initial_volume,
        "current_volume": Decimal(current) if current is not None else initial_volume,
        "product_type": ProductType.CIDER,
        "abv": Decimal("6.5"),
        "fruit_source": "apple",
    }
    fields.update(overrides)
    return Batch(**fields)


def make_window(
    start: datetime,
    end: datetime,
    opening: dict[TaxClass, str] | None = None,
) -> ReconciliationWindow:
    balances = {tax_class: Decimal(value) for tax_class, value in (opening or {}).items()}
    return ReconciliationWindow(start=start, end=end, opening_balances=balances)


def standard_vessels() -> list[Vessel]:
    return [
        Vessel(id=BIG_TANK, name="Tank 1000", capacity=Decimal("1000")),
        Vessel(id=SMALL_TANK, name="Tank 500", capacity=Decimal("500")),
    ]
