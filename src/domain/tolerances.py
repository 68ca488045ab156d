from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, model_validator


class ReconciliationTolerances(BaseModel):
    """Numeric thresholds used by the replay, aggregation and audit passes.

    All volumes are liters.
    """

    model_config = ConfigDict(frozen=True)

    identity_tolerance: Decimal = Decimal("0.25")
    drift_tolerance: Decimal = Decimal("0.5")
    vessel_headspace_ratio: Decimal = Decimal("0.05")
    packaging_loss_tolerance: Decimal = Decimal("2")
    transfer_created_ratio: Decimal = Decimal("0.9")
    transfer_created_window: timedelta = timedelta(hours=24)
    balance_tolerance: Decimal = Decimal("0.38")

    @model_validator(mode="after")
    def _validate(self) -> ReconciliationTolerances:
        for name in (
            "identity_tolerance",
            "drift_tolerance",
            "vessel_headspace_ratio",
            "packaging_loss_tolerance",
            "balance_tolerance",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if not Decimal(0) < self.transfer_created_ratio <= Decimal(1):
            raise ValueError("transfer_created_ratio must be in (0, 1]")
        if self.transfer_created_window < timedelta(0):
            raise ValueError("transfer_created_window must be >= 0")
        return self


DEFAULT_TOLERANCES = ReconciliationTolerances()
