from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from functools import cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from domain.tolerances import ReconciliationTolerances


class AppSettings(BaseSettings):
    db_file: str = "cellar_ledger.db"
    tax_class_config_file: Path | None = None

    identity_tolerance: Decimal = Decimal("0.25")
    drift_tolerance: Decimal = Decimal("0.5")
    vessel_headspace_ratio: Decimal = Decimal("0.05")
    packaging_loss_tolerance: Decimal = Decimal("2")
    transfer_created_ratio: Decimal = Decimal("0.9")
    transfer_created_window_hours: int = 24
    balance_tolerance_liters: Decimal = Decimal("0.38")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def tolerances(self) -> ReconciliationTolerances:
        return ReconciliationTolerances(
            identity_tolerance=self.identity_tolerance,
            drift_tolerance=self.drift_tolerance,
            vessel_headspace_ratio=self.vessel_headspace_ratio,
            packaging_loss_tolerance=self.packaging_loss_tolerance,
            transfer_created_ratio=self.transfer_created_ratio,
            transfer_created_window=timedelta(hours=self.transfer_created_window_hours),
            balance_tolerance=self.balance_tolerance_liters,
        )


@cache
def config() -> AppSettings:
    return AppSettings()
