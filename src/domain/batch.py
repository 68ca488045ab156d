from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Any, NewType

from pydantic import BaseModel, field_validator, model_validator

BatchId = NewType("BatchId", str)
VesselId = NewType("VesselId", str)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ProductType(StrEnum):
    JUICE = "JUICE"
    CIDER = "CIDER"
    PERRY = "PERRY"
    WINE = "WINE"
    PET_NAT = "PET_NAT"
    POMMEAU = "POMMEAU"
    BRANDY = "BRANDY"
    SPIRITS = "SPIRITS"


class BatchStatus(StrEnum):
    ACTIVE = "ACTIVE"
    DELETED = "DELETED"
    DUPLICATE = "DUPLICATE"
    EXCLUDED = "EXCLUDED"


class CarbonationMethod(StrEnum):
    NONE = "NONE"
    NATURAL = "NATURAL"
    FORCED = "FORCED"


class CarbonationMeasurement(BaseModel):
    measured_at: datetime
    co2_volumes: Decimal
    method: CarbonationMethod = CarbonationMethod.NONE

    @field_validator("measured_at")
    @classmethod
    def _normalize_measured_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class Batch(BaseModel):
    """A tracked body of liquid.

    ``current_volume`` is the cached running total maintained by the write side.
    It is informational only; volumes are always derived by event replay.
    """

    id: BatchId
    created_at: datetime
    initial_volume: Decimal = Decimal(0)
    parent_batch_id: BatchId | None = None
    current_volume: Decimal = Decimal(0)
    vessel_id: VesselId | None = None
    product_type: ProductType = ProductType.CIDER
    abv: Decimal | None = None
    estimated_abv: Decimal | None = None
    fruit_source: str | None = None
    carbonation: CarbonationMeasurement | None = None
    status: BatchStatus = BatchStatus.ACTIVE
    verified: bool = False

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _validate_fields(self) -> Batch:
        if not self.id:
            raise ValueError("Batch.id must be non-empty")
        if self.initial_volume < 0:
            raise ValueError("Batch.initial_volume must be >= 0")
        if self.parent_batch_id == self.id:
            raise ValueError("Batch cannot be its own parent")
        return self

    @property
    def is_eligible(self) -> bool:
        return self.status == BatchStatus.ACTIVE

    @property
    def effective_abv(self) -> Decimal | None:
        if self.abv is not None:
            return self.abv
        return self.estimated_abv


class Vessel(BaseModel):
    id: VesselId
    name: str
    capacity: Decimal | None = None

    @model_validator(mode="after")
    def _validate_capacity(self) -> Vessel:
        if self.capacity is not None and self.capacity <= 0:
            raise ValueError("Vessel.capacity must be > 0")
        return self


def parse_optional_datetime(value: Any) -> datetime | None:
    """Lenient timestamp parsing for ledger records.

    Returns None for missing or unparseable values instead of raising.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value))
        except ValueError:
            return None
    return None
