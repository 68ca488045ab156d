from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Any, Literal, NewType, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from .batch import BatchId, VesselId, parse_optional_datetime

VolumeEventId = NewType("VolumeEventId", UUID)


class EventKind(StrEnum):
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"
    MERGE_OUT = "MERGE_OUT"
    MERGE_IN = "MERGE_IN"
    CHILD_CREATION_OUTFLOW = "CHILD_CREATION_OUTFLOW"
    RACKING = "RACKING"
    FILTERING = "FILTERING"
    PACKAGING = "PACKAGING"
    DISTILLATION_SEND = "DISTILLATION_SEND"
    VOLUME_ADJUSTMENT = "VOLUME_ADJUSTMENT"
    DISTRIBUTION = "DISTRIBUTION"


class PackageType(StrEnum):
    BOTTLE = "BOTTLE"
    KEG = "KEG"


def _require_non_negative(name: str, value: Decimal | None) -> None:
    if value is not None and value < 0:
        raise ValueError(f"{name} must be >= 0")


class _VolumeEventBase(BaseModel):
    """Fields shared by every ledger record.

    ``timestamp`` is None when the source record carried no usable instant; such
    events are placed at the owning batch's creation instant.
    """

    model_config = ConfigDict(frozen=True)

    id: VolumeEventId = VolumeEventId(Field(default_factory=uuid4))
    batch_id: BatchId
    timestamp: datetime | None = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _lenient_timestamp(cls, value: Any) -> datetime | None:
        return parse_optional_datetime(value)


class TransferOut(_VolumeEventBase):
    kind: Literal["TRANSFER_OUT"] = "TRANSFER_OUT"
    counterpart_batch_id: BatchId
    volume: Decimal
    loss: Decimal = Decimal(0)

    @model_validator(mode="after")
    def _validate(self) -> TransferOut:
        _require_non_negative("TransferOut.volume", self.volume)
        _require_non_negative("TransferOut.loss", self.loss)
        return self


class TransferIn(_VolumeEventBase):
    kind: Literal["TRANSFER_IN"] = "TRANSFER_IN"
    counterpart_batch_id: BatchId
    volume: Decimal

    @model_validator(mode="after")
    def _validate(self) -> TransferIn:
        _require_non_negative("TransferIn.volume", self.volume)
        return self


class MergeOut(_VolumeEventBase):
    kind: Literal["MERGE_OUT"] = "MERGE_OUT"
    target_batch_id: BatchId
    volume: Decimal

    @model_validator(mode="after")
    def _validate(self) -> MergeOut:
        _require_non_negative("MergeOut.volume", self.volume)
        return self


class MergeIn(_VolumeEventBase):
    """Liquid folded into the batch. ``source_batch_id`` is None for press runs and juice purchases."""

    kind: Literal["MERGE_IN"] = "MERGE_IN"
    source_batch_id: BatchId | None = None
    volume: Decimal

    @model_validator(mode="after")
    def _validate(self) -> MergeIn:
        _require_non_negative("MergeIn.volume", self.volume)
        return self


class ChildCreationOutflow(_VolumeEventBase):
    kind: Literal["CHILD_CREATION_OUTFLOW"] = "CHILD_CREATION_OUTFLOW"
    child_batch_id: BatchId
    volume: Decimal

    @model_validator(mode="after")
    def _validate(self) -> ChildCreationOutflow:
        _require_non_negative("ChildCreationOutflow.volume", self.volume)
        return self


class Racking(_VolumeEventBase):
    kind: Literal["RACKING"] = "RACKING"
    source_vessel_id: VesselId | None = None
    destination_vessel_id: VesselId | None = None
    volume_before: Decimal | None = None
    volume_after: Decimal | None = None
    loss: Decimal = Decimal(0)

    @model_validator(mode="after")
    def _validate(self) -> Racking:
        _require_non_negative("Racking.loss", self.loss)
        _require_non_negative("Racking.volume_before", self.volume_before)
        _require_non_negative("Racking.volume_after", self.volume_after)
        return self

    @property
    def changes_vessel(self) -> bool:
        return (
            self.source_vessel_id is not None
            and self.destination_vessel_id is not None
            and self.source_vessel_id != self.destination_vessel_id
        )

    @property
    def effective_loss(self) -> Decimal:
        if self.loss > 0:
            return self.loss
        if self.volume_before is not None and self.volume_after is not None:
            return max(Decimal(0), self.volume_before - self.volume_after)
        return Decimal(0)


class Filtering(_VolumeEventBase):
    kind: Literal["FILTERING"] = "FILTERING"
    loss: Decimal

    @model_validator(mode="after")
    def _validate(self) -> Filtering:
        _require_non_negative("Filtering.loss", self.loss)
        return self


class Packaging(_VolumeEventBase):
    kind: Literal["PACKAGING"] = "PACKAGING"
    package_type: PackageType = PackageType.BOTTLE
    volume_taken: Decimal
    loss: Decimal = Decimal(0)
    units: int | None = None
    unit_size_liters: Decimal | None = None

    @model_validator(mode="after")
    def _validate(self) -> Packaging:
        _require_non_negative("Packaging.volume_taken", self.volume_taken)
        _require_non_negative("Packaging.loss", self.loss)
        _require_non_negative("Packaging.unit_size_liters", self.unit_size_liters)
        if self.units is not None and self.units < 0:
            raise ValueError("Packaging.units must be >= 0")
        return self

    @property
    def product_volume(self) -> Decimal | None:
        if self.units is None or self.unit_size_liters is None:
            return None
        return self.units * self.unit_size_liters


class DistillationSend(_VolumeEventBase):
    kind: Literal["DISTILLATION_SEND"] = "DISTILLATION_SEND"
    volume: Decimal

    @model_validator(mode="after")
    def _validate(self) -> DistillationSend:
        _require_non_negative("DistillationSend.volume", self.volume)
        return self


class VolumeAdjustment(_VolumeEventBase):
    """Signed correction: positive is a gain, negative a loss."""

    kind: Literal["VOLUME_ADJUSTMENT"] = "VOLUME_ADJUSTMENT"
    delta: Decimal
    reason: str = ""


class Distribution(_VolumeEventBase):
    """Finished product leaving bonded premises (a taxable removal)."""

    kind: Literal["DISTRIBUTION"] = "DISTRIBUTION"
    volume: Decimal

    @model_validator(mode="after")
    def _validate(self) -> Distribution:
        _require_non_negative("Distribution.volume", self.volume)
        return self


VolumeEvent = Annotated[
    Union[
        TransferOut,
        TransferIn,
        MergeOut,
        MergeIn,
        ChildCreationOutflow,
        Racking,
        Filtering,
        Packaging,
        DistillationSend,
        VolumeAdjustment,
        Distribution,
    ],
    Field(discriminator="kind"),
]

VOLUME_EVENT_ADAPTER: TypeAdapter[VolumeEvent] = TypeAdapter(VolumeEvent)

INFLOW_KINDS = frozenset({EventKind.TRANSFER_IN, EventKind.MERGE_IN})


def is_inflow(event: VolumeEvent) -> bool:
    if isinstance(event, VolumeAdjustment):
        return event.delta > 0
    return event.kind in INFLOW_KINDS


__all__ = [
    "ChildCreationOutflow",
    "DistillationSend",
    "Distribution",
    "EventKind",
    "Filtering",
    "MergeIn",
    "MergeOut",
    "PackageType",
    "Packaging",
    "Racking",
    "TransferIn",
    "TransferOut",
    "VOLUME_EVENT_ADAPTER",
    "VolumeAdjustment",
    "VolumeEvent",
    "VolumeEventId",
    "is_inflow",
]
