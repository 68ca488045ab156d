from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Mapping, Sequence

from pydantic import BaseModel, Field

from .batch import Batch, BatchId, Vessel, VesselId, ensure_utc
from .capacity import CapacityWalker, VesselPeak
from .events import Packaging, VolumeEvent
from .tolerances import DEFAULT_TOLERANCES, ReconciliationTolerances
from .volume import PackagingLossMode, VolumeReconstructor, interpret_packaging_loss, occurred_at, volume_delta

ZERO = Decimal(0)


class BatchAudit(BaseModel):
    batch_id: BatchId
    as_of: datetime
    reconstructed_volume: Decimal
    cached_volume: Decimal
    rewound_cached_volume: Decimal
    drift: Decimal
    has_drift: bool = False
    has_initial_volume_anomaly: bool = False
    exceeds_vessel_capacity: bool = False
    has_packaging_ambiguity: bool = False
    verified: bool = False
    vessel_peaks: list[VesselPeak] = Field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        return (
            self.has_drift
            or self.has_initial_volume_anomaly
            or self.exceeds_vessel_capacity
            or self.has_packaging_ambiguity
        )


class DriftAuditor:
    """Compare the replayed volume against the batch's cached running total."""

    def __init__(
        self,
        reconstructor: VolumeReconstructor,
        capacity_walker: CapacityWalker,
        tolerances: ReconciliationTolerances = DEFAULT_TOLERANCES,
    ) -> None:
        self._reconstructor = reconstructor
        self._capacity_walker = capacity_walker
        self._tolerances = tolerances

    def rewind_cached_volume(self, batch: Batch, events: Sequence[VolumeEvent], as_of: datetime) -> Decimal:
        """Cached total with every later event undone."""
        later_effect = sum(
            (volume_delta(event, self._tolerances) for event in events if occurred_at(event, batch) > as_of),
            start=ZERO,
        )
        return batch.current_volume - later_effect

    def has_packaging_ambiguity(self, events: Sequence[VolumeEvent]) -> bool:
        tolerance = self._tolerances.packaging_loss_tolerance
        return any(
            interpret_packaging_loss(event, tolerance) == PackagingLossMode.AMBIGUOUS
            for event in events
            if isinstance(event, Packaging)
        )

    def audit(
        self,
        batch: Batch,
        events: Sequence[VolumeEvent],
        as_of: datetime,
        vessels: Mapping[VesselId, Vessel],
    ) -> BatchAudit:
        as_of = ensure_utc(as_of)
        reconstructed = self._reconstructor.volume_at(batch, events, as_of)
        rewound = self.rewind_cached_volume(batch, events, as_of)
        drift = rewound - reconstructed

        peaks = self._capacity_walker.capacity_history(batch, events, vessels)
        exceeds = any(peak.exceeds for peak in peaks)

        return BatchAudit(
            batch_id=batch.id,
            as_of=as_of,
            reconstructed_volume=reconstructed,
            cached_volume=batch.current_volume,
            rewound_cached_volume=rewound,
            drift=drift,
            has_drift=not batch.verified and abs(drift) > self._tolerances.drift_tolerance,
            has_initial_volume_anomaly=self._reconstructor.is_transfer_created(batch, events),
            exceeds_vessel_capacity=exceeds and not batch.verified,
            has_packaging_ambiguity=self.has_packaging_ambiguity(events),
            verified=batch.verified,
            vessel_peaks=peaks,
        )
