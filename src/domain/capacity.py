from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Mapping, Sequence

from pydantic import BaseModel

from .batch import Batch, Vessel, VesselId
from .events import Racking, VolumeEvent
from .tolerances import DEFAULT_TOLERANCES, ReconciliationTolerances
from .volume import ORDER_OUTFLOW, VolumeReconstructor, occurred_at

ZERO = Decimal(0)
ORDER_VESSEL_CHANGE = ORDER_OUTFLOW + 1
SOURCE_SIDE_OFFSET = timedelta(microseconds=1)


class VesselPeak(BaseModel):
    vessel_id: VesselId
    vessel_name: str | None = None
    capacity: Decimal | None = None
    peak_volume: Decimal
    peak_instant: datetime
    exceeds: bool = False


@dataclass(frozen=True)
class _Step:
    instant: datetime
    order: int
    tiebreak: str
    delta: Decimal = ZERO
    move_to: VesselId | None = None


class CapacityWalker:
    """Replay a batch's ledger while tracking which vessel holds it."""

    def __init__(
        self,
        reconstructor: VolumeReconstructor,
        tolerances: ReconciliationTolerances = DEFAULT_TOLERANCES,
    ) -> None:
        self._reconstructor = reconstructor
        self._tolerances = tolerances

    def capacity_history(
        self,
        batch: Batch,
        events: Sequence[VolumeEvent],
        vessels: Mapping[VesselId, Vessel],
    ) -> list[VesselPeak]:
        steps = self._steps(batch, events)
        current_vessel = self._initial_vessel(batch, events)

        peaks: dict[VesselId, tuple[Decimal, datetime]] = {}
        running = ZERO
        for step in steps:
            if step.move_to is not None:
                current_vessel = step.move_to
            else:
                running = max(ZERO, running + step.delta)
            if current_vessel is None:
                continue
            best = peaks.get(current_vessel)
            if best is None or running > best[0]:
                peaks[current_vessel] = (running, step.instant)

        return [self._to_peak(vessel_id, volume, instant, vessels) for vessel_id, (volume, instant) in peaks.items()]

    def exceeds_capacity(
        self,
        batch: Batch,
        events: Sequence[VolumeEvent],
        vessels: Mapping[VesselId, Vessel],
    ) -> bool:
        return any(peak.exceeds for peak in self.capacity_history(batch, events, vessels))

    def _to_peak(
        self,
        vessel_id: VesselId,
        volume: Decimal,
        instant: datetime,
        vessels: Mapping[VesselId, Vessel],
    ) -> VesselPeak:
        vessel = vessels.get(vessel_id)
        capacity = vessel.capacity if vessel is not None else None
        exceeds = False
        if capacity is not None:
            exceeds = volume > capacity * (1 + self._tolerances.vessel_headspace_ratio)
        return VesselPeak(
            vessel_id=vessel_id,
            vessel_name=vessel.name if vessel is not None else None,
            capacity=capacity,
            peak_volume=volume,
            peak_instant=instant,
            exceeds=exceeds,
        )

    @staticmethod
    def _vessel_moves(batch: Batch, events: Sequence[VolumeEvent]) -> list[Racking]:
        moves = [event for event in events if isinstance(event, Racking) and event.changes_vessel]
        moves.sort(key=lambda event: (occurred_at(event, batch), str(event.id)))
        return moves

    def _initial_vessel(self, batch: Batch, events: Sequence[VolumeEvent]) -> VesselId | None:
        moves = self._vessel_moves(batch, events)
        if moves:
            return moves[0].source_vessel_id
        return batch.vessel_id

    def _steps(self, batch: Batch, events: Sequence[VolumeEvent]) -> list[_Step]:
        steps: list[_Step] = []
        for entry in self._reconstructor.timeline(batch, events):
            instant = entry.instant
            event = entry.event
            if isinstance(event, Racking) and event.changes_vessel:
                # Racking loss happens in the vessel being emptied.
                instant = instant - SOURCE_SIDE_OFFSET
            steps.append(_Step(instant=instant, order=entry.order, tiebreak=entry.tiebreak, delta=entry.delta))

        for move in self._vessel_moves(batch, events):
            steps.append(
                _Step(
                    instant=occurred_at(move, batch),
                    order=ORDER_VESSEL_CHANGE,
                    tiebreak=str(move.id),
                    move_to=move.destination_vessel_id,
                )
            )

        steps.sort(key=lambda step: (step.instant, step.order, step.tiebreak))
        return steps
