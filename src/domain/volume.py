from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Iterable, Sequence, assert_never

from .batch import Batch, ensure_utc
from .events import (
    ChildCreationOutflow,
    DistillationSend,
    Distribution,
    Filtering,
    MergeIn,
    MergeOut,
    Packaging,
    Racking,
    TransferIn,
    TransferOut,
    VolumeAdjustment,
    VolumeEvent,
    is_inflow,
)
from .tolerances import DEFAULT_TOLERANCES, ReconciliationTolerances

ZERO = Decimal(0)

# Ordering of entries that share an instant.
ORDER_INITIAL = 0
ORDER_INFLOW = 1
ORDER_OUTFLOW = 2


class PackagingLossMode(StrEnum):
    INCLUDED = "INCLUDED"
    SEPARATE = "SEPARATE"
    AMBIGUOUS = "AMBIGUOUS"


def interpret_packaging_loss(event: Packaging, tolerance: Decimal) -> PackagingLossMode:
    """Decide whether ``event.loss`` is already part of ``event.volume_taken``.

    Loss is embedded when volume taken matches units * unit size + loss within
    ``tolerance``. When neither reading matches and they differ by more than the
    tolerance the record is ambiguous; callers remove the larger amount and flag it.
    """
    if event.loss == 0:
        return PackagingLossMode.SEPARATE

    product_volume = event.product_volume
    if product_volume is None:
        return PackagingLossMode.SEPARATE

    if abs(event.volume_taken - (product_volume + event.loss)) <= tolerance:
        return PackagingLossMode.INCLUDED
    if abs(event.volume_taken - product_volume) <= tolerance:
        return PackagingLossMode.SEPARATE
    if event.loss > tolerance:
        return PackagingLossMode.AMBIGUOUS
    return PackagingLossMode.SEPARATE


def packaging_removal(event: Packaging, tolerance: Decimal) -> Decimal:
    """Total bulk volume a packaging run removes from its batch."""
    if interpret_packaging_loss(event, tolerance) == PackagingLossMode.INCLUDED:
        return event.volume_taken
    return event.volume_taken + event.loss


def volume_delta(event: VolumeEvent, tolerances: ReconciliationTolerances = DEFAULT_TOLERANCES) -> Decimal:
    """Signed effect of one event on its batch's bulk volume."""
    if isinstance(event, (TransferIn, MergeIn)):
        return event.volume
    if isinstance(event, TransferOut):
        return -(event.volume + event.loss)
    if isinstance(event, (MergeOut, ChildCreationOutflow, DistillationSend)):
        return -event.volume
    if isinstance(event, Racking):
        return -event.effective_loss
    if isinstance(event, Filtering):
        return -event.loss
    if isinstance(event, Packaging):
        return -packaging_removal(event, tolerances.packaging_loss_tolerance)
    if isinstance(event, VolumeAdjustment):
        return event.delta
    if isinstance(event, Distribution):
        # Finished goods leaving premises; bulk volume left at packaging time.
        return ZERO
    assert_never(event)


def occurred_at(event: VolumeEvent, batch: Batch) -> datetime:
    if event.timestamp is None:
        return batch.created_at
    return event.timestamp


@dataclass(frozen=True)
class TimelineEntry:
    instant: datetime
    order: int
    tiebreak: str
    delta: Decimal
    event: VolumeEvent | None = None

    @property
    def sort_key(self) -> tuple[datetime, int, str]:
        return (self.instant, self.order, self.tiebreak)


@dataclass(frozen=True)
class FoldResult:
    volume: Decimal
    residual: Decimal


def event_entry(event: VolumeEvent, batch: Batch, tolerances: ReconciliationTolerances) -> TimelineEntry:
    return TimelineEntry(
        instant=occurred_at(event, batch),
        order=ORDER_INFLOW if is_inflow(event) else ORDER_OUTFLOW,
        tiebreak=str(event.id),
        delta=volume_delta(event, tolerances),
        event=event,
    )


def fold(entries: Iterable[TimelineEntry]) -> FoldResult:
    """Apply entries in order, clamping at zero and accumulating the clamped amount."""
    running = ZERO
    residual = ZERO
    for entry in sorted(entries, key=lambda item: item.sort_key):
        running += entry.delta
        if running < 0:
            residual += running
            running = ZERO
    return FoldResult(volume=running, residual=residual)


class VolumeReconstructor:
    """Derive a batch's bulk volume at any instant by replaying its ledger."""

    def __init__(self, tolerances: ReconciliationTolerances = DEFAULT_TOLERANCES) -> None:
        self._tolerances = tolerances

    @property
    def tolerances(self) -> ReconciliationTolerances:
        return self._tolerances

    def transfer_in_total(self, events: Iterable[VolumeEvent]) -> Decimal:
        return sum((event.volume for event in events if isinstance(event, TransferIn)), start=ZERO)

    def creation_transfers(self, batch: Batch, events: Iterable[VolumeEvent]) -> list[TransferIn]:
        """Transfer-ins recorded no later than the creation window after ``batch.created_at``."""
        latest = batch.created_at + self._tolerances.transfer_created_window
        return [event for event in events if isinstance(event, TransferIn) and occurred_at(event, batch) <= latest]

    def is_transfer_created(self, batch: Batch, events: Sequence[VolumeEvent]) -> bool:
        """True when a child batch was filled by inbound transfers at creation.

        The declared initial volume of such a batch double-counts the transfer. Only batches
        with a parent qualify, and later top-ups never count, so the answer does not depend
        on when the ledger is read.
        """
        if batch.parent_batch_id is None or batch.initial_volume <= 0:
            return False
        threshold = batch.initial_volume * self._tolerances.transfer_created_ratio
        return self.transfer_in_total(self.creation_transfers(batch, events)) >= threshold

    def effective_initial_volume(self, batch: Batch, events: Sequence[VolumeEvent]) -> Decimal:
        if self.is_transfer_created(batch, events):
            return ZERO
        return batch.initial_volume

    def timeline(self, batch: Batch, events: Sequence[VolumeEvent]) -> list[TimelineEntry]:
        entries = [event_entry(event, batch, self._tolerances) for event in events]
        initial = self.effective_initial_volume(batch, events)
        if initial > 0:
            entries.append(
                TimelineEntry(
                    instant=batch.created_at,
                    order=ORDER_INITIAL,
                    tiebreak="",
                    delta=initial,
                )
            )
        entries.sort(key=lambda item: item.sort_key)
        return entries

    def reconstruct(self, batch: Batch, events: Sequence[VolumeEvent], cutoff: datetime) -> FoldResult:
        cutoff = ensure_utc(cutoff)
        return fold(entry for entry in self.timeline(batch, events) if entry.instant <= cutoff)

    def volume_at(self, batch: Batch, events: Sequence[VolumeEvent], cutoff: datetime) -> Decimal:
        return self.reconstruct(batch, events, cutoff).volume
