from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Collection, Iterable, Mapping, Protocol

from .batch import Batch, BatchId, Vessel, VesselId
from .events import EventKind, VolumeEvent
from .lineage import LineageGraph, derive_child_outflows
from .volume import VolumeReconstructor

logger = logging.getLogger(__name__)


class UnknownBatchError(ValueError):
    def __init__(self, batch_id: str) -> None:
        super().__init__(f"Unknown batch {batch_id}")
        self.batch_id = batch_id


class LedgerStore(Protocol):
    """Read side of the append-only ledger."""

    def list_batches(self) -> list[Batch]: ...

    def list_vessels(self) -> list[Vessel]: ...

    def events_of_kind(self, kind: EventKind, batch_ids: Collection[BatchId]) -> list[VolumeEvent]:
        """All events of ``kind`` owned by ``batch_ids``, without date filtering."""
        ...


class InMemoryLedgerStore(LedgerStore):
    def __init__(
        self,
        *,
        batches: Iterable[Batch] = (),
        vessels: Iterable[Vessel] = (),
        events: Iterable[VolumeEvent] = (),
    ) -> None:
        self._batches = list(batches)
        self._vessels = list(vessels)
        self._events = list(events)

    def list_batches(self) -> list[Batch]:
        return list(self._batches)

    def list_vessels(self) -> list[Vessel]:
        return list(self._vessels)

    def events_of_kind(self, kind: EventKind, batch_ids: Collection[BatchId]) -> list[VolumeEvent]:
        wanted = set(batch_ids)
        return [event for event in self._events if event.kind == kind and event.batch_id in wanted]


@dataclass(frozen=True)
class LedgerSnapshot:
    """Read-only inputs for one query, fetched with one bulk read per event kind."""

    batches: Mapping[BatchId, Batch]
    vessels: Mapping[VesselId, Vessel]
    events_by_batch: Mapping[BatchId, tuple[VolumeEvent, ...]]
    lineage: LineageGraph

    @classmethod
    def load(cls, store: LedgerStore, reconstructor: VolumeReconstructor) -> LedgerSnapshot:
        batches = {batch.id: batch for batch in store.list_batches()}
        vessels = {vessel.id: vessel for vessel in store.list_vessels()}
        batch_ids = set(batches)

        grouped: dict[BatchId, list[VolumeEvent]] = defaultdict(list)
        for kind in EventKind:
            for event in store.events_of_kind(kind, batch_ids):
                grouped[event.batch_id].append(event)

        lineage = LineageGraph(batches, grouped)
        derived = derive_child_outflows(batches, grouped, lineage, reconstructor)
        for parent_id, outflows in derived.items():
            grouped[parent_id].extend(outflows)

        logger.debug(
            "Loaded ledger snapshot: %d batches, %d vessels, %d events (%d derived child outflows)",
            len(batches),
            len(vessels),
            sum(len(events) for events in grouped.values()),
            sum(len(outflows) for outflows in derived.values()),
        )
        return cls(
            batches=batches,
            vessels=vessels,
            events_by_batch={batch_id: tuple(events) for batch_id, events in grouped.items()},
            lineage=lineage,
        )

    def batch(self, batch_id: BatchId) -> Batch:
        batch = self.batches.get(batch_id)
        if batch is None:
            raise UnknownBatchError(batch_id)
        return batch

    def events_for(self, batch_id: BatchId) -> tuple[VolumeEvent, ...]:
        return self.events_by_batch.get(batch_id, ())
