from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Iterable, Mapping, Sequence
from uuid import NAMESPACE_URL, uuid5

from .batch import Batch, BatchId
from .events import (
    ChildCreationOutflow,
    MergeIn,
    MergeOut,
    Racking,
    TransferIn,
    TransferOut,
    VolumeEvent,
    VolumeEventId,
)
from .volume import VolumeReconstructor, occurred_at


class EdgeKind(StrEnum):
    PARENT = "PARENT"
    TRANSFER = "TRANSFER"
    MERGE = "MERGE"


@dataclass(frozen=True)
class LineageEdge:
    source: BatchId
    destination: BatchId
    kind: EdgeKind
    volume: Decimal | None = None
    instant: datetime | None = None


class LineageGraph:
    """Directed batch graph with typed edges, indexed by source and destination.

    Built once from immutable inputs; traversal never mutates batches.
    """

    def __init__(
        self,
        batches: Mapping[BatchId, Batch],
        events_by_batch: Mapping[BatchId, Sequence[VolumeEvent]],
    ) -> None:
        self._batches = batches
        self._outgoing: dict[BatchId, list[LineageEdge]] = defaultdict(list)
        self._incoming: dict[BatchId, list[LineageEdge]] = defaultdict(list)

        for batch in batches.values():
            if batch.parent_batch_id is not None:
                self._add(
                    LineageEdge(
                        source=batch.parent_batch_id,
                        destination=batch.id,
                        kind=EdgeKind.PARENT,
                        instant=batch.created_at,
                    )
                )

        for batch_id, events in events_by_batch.items():
            batch = batches.get(batch_id)
            for event in events:
                edge = self._edge_for(batch_id, event, batch)
                if edge is not None:
                    self._add(edge)

    def _add(self, edge: LineageEdge) -> None:
        if edge in self._outgoing[edge.source]:
            return
        self._outgoing[edge.source].append(edge)
        self._incoming[edge.destination].append(edge)

    @staticmethod
    def _edge_for(batch_id: BatchId, event: VolumeEvent, batch: Batch | None) -> LineageEdge | None:
        instant = occurred_at(event, batch) if batch is not None else event.timestamp
        # Each transfer/merge is recorded on both sides; index it from the outbound record
        # and fall back to the inbound one so one-sided records still produce an edge.
        if isinstance(event, TransferOut):
            return LineageEdge(batch_id, event.counterpart_batch_id, EdgeKind.TRANSFER, event.volume, instant)
        if isinstance(event, TransferIn):
            return LineageEdge(event.counterpart_batch_id, batch_id, EdgeKind.TRANSFER, event.volume, instant)
        if isinstance(event, MergeOut):
            return LineageEdge(batch_id, event.target_batch_id, EdgeKind.MERGE, event.volume, instant)
        if isinstance(event, MergeIn) and event.source_batch_id is not None:
            return LineageEdge(event.source_batch_id, batch_id, EdgeKind.MERGE, event.volume, instant)
        return None

    def edges_from(self, batch_id: BatchId) -> list[LineageEdge]:
        return list(self._outgoing.get(batch_id, ()))

    def edges_into(self, batch_id: BatchId) -> list[LineageEdge]:
        return list(self._incoming.get(batch_id, ()))

    def children_of(self, batch_id: BatchId) -> list[BatchId]:
        return [edge.destination for edge in self.edges_from(batch_id) if edge.kind == EdgeKind.PARENT]

    def ancestors(self, batch_id: BatchId) -> list[BatchId]:
        """Parent chain, nearest first. Stops on a repeated id so bad data cannot loop."""
        chain: list[BatchId] = []
        seen = {batch_id}
        current = self._batches.get(batch_id)
        while current is not None and current.parent_batch_id is not None:
            parent_id = current.parent_batch_id
            if parent_id in seen:
                break
            chain.append(parent_id)
            seen.add(parent_id)
            current = self._batches.get(parent_id)
        return chain

    def has_explicit_link(self, parent_id: BatchId, child_id: BatchId) -> bool:
        return any(
            edge.destination == child_id and edge.kind in (EdgeKind.TRANSFER, EdgeKind.MERGE)
            for edge in self.edges_from(parent_id)
        )


def _closest_racking_instant(parent: Batch, parent_events: Iterable[VolumeEvent], target: datetime) -> datetime:
    rackings = [occurred_at(event, parent) for event in parent_events if isinstance(event, Racking)]
    if not rackings:
        return target
    return min(rackings, key=lambda instant: (abs(instant - target), instant))


def derive_child_outflows(
    batches: Mapping[BatchId, Batch],
    events_by_batch: Mapping[BatchId, Sequence[VolumeEvent]],
    graph: LineageGraph,
    reconstructor: VolumeReconstructor,
) -> dict[BatchId, list[ChildCreationOutflow]]:
    """Synthesize the parent-side outflow for children spawned by partial racking.

    Such children carry no transfer or merge record; the only link is the child's
    parent reference. The outflow is placed at the parent's racking closest in time
    to the child's creation.
    """
    derived: dict[BatchId, list[ChildCreationOutflow]] = defaultdict(list)

    for child in sorted(batches.values(), key=lambda item: (item.created_at, item.id)):
        parent_id = child.parent_batch_id
        if parent_id is None or not child.is_eligible or child.initial_volume <= 0:
            continue
        parent = batches.get(parent_id)
        if parent is None:
            continue

        parent_events = events_by_batch.get(parent_id, ())
        child_events = events_by_batch.get(child.id, ())
        if any(isinstance(event, ChildCreationOutflow) and event.child_batch_id == child.id for event in parent_events):
            continue
        if graph.has_explicit_link(parent_id, child.id):
            continue
        if reconstructor.is_transfer_created(child, child_events):
            continue

        derived[parent_id].append(
            ChildCreationOutflow(
                id=VolumeEventId(uuid5(NAMESPACE_URL, f"child-outflow:{parent_id}:{child.id}")),
                batch_id=parent_id,
                timestamp=_closest_racking_instant(parent, parent_events, child.created_at),
                child_batch_id=child.id,
                volume=child.initial_volume,
            )
        )

    return dict(derived)
