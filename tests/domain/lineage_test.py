from decimal import Decimal

from domain.batch import Batch, BatchId, BatchStatus
from domain.events import Racking, TransferIn, TransferOut, VolumeEvent
from domain.lineage import EdgeKind, LineageGraph, derive_child_outflows
from domain.volume import VolumeReconstructor
from tests.constants import BATCH_A, BATCH_B, CHILD, PARENT
from tests.helpers.ledger_builders import day, make_batch


def _derive(
    batches: list[Batch], events: list[VolumeEvent], reconstructor: VolumeReconstructor
) -> dict[BatchId, list]:
    by_id = {batch.id: batch for batch in batches}
    grouped: dict[BatchId, list[VolumeEvent]] = {}
    for event in events:
        grouped.setdefault(event.batch_id, []).append(event)
    graph = LineageGraph(by_id, grouped)
    return derive_child_outflows(by_id, grouped, graph, reconstructor)


def test_child_outflow_is_placed_at_closest_racking(reconstructor: VolumeReconstructor) -> None:
    parent = make_batch(PARENT)
    child = make_batch(CHILD, created=day(5, hour=2), initial="300", parent_batch_id=PARENT)
    events: list[VolumeEvent] = [
        Racking(batch_id=PARENT, timestamp=day(1)),
        Racking(batch_id=PARENT, timestamp=day(5)),
        Racking(batch_id=PARENT, timestamp=day(9)),
    ]

    derived = _derive([parent, child], events, reconstructor)

    assert list(derived) == [PARENT]
    (outflow,) = derived[PARENT]
    assert outflow.child_batch_id == CHILD
    assert outflow.volume == Decimal("300")
    assert outflow.timestamp == day(5)


def test_child_outflow_ids_are_stable(reconstructor: VolumeReconstructor) -> None:
    parent = make_batch(PARENT)
    child = make_batch(CHILD, created=day(3), initial="300", parent_batch_id=PARENT)

    first = _derive([parent, child], [], reconstructor)
    second = _derive([parent, child], [], reconstructor)

    assert first[PARENT][0].id == second[PARENT][0].id
    assert first[PARENT][0].timestamp == day(3)


def test_explicit_transfer_suppresses_derived_outflow(reconstructor: VolumeReconstructor) -> None:
    parent = make_batch(PARENT)
    child = make_batch(CHILD, created=day(3), initial="300", parent_batch_id=PARENT)
    events: list[VolumeEvent] = [
        TransferOut(batch_id=PARENT, timestamp=day(3), counterpart_batch_id=CHILD, volume=Decimal("100")),
    ]

    assert _derive([parent, child], events, reconstructor) == {}


def test_transfer_created_child_has_no_derived_outflow(reconstructor: VolumeReconstructor) -> None:
    parent = make_batch(PARENT)
    child = make_batch(CHILD, created=day(3), initial="300", parent_batch_id=PARENT)
    events: list[VolumeEvent] = [
        TransferIn(batch_id=CHILD, timestamp=day(3), counterpart_batch_id=BATCH_A, volume=Decimal("300")),
    ]

    assert _derive([parent, child], events, reconstructor) == {}


def test_ineligible_child_is_ignored(reconstructor: VolumeReconstructor) -> None:
    parent = make_batch(PARENT)
    child = make_batch(CHILD, created=day(3), initial="300", parent_batch_id=PARENT, status=BatchStatus.DUPLICATE)

    assert _derive([parent, child], [], reconstructor) == {}


def test_graph_indexes_edges_both_ways() -> None:
    a = make_batch(BATCH_A)
    b = make_batch(BATCH_B, parent_batch_id=BATCH_A)
    events: list[VolumeEvent] = [
        TransferOut(batch_id=BATCH_A, timestamp=day(1), counterpart_batch_id=BATCH_B, volume=Decimal("50")),
        TransferIn(batch_id=BATCH_B, timestamp=day(1), counterpart_batch_id=BATCH_A, volume=Decimal("50")),
    ]

    graph = LineageGraph({a.id: a, b.id: b}, {BATCH_A: events[:1], BATCH_B: events[1:]})

    assert graph.children_of(BATCH_A) == [BATCH_B]
    assert {edge.kind for edge in graph.edges_from(BATCH_A)} == {EdgeKind.PARENT, EdgeKind.TRANSFER}
    assert [edge.source for edge in graph.edges_into(BATCH_B)].count(BATCH_A) == 2
    assert graph.has_explicit_link(BATCH_A, BATCH_B)


def test_ancestors_stop_on_cycles() -> None:
    a = make_batch(BATCH_A, parent_batch_id=BATCH_B)
    b = make_batch(BATCH_B, parent_batch_id=BATCH_A)

    graph = LineageGraph({a.id: a, b.id: b}, {})

    assert graph.ancestors(BATCH_A) == [BATCH_B]
