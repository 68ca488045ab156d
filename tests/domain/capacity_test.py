from decimal import Decimal

from domain.capacity import CapacityWalker
from domain.events import Filtering, MergeIn, Racking
from domain.tolerances import DEFAULT_TOLERANCES
from domain.volume import VolumeReconstructor
from tests.constants import BATCH_A, BIG_TANK, SMALL_TANK
from tests.helpers.ledger_builders import day, make_batch, standard_vessels

VESSELS = {vessel.id: vessel for vessel in standard_vessels()}


def _walker(reconstructor: VolumeReconstructor) -> CapacityWalker:
    return CapacityWalker(reconstructor, DEFAULT_TOLERANCES)


def test_merge_after_racking_overfills_vessel(reconstructor: VolumeReconstructor) -> None:
    batch = make_batch(BATCH_A, initial="450", vessel_id=BIG_TANK)
    events = [
        Racking(
            batch_id=BATCH_A,
            timestamp=day(1),
            source_vessel_id=BIG_TANK,
            destination_vessel_id=SMALL_TANK,
            volume_before=Decimal("450"),
            volume_after=Decimal("450"),
        ),
        MergeIn(batch_id=BATCH_A, timestamp=day(2), volume=Decimal("100")),
    ]

    peaks = {peak.vessel_id: peak for peak in _walker(reconstructor).capacity_history(batch, events, VESSELS)}

    assert peaks[SMALL_TANK].peak_volume == Decimal("550")
    assert peaks[SMALL_TANK].peak_instant == day(2)
    assert peaks[SMALL_TANK].exceeds
    assert peaks[BIG_TANK].peak_volume == Decimal("450")
    assert not peaks[BIG_TANK].exceeds
    assert _walker(reconstructor).exceeds_capacity(batch, events, VESSELS)


def test_racking_loss_stays_with_source_vessel(reconstructor: VolumeReconstructor) -> None:
    batch = make_batch(BATCH_A, initial="600", vessel_id=SMALL_TANK)
    events = [
        Racking(
            batch_id=BATCH_A,
            timestamp=day(1),
            source_vessel_id=BIG_TANK,
            destination_vessel_id=SMALL_TANK,
            volume_before=Decimal("600"),
            volume_after=Decimal("510"),
        ),
    ]

    peaks = {peak.vessel_id: peak for peak in _walker(reconstructor).capacity_history(batch, events, VESSELS)}

    # Initial occupancy comes from the first move's source, not the batch's current vessel.
    assert peaks[BIG_TANK].peak_volume == Decimal("600")
    assert peaks[SMALL_TANK].peak_volume == Decimal("510")
    assert not peaks[SMALL_TANK].exceeds


def test_headspace_tolerance(reconstructor: VolumeReconstructor) -> None:
    within = make_batch(BATCH_A, initial="525", vessel_id=SMALL_TANK)
    over = make_batch(BATCH_A, initial="525.01", vessel_id=SMALL_TANK)

    assert not _walker(reconstructor).exceeds_capacity(within, [], VESSELS)
    assert _walker(reconstructor).exceeds_capacity(over, [], VESSELS)


def test_unknown_vessel_is_never_exceeded(reconstructor: VolumeReconstructor) -> None:
    batch = make_batch(BATCH_A, initial="5000", vessel_id="not-registered")

    peaks = _walker(reconstructor).capacity_history(batch, [], VESSELS)

    assert len(peaks) == 1
    assert peaks[0].capacity is None
    assert not peaks[0].exceeds


def test_batch_without_vessel_has_no_history(reconstructor: VolumeReconstructor) -> None:
    batch = make_batch(BATCH_A)
    events = [Filtering(batch_id=BATCH_A, timestamp=day(1), loss=Decimal("3"))]

    assert _walker(reconstructor).capacity_history(batch, events, VESSELS) == []
