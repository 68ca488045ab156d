from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Iterable, Protocol, Sequence

from pydantic import BaseModel, Field, field_validator

from .batch import Batch, BatchId, ensure_utc
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
)
from .tax_class import TaxClass
from .tolerances import DEFAULT_TOLERANCES, ReconciliationTolerances
from .volume import TimelineEntry, VolumeReconstructor, fold, occurred_at, packaging_removal

ZERO = Decimal(0)


class InvalidWindowError(ValueError):
    def __init__(self, start: datetime, end: datetime) -> None:
        super().__init__(f"Reconciliation window ends before it starts: start={start.isoformat()} end={end.isoformat()}")
        self.start = start
        self.end = end


class Bucket(StrEnum):
    OPENING = "OPENING"
    PERIOD = "PERIOD"
    AFTER = "AFTER"


class ReconciliationWindow(BaseModel):
    """Half-open activity window ``(start, end]`` with the seeded opening balance per tax class.

    The seed is authoritative for the opening total; activity boundaries are always
    the ``start``/``end`` passed here, never inferred from the seed's own period.
    """

    start: datetime
    end: datetime
    opening_balances: dict[TaxClass, Decimal] = Field(default_factory=dict)

    @field_validator("start", "end")
    @classmethod
    def _normalize(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def bucket_for(self, instant: datetime) -> Bucket:
        if instant <= self.start:
            return Bucket.OPENING
        if instant <= self.end:
            return Bucket.PERIOD
        return Bucket.AFTER

    def validate_bounds(self) -> None:
        if self.end < self.start:
            raise InvalidWindowError(self.start, self.end)


class OpeningBalanceProvider(Protocol):
    def opening_balances(self, as_of: datetime) -> dict[TaxClass, Decimal]:
        """Last finalized ending balance per tax class on or before ``as_of``."""
        ...


def build_window(start: datetime, end: datetime, provider: OpeningBalanceProvider) -> ReconciliationWindow:
    window = ReconciliationWindow(start=start, end=end)
    window.validate_bounds()
    return window.model_copy(update={"opening_balances": provider.opening_balances(window.start)})


class LossBreakdown(BaseModel):
    racking: Decimal = ZERO
    filtering: Decimal = ZERO
    packaging: Decimal = ZERO
    transfer: Decimal = ZERO
    adjustment: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.racking + self.filtering + self.packaging + self.transfer + self.adjustment

    @property
    def process(self) -> Decimal:
        """Losses other than those incurred in transit."""
        return self.total - self.transfer

    def __add__(self, other: LossBreakdown) -> LossBreakdown:
        return LossBreakdown(
            racking=self.racking + other.racking,
            filtering=self.filtering + other.filtering,
            packaging=self.packaging + other.packaging,
            transfer=self.transfer + other.transfer,
            adjustment=self.adjustment + other.adjustment,
        )


class BatchContribution(BaseModel):
    """Per-batch figures for one window. Recomputed on every query."""

    batch_id: BatchId
    tax_class: TaxClass
    opening: Decimal = ZERO
    opening_residual: Decimal = ZERO
    production: Decimal = ZERO
    transfers_in: Decimal = ZERO
    transfers_out: Decimal = ZERO
    positive_adjustments: Decimal = ZERO
    packaging: Decimal = ZERO
    losses: LossBreakdown = Field(default_factory=LossBreakdown)
    sales: Decimal = ZERO
    distillation: Decimal = ZERO
    ending: Decimal = ZERO
    identity_residual: Decimal = ZERO
    has_identity_issue: bool = False
    packaged_opening: Decimal = ZERO
    packaged_ending: Decimal = ZERO

    @property
    def transfer_loss(self) -> Decimal:
        return self.losses.transfer

    @property
    def process_losses(self) -> Decimal:
        return self.losses.process


class BalanceCheck(BaseModel):
    opening_balance: Decimal
    total_available: Decimal
    total_removed: Decimal
    calculated_ending: Decimal
    reconstructed_on_hand: Decimal
    variance: Decimal
    balanced: bool


def compute_balance_check(
    *,
    opening_balance: Decimal,
    production: Decimal,
    receipts: Decimal,
    positive_adjustments: Decimal,
    transfers_out: Decimal,
    sales: Decimal,
    losses: Decimal,
    distillation: Decimal,
    reconstructed_on_hand: Decimal,
    tolerance: Decimal,
) -> BalanceCheck:
    """Regulator-form balance: available minus removals must match what is on hand.

    The variance is reported as-is; it is never folded back into any figure.
    """
    total_available = opening_balance + production + receipts + positive_adjustments
    total_removed = transfers_out + sales + losses + distillation
    calculated_ending = total_available - total_removed
    variance = calculated_ending - reconstructed_on_hand
    return BalanceCheck(
        opening_balance=opening_balance,
        total_available=total_available,
        total_removed=total_removed,
        calculated_ending=calculated_ending,
        reconstructed_on_hand=reconstructed_on_hand,
        variance=variance,
        balanced=abs(variance) <= tolerance,
    )


class VolumeRollup(BaseModel):
    """Sum of batch contributions for one tax class, or the grand total when ``tax_class`` is None."""

    tax_class: TaxClass | None = None
    batch_count: int = 0
    opening_balance: Decimal = ZERO
    opening_balance_missing: bool = False
    reconstructed_opening: Decimal = ZERO
    opening_variance: Decimal = ZERO
    production: Decimal = ZERO
    transfers_in: Decimal = ZERO
    transfers_out: Decimal = ZERO
    positive_adjustments: Decimal = ZERO
    packaging: Decimal = ZERO
    losses: LossBreakdown = Field(default_factory=LossBreakdown)
    sales: Decimal = ZERO
    distillation: Decimal = ZERO
    bulk_ending: Decimal = ZERO
    packaged_ending: Decimal = ZERO
    identity_issue_count: int = 0
    balance: BalanceCheck | None = None


class PeriodAggregator:
    """Split each batch's ledger around a window and roll the results up."""

    def __init__(
        self,
        reconstructor: VolumeReconstructor,
        tolerances: ReconciliationTolerances = DEFAULT_TOLERANCES,
    ) -> None:
        self._reconstructor = reconstructor
        self._tolerances = tolerances

    @staticmethod
    def is_eligible(batch: Batch, window: ReconciliationWindow) -> bool:
        return batch.is_eligible and batch.created_at <= window.end

    def partition(
        self, batch: Batch, events: Iterable[VolumeEvent], window: ReconciliationWindow
    ) -> dict[Bucket, list[VolumeEvent]]:
        buckets: dict[Bucket, list[VolumeEvent]] = {bucket: [] for bucket in Bucket}
        for event in events:
            buckets[window.bucket_for(occurred_at(event, batch))].append(event)
        return buckets

    def contribution(
        self,
        batch: Batch,
        events: Sequence[VolumeEvent],
        window: ReconciliationWindow,
        tax_class: TaxClass,
    ) -> BatchContribution:
        tolerance = self._tolerances.packaging_loss_tolerance
        buckets = self.partition(batch, events, window)

        opening = self._reconstructor.reconstruct(batch, events, window.start)

        production = ZERO
        if window.start < batch.created_at <= window.end:
            production += self._reconstructor.effective_initial_volume(batch, events)

        transfers_in = ZERO
        transfers_out = ZERO
        positive_adjustments = ZERO
        packaging = ZERO
        sales = ZERO
        distillation = ZERO
        racking_loss = ZERO
        filter_loss = ZERO
        packaging_loss = ZERO
        transfer_loss = ZERO
        adjustment_loss = ZERO

        for event in buckets[Bucket.PERIOD]:
            if isinstance(event, TransferIn):
                transfers_in += event.volume
            elif isinstance(event, MergeIn):
                production += event.volume
            elif isinstance(event, TransferOut):
                transfers_out += event.volume
                transfer_loss += event.loss
            elif isinstance(event, (MergeOut, ChildCreationOutflow)):
                transfers_out += event.volume
            elif isinstance(event, Racking):
                racking_loss += event.effective_loss
            elif isinstance(event, Filtering):
                filter_loss += event.loss
            elif isinstance(event, Packaging):
                removal = packaging_removal(event, tolerance)
                product = self._packaged_product(event)
                packaging += product
                packaging_loss += removal - product
            elif isinstance(event, DistillationSend):
                distillation += event.volume
            elif isinstance(event, VolumeAdjustment):
                if event.delta > 0:
                    positive_adjustments += event.delta
                else:
                    adjustment_loss -= event.delta
            elif isinstance(event, Distribution):
                sales += event.volume

        losses = LossBreakdown(
            racking=racking_loss,
            filtering=filter_loss,
            packaging=packaging_loss,
            transfer=transfer_loss,
            adjustment=adjustment_loss,
        )
        unclamped = (
            opening.volume
            + production
            + positive_adjustments
            + transfers_in
            - transfers_out
            - packaging
            - losses.total
            - distillation
        )
        ending = max(ZERO, unclamped)
        identity_residual = min(ZERO, unclamped)
        clamped_total = -(identity_residual + opening.residual)

        return BatchContribution(
            batch_id=batch.id,
            tax_class=tax_class,
            opening=opening.volume,
            opening_residual=opening.residual,
            production=production,
            transfers_in=transfers_in,
            transfers_out=transfers_out,
            positive_adjustments=positive_adjustments,
            packaging=packaging,
            losses=losses,
            sales=sales,
            distillation=distillation,
            ending=ending,
            identity_residual=identity_residual,
            has_identity_issue=clamped_total > self._tolerances.identity_tolerance,
            packaged_opening=self.packaged_on_hand(batch, events, window.start),
            packaged_ending=self.packaged_on_hand(batch, events, window.end),
        )

    def _packaged_product(self, event: Packaging) -> Decimal:
        removal = packaging_removal(event, self._tolerances.packaging_loss_tolerance)
        return max(ZERO, removal - event.loss)

    def packaged_on_hand(self, batch: Batch, events: Sequence[VolumeEvent], cutoff: datetime) -> Decimal:
        """Finished goods from this batch still on premises: packaged minus distributed."""
        entries: list[TimelineEntry] = []
        for entry in self._reconstructor.timeline(batch, events):
            if entry.instant > cutoff:
                continue
            if isinstance(entry.event, Packaging):
                entries.append(replace(entry, delta=self._packaged_product(entry.event)))
            elif isinstance(entry.event, Distribution):
                entries.append(replace(entry, delta=-entry.event.volume))
        return fold(entries).volume

    def roll_up(
        self,
        contributions: Sequence[BatchContribution],
        window: ReconciliationWindow,
        tax_class: TaxClass | None = None,
        *,
        opening_balance: Decimal | None = None,
    ) -> VolumeRollup:
        """Sum ``contributions`` and run the balance check against the seeded opening balance.

        With ``tax_class`` set, the seed comes from ``window.opening_balances``; a class
        without a seed is treated as zero and marked ``opening_balance_missing``.
        """
        opening_balance_missing = False
        if opening_balance is None:
            if tax_class is not None and tax_class in window.opening_balances:
                opening_balance = window.opening_balances[tax_class]
            else:
                opening_balance = ZERO
                opening_balance_missing = tax_class is not None and tax_class != TaxClass.EXEMPT

        losses = LossBreakdown()
        for item in contributions:
            losses = losses + item.losses

        rollup = VolumeRollup(
            tax_class=tax_class,
            batch_count=len(contributions),
            opening_balance=opening_balance,
            opening_balance_missing=opening_balance_missing,
            reconstructed_opening=sum((c.opening + c.packaged_opening for c in contributions), start=ZERO),
            production=sum((c.production for c in contributions), start=ZERO),
            transfers_in=sum((c.transfers_in for c in contributions), start=ZERO),
            transfers_out=sum((c.transfers_out for c in contributions), start=ZERO),
            positive_adjustments=sum((c.positive_adjustments for c in contributions), start=ZERO),
            packaging=sum((c.packaging for c in contributions), start=ZERO),
            losses=losses,
            sales=sum((c.sales for c in contributions), start=ZERO),
            distillation=sum((c.distillation for c in contributions), start=ZERO),
            bulk_ending=sum((c.ending for c in contributions), start=ZERO),
            packaged_ending=sum((c.packaged_ending for c in contributions), start=ZERO),
            identity_issue_count=sum(1 for c in contributions if c.has_identity_issue),
        )
        rollup.opening_variance = rollup.opening_balance - rollup.reconstructed_opening
        rollup.balance = compute_balance_check(
            opening_balance=rollup.opening_balance,
            production=rollup.production,
            receipts=rollup.transfers_in,
            positive_adjustments=rollup.positive_adjustments,
            transfers_out=rollup.transfers_out,
            sales=rollup.sales,
            losses=rollup.losses.total,
            distillation=rollup.distillation,
            reconstructed_on_hand=rollup.bulk_ending + rollup.packaged_ending,
            tolerance=self._tolerances.balance_tolerance,
        )
        return rollup
