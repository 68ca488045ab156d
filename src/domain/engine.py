from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from .audit import BatchAudit, DriftAuditor
from .batch import Batch, BatchId, ensure_utc
from .capacity import CapacityWalker
from .ledger_store import LedgerSnapshot, LedgerStore
from .reconciliation import BatchContribution, PeriodAggregator, ReconciliationWindow, VolumeRollup
from .tax_class import TaxClass, TaxClassConfig, classify, conservative_tax_class_config
from .tolerances import DEFAULT_TOLERANCES, ReconciliationTolerances
from .volume import VolumeReconstructor

logger = logging.getLogger(__name__)


class ReconciliationReport(BaseModel):
    window: ReconciliationWindow
    totals: VolumeRollup
    per_tax_class: list[VolumeRollup] = Field(default_factory=list)
    per_batch: list[BatchContribution] = Field(default_factory=list)
    audits: list[BatchAudit] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    classification_config_defaulted: bool = False

    def rollup_for(self, tax_class: TaxClass) -> VolumeRollup | None:
        for rollup in self.per_tax_class:
            if rollup.tax_class == tax_class:
                return rollup
        return None

    def contribution_for(self, batch_id: BatchId) -> BatchContribution | None:
        for contribution in self.per_batch:
            if contribution.batch_id == batch_id:
                return contribution
        return None

    def audit_for(self, batch_id: BatchId) -> BatchAudit | None:
        for audit in self.audits:
            if audit.batch_id == batch_id:
                return audit
        return None

    @property
    def flagged_batches(self) -> list[BatchId]:
        flagged = {c.batch_id for c in self.per_batch if c.has_identity_issue}
        flagged.update(a.batch_id for a in self.audits if a.needs_review)
        return sorted(flagged)


class ReconciliationEngine:
    """Read-only entry points over a ledger store.

    Every call loads a fresh snapshot, so results always reflect the store's
    current contents and repeated calls on an unchanged ledger are identical.
    """

    def __init__(self, store: LedgerStore, *, tolerances: ReconciliationTolerances | None = None) -> None:
        self._store = store
        self._tolerances = tolerances or DEFAULT_TOLERANCES
        self._reconstructor = VolumeReconstructor(self._tolerances)
        self._capacity_walker = CapacityWalker(self._reconstructor, self._tolerances)
        self._aggregator = PeriodAggregator(self._reconstructor, self._tolerances)
        self._auditor = DriftAuditor(self._reconstructor, self._capacity_walker, self._tolerances)

    @property
    def tolerances(self) -> ReconciliationTolerances:
        return self._tolerances

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot.load(self._store, self._reconstructor)

    def volume_at(self, batch_id: BatchId, instant: datetime) -> Decimal:
        snapshot = self.snapshot()
        batch = snapshot.batch(batch_id)
        return self._reconstructor.volume_at(batch, snapshot.events_for(batch_id), ensure_utc(instant))

    def reconcile(self, window: ReconciliationWindow, config: TaxClassConfig | None = None) -> ReconciliationReport:
        window.validate_bounds()

        warnings: list[str] = []
        config_defaulted = config is None
        if config is None:
            logger.warning("No tax class configuration supplied; using conservative defaults")
            warnings.append("Tax class configuration missing; hard cider preference disabled")
            config = conservative_tax_class_config()

        snapshot = self.snapshot()
        eligible = [
            batch
            for batch in sorted(snapshot.batches.values(), key=lambda b: (b.created_at, b.id))
            if self._aggregator.is_eligible(batch, window)
        ]
        classes: dict[BatchId, TaxClass] = {batch.id: classify(batch, config) for batch in eligible}

        per_batch: list[BatchContribution] = []
        audits: list[BatchAudit] = []
        by_class: dict[TaxClass, list[BatchContribution]] = defaultdict(list)
        for batch in eligible:
            contribution, audit = self._evaluate(batch, snapshot, window, classes[batch.id])
            per_batch.append(contribution)
            audits.append(audit)
            by_class[contribution.tax_class].append(contribution)

        tax_classes = [tc for tc in TaxClass if tc in by_class or tc in window.opening_balances]
        per_tax_class = [self._aggregator.roll_up(by_class.get(tc, []), window, tc) for tc in tax_classes]
        for rollup in per_tax_class:
            if rollup.opening_balance_missing:
                logger.warning("No opening balance for %s; treating it as zero", rollup.tax_class)
                warnings.append(f"Opening balance missing for {rollup.tax_class}; treated as zero")

        taxable = [c for c in per_batch if c.tax_class != TaxClass.EXEMPT]
        seeded_total = sum(
            (balance for tc, balance in window.opening_balances.items() if tc != TaxClass.EXEMPT),
            start=Decimal(0),
        )
        totals = self._aggregator.roll_up(taxable, window, opening_balance=seeded_total)

        report = ReconciliationReport(
            window=window,
            totals=totals,
            per_tax_class=per_tax_class,
            per_batch=per_batch,
            audits=audits,
            warnings=warnings,
            classification_config_defaulted=config_defaulted,
        )
        logger.info(
            "Reconciled %d batches for %s..%s: %d identity issues, %d audits needing review, variance %s",
            len(per_batch),
            window.start.isoformat(),
            window.end.isoformat(),
            totals.identity_issue_count,
            sum(1 for audit in audits if audit.needs_review),
            totals.balance.variance if totals.balance is not None else None,
        )
        return report

    def _evaluate(
        self,
        batch: Batch,
        snapshot: LedgerSnapshot,
        window: ReconciliationWindow,
        tax_class: TaxClass,
    ) -> tuple[BatchContribution, BatchAudit]:
        events = snapshot.events_for(batch.id)
        contribution = self._aggregator.contribution(batch, events, window, tax_class)
        audit = self._auditor.audit(batch, events, window.end, snapshot.vessels)
        if contribution.has_identity_issue or audit.needs_review:
            logger.debug(
                "Batch %s flagged: identity_residual=%s drift=%s",
                batch.id,
                contribution.identity_residual,
                audit.drift,
            )
        return contribution, audit
