from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Collection, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from db import models
from domain.batch import (
    Batch,
    BatchId,
    BatchStatus,
    CarbonationMeasurement,
    CarbonationMethod,
    ProductType,
    Vessel,
    VesselId,
    ensure_utc,
)
from domain.events import VOLUME_EVENT_ADAPTER, EventKind, VolumeEvent
from domain.ledger_store import LedgerStore
from domain.tax_class import TaxClass

_EVENT_COLUMNS = {"id", "batch_id", "kind", "timestamp"}


class VesselRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_many(self, vessels: Iterable[Vessel]) -> list[Vessel]:
        orm_vessels = [models.VesselOrm(id=v.id, name=v.name, capacity=v.capacity) for v in vessels]
        self._session.add_all(orm_vessels)
        self._session.commit()
        return [self._to_domain(orm_vessel) for orm_vessel in orm_vessels]

    def list(self) -> list[Vessel]:
        orm_vessels = self._session.query(models.VesselOrm).order_by(models.VesselOrm.id.asc()).all()
        return [self._to_domain(orm_vessel) for orm_vessel in orm_vessels]

    @staticmethod
    def _to_domain(orm_vessel: models.VesselOrm) -> Vessel:
        return Vessel(id=VesselId(orm_vessel.id), name=orm_vessel.name, capacity=orm_vessel.capacity)


class BatchRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, batch: Batch) -> Batch:
        orm_batch = self._to_orm(batch)
        self._session.add(orm_batch)
        self._session.commit()
        self._session.refresh(orm_batch)
        return self._to_domain(orm_batch)

    def create_many(self, batches: Iterable[Batch]) -> list[Batch]:
        orm_batches = [self._to_orm(batch) for batch in batches]
        self._session.add_all(orm_batches)
        self._session.commit()
        return [self._to_domain(orm_batch) for orm_batch in orm_batches]

    def get(self, batch_id: BatchId) -> Batch | None:
        orm_batch = self._session.get(models.BatchOrm, batch_id)
        if orm_batch is None:
            return None
        return self._to_domain(orm_batch)

    def list(self) -> list[Batch]:
        orm_batches = (
            self._session.query(models.BatchOrm)
            .order_by(models.BatchOrm.created_at.asc(), models.BatchOrm.id.asc())
            .all()
        )
        return [self._to_domain(orm_batch) for orm_batch in orm_batches]

    @staticmethod
    def _to_orm(batch: Batch) -> models.BatchOrm:
        carbonation = batch.carbonation
        return models.BatchOrm(
            id=batch.id,
            created_at=batch.created_at,
            initial_volume=batch.initial_volume,
            parent_batch_id=batch.parent_batch_id,
            current_volume=batch.current_volume,
            vessel_id=batch.vessel_id,
            product_type=batch.product_type.value,
            abv=batch.abv,
            estimated_abv=batch.estimated_abv,
            fruit_source=batch.fruit_source,
            carbonation_measured_at=carbonation.measured_at if carbonation is not None else None,
            carbonation_co2_volumes=carbonation.co2_volumes if carbonation is not None else None,
            carbonation_method=carbonation.method.value if carbonation is not None else None,
            status=batch.status.value,
            verified=batch.verified,
        )

    @staticmethod
    def _to_domain(orm_batch: models.BatchOrm) -> Batch:
        carbonation = None
        if orm_batch.carbonation_measured_at is not None and orm_batch.carbonation_co2_volumes is not None:
            carbonation = CarbonationMeasurement(
                measured_at=ensure_utc(orm_batch.carbonation_measured_at),
                co2_volumes=orm_batch.carbonation_co2_volumes,
                method=CarbonationMethod(orm_batch.carbonation_method or CarbonationMethod.NONE),
            )
        return Batch(
            id=BatchId(orm_batch.id),
            created_at=ensure_utc(orm_batch.created_at),
            initial_volume=orm_batch.initial_volume,
            parent_batch_id=BatchId(orm_batch.parent_batch_id) if orm_batch.parent_batch_id else None,
            current_volume=orm_batch.current_volume,
            vessel_id=VesselId(orm_batch.vessel_id) if orm_batch.vessel_id else None,
            product_type=ProductType(orm_batch.product_type),
            abv=orm_batch.abv,
            estimated_abv=orm_batch.estimated_abv,
            fruit_source=orm_batch.fruit_source,
            carbonation=carbonation,
            status=BatchStatus(orm_batch.status),
            verified=orm_batch.verified,
        )


class VolumeEventRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, event: VolumeEvent) -> VolumeEvent:
        orm_event = self._to_orm(event)
        self._session.add(orm_event)
        self._session.commit()
        self._session.refresh(orm_event)
        return self._to_domain(orm_event)

    def create_many(self, events: Iterable[VolumeEvent]) -> list[VolumeEvent]:
        orm_events = [self._to_orm(event) for event in events]
        self._session.add_all(orm_events)
        self._session.commit()
        return [self._to_domain(orm_event) for orm_event in orm_events]

    def list_by_kind(self, kind: EventKind, batch_ids: Collection[BatchId]) -> list[VolumeEvent]:
        """Bulk read of one event kind for a batch set. No date filter is applied."""
        if not batch_ids:
            return []
        stmt = (
            select(models.VolumeEventOrm)
            .where(models.VolumeEventOrm.kind == kind.value)
            .where(models.VolumeEventOrm.batch_id.in_(list(batch_ids)))
        )
        return [self._to_domain(orm_event) for orm_event in self._session.scalars(stmt)]

    @staticmethod
    def _to_orm(event: VolumeEvent) -> models.VolumeEventOrm:
        return models.VolumeEventOrm(
            id=event.id,
            batch_id=event.batch_id,
            kind=event.kind,
            timestamp=event.timestamp.isoformat() if event.timestamp is not None else None,
            payload=event.model_dump(mode="json", exclude=_EVENT_COLUMNS),
        )

    @staticmethod
    def _to_domain(orm_event: models.VolumeEventOrm) -> VolumeEvent:
        return VOLUME_EVENT_ADAPTER.validate_python(
            {
                **orm_event.payload,
                "id": orm_event.id,
                "batch_id": orm_event.batch_id,
                "kind": orm_event.kind,
                "timestamp": orm_event.timestamp,
            }
        )


class OpeningBalanceRepository:
    """Finalized period endings per tax class, used to seed reconciliation windows."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def record(self, tax_class: TaxClass, period_end: datetime, volume: Decimal, *, finalized: bool = True) -> None:
        self._session.add(
            models.OpeningBalanceOrm(
                tax_class=tax_class.value,
                period_end=period_end,
                volume=volume,
                finalized=finalized,
            )
        )
        self._session.commit()

    def opening_balances(self, as_of: datetime) -> dict[TaxClass, Decimal]:
        as_of = ensure_utc(as_of)
        rows = self._session.scalars(
            select(models.OpeningBalanceOrm).where(models.OpeningBalanceOrm.finalized.is_(True))
        ).all()

        latest: dict[TaxClass, tuple[datetime, Decimal]] = {}
        for row in rows:
            period_end = ensure_utc(row.period_end)
            if period_end > as_of:
                continue
            tax_class = TaxClass(row.tax_class)
            current = latest.get(tax_class)
            if current is None or period_end >= current[0]:
                latest[tax_class] = (period_end, row.volume)
        return {tax_class: volume for tax_class, (_, volume) in latest.items()}


class SqlLedgerStore(LedgerStore):
    def __init__(self, session: Session) -> None:
        self._batches = BatchRepository(session)
        self._vessels = VesselRepository(session)
        self._events = VolumeEventRepository(session)

    def list_batches(self) -> list[Batch]:
        return self._batches.list()

    def list_vessels(self) -> list[Vessel]:
        return self._vessels.list()

    def events_of_kind(self, kind: EventKind, batch_ids: Collection[BatchId]) -> list[VolumeEvent]:
        return self._events.list_by_kind(kind, batch_ids)
