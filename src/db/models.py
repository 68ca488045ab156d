from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


class DecimalAsString(TypeDecorator):
    impl = String
    cache_ok = True

    def process_bind_param(self, value: Decimal | None, dialect: object) -> str | None:
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value: str | None, dialect: object) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value)


class Base(DeclarativeBase):
    pass


class VesselOrm(Base):
    __tablename__ = "vessels"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    capacity: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)


class BatchOrm(Base):
    __tablename__ = "batches"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    initial_volume: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    parent_batch_id: Mapped[str | None] = mapped_column(String, ForeignKey("batches.id"), nullable=True)
    current_volume: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    vessel_id: Mapped[str | None] = mapped_column(String, ForeignKey("vessels.id"), nullable=True)
    product_type: Mapped[str] = mapped_column(String, nullable=False)
    abv: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)
    estimated_abv: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)
    fruit_source: Mapped[str | None] = mapped_column(String, nullable=True)
    carbonation_measured_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    carbonation_co2_volumes: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)
    carbonation_method: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    events: Mapped[list["VolumeEventOrm"]] = relationship(back_populates="batch", cascade="all, delete-orphan")


class VolumeEventOrm(Base):
    """One ledger record. Kind-specific fields live in ``payload``."""

    __tablename__ = "volume_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    batch_id: Mapped[str] = mapped_column(String, ForeignKey("batches.id"), nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    # Kept as text so malformed source timestamps survive the round trip.
    timestamp: Mapped[str | None] = mapped_column(String, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    batch: Mapped[BatchOrm] = relationship(back_populates="events")

    __table_args__ = (Index("ix_volume_events_kind_batch", "kind", "batch_id"),)


class OpeningBalanceOrm(Base):
    __tablename__ = "opening_balances"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tax_class: Mapped[str] = mapped_column(String, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    volume: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    finalized: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("ix_opening_balances_class_end", "tax_class", "period_end"),)
