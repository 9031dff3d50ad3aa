import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    Numeric,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from quotedesk.database import Base
from quotedesk.services.timeutil import utcnow


class CostSavingsRecord(Base):
    """Monthly per-organization rollup. savings_percent and avg_order_value are derived."""

    __tablename__ = "cost_savings_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    total_savings: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    manual_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    platform_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    orders_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    savings_percent: Mapped[Decimal] = mapped_column(Numeric(9, 4), default=Decimal("0"), nullable=False)
    avg_order_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "month", "year", name="uq_cost_savings_org_period"),
        CheckConstraint("month BETWEEN 1 AND 12", name="chk_cost_savings_month"),
        Index("idx_cost_savings_period", "year", "month"),
    )


class CostSavingsEntry(Base):
    """
    Ledger of per-order outcomes; one row per finalized order.

    NOT_APPLICABLE rows carry zero amounts and never count towards a record.
    """

    __tablename__ = "cost_savings_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id"), unique=True, nullable=False
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    manual_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    platform_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_savings: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    strategy: Mapped[str] = mapped_column(String(30), nullable=False)
    outcome: Mapped[str] = mapped_column(String(20), default="RECORDED", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("outcome IN ('RECORDED','NOT_APPLICABLE')", name="chk_cost_entry_outcome"),
        Index("idx_cost_entries_period", "organization_id", "year", "month"),
    )
