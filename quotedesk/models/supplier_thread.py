import uuid
from datetime import datetime
from typing import Optional
from decimal import Decimal

from sqlalchemy import (
    JSON,
    String,
    Boolean,
    Numeric,
    DateTime,
    Text,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from quotedesk.database import Base
from quotedesk.services.timeutil import utcnow


class ThreadStatus:
    PENDING = "PENDING"
    SENT = "SENT"
    RESPONDED = "RESPONDED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"

    ALL = (PENDING, SENT, RESPONDED, ACCEPTED, REJECTED)
    RESPONDED_STATES = (RESPONDED, ACCEPTED)


class SupplierThread(Base):
    __tablename__ = "supplier_threads"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    quote_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("quote_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    supplier_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("suppliers.id"), nullable=False
    )
    # Opaque reference understood by the email collaborator.
    thread_ref: Mapped[Optional[str]] = mapped_column(String(255))
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ThreadStatus.PENDING, nullable=False)
    quoted_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    disputed_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    response_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    expected_response_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    # External id of the last inbound message handed to the extraction collaborator.
    extracted_message_id: Mapped[Optional[str]] = mapped_column(String(255))
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    @property
    def responded(self) -> bool:
        return self.status in ThreadStatus.RESPONDED_STATES

    __table_args__ = (
        UniqueConstraint("quote_request_id", "supplier_id", name="uq_thread_quote_supplier"),
        CheckConstraint(
            "status IN ('PENDING','SENT','RESPONDED','ACCEPTED','REJECTED')",
            name="chk_thread_status",
        ),
        Index("idx_threads_quote", "quote_request_id"),
    )


class SupplierThreadMessage(Base):
    """Append-only message log of a supplier thread."""

    __tablename__ = "supplier_thread_messages"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    thread_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("supplier_threads.id", ondelete="CASCADE"),
        nullable=False,
    )
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(Text)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attachments: Mapped[list] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), default=list
    )
    received_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("thread_id", "external_id", name="uq_thread_message_external"),
        CheckConstraint("direction IN ('INBOUND','OUTBOUND')", name="chk_message_direction"),
        Index("idx_thread_messages_thread", "thread_id", "received_at"),
    )
