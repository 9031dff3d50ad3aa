"""
Supplier thread tracker: one thread per (quote, supplier), an append-only
message log, and the commercial state inferred from it.

A thread "responded" when its status is RESPONDED or ACCEPTED; that is never
stored separately.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quotedesk.models.quote_request import QuoteRequest, QuoteStatus
from quotedesk.models.supplier import Supplier
from quotedesk.models.supplier_thread import (
    SupplierThread,
    SupplierThreadMessage,
    ThreadStatus,
)
from quotedesk.services.audit_service import create_audit_log, snapshot
from quotedesk.services.collaborators import Actor, Attachment, Authorizer
from quotedesk.services.errors import (
    InvalidStateError,
    MissingSelectionError,
    NotFoundError,
    PermissionDeniedError,
)
from quotedesk.services.quote_state import is_terminal, lock_quote
from quotedesk.services.timeutil import utcnow

logger = structlog.get_logger()

THREAD_AUDIT_FIELDS = ("status", "quoted_amount", "disputed_amount", "response_date")


@dataclass
class ThreadSummary:
    thread_id: str
    supplier_id: str
    supplier_name: Optional[str]
    status: str
    responded: bool
    quoted_amount: Optional[Decimal]
    disputed_amount: Optional[Decimal]
    response_date: Optional[datetime]
    expected_response_date: Optional[datetime]
    is_primary: bool


@dataclass
class QuoteComparison:
    quote_id: str
    status: str
    threads: list[ThreadSummary] = field(default_factory=list)
    best_supplier_id: Optional[str] = None
    best_amount: Optional[Decimal] = None
    selected_supplier_id: Optional[str] = None


# --- pure helpers ---------------------------------------------------------


def is_responded(thread: SupplierThread) -> bool:
    return thread.status in ThreadStatus.RESPONDED_STATES


def pick_best_price(threads: Iterable[SupplierThread]) -> Optional[SupplierThread]:
    """
    Lowest quoted amount wins. Ties go to the earliest response, then the
    primary supplier, then the lowest supplier id.
    """
    priced = [t for t in threads if t.quoted_amount is not None]
    if not priced:
        return None
    return min(
        priced,
        key=lambda t: (
            Decimal(t.quoted_amount),
            t.response_date or datetime.max,
            not t.is_primary,
            str(t.supplier_id),
        ),
    )


def validate_selection(
    threads: Sequence[SupplierThread], supplier_id
) -> SupplierThread:
    """The thread for supplier_id, provided it responded with a price."""
    if supplier_id is None:
        raise MissingSelectionError("No supplier has been selected for this quote")
    for thread in threads:
        if str(thread.supplier_id) == str(supplier_id):
            if not is_responded(thread) or thread.quoted_amount is None:
                raise MissingSelectionError(
                    "Selected supplier has not responded with a quoted amount"
                )
            return thread
    raise MissingSelectionError("Selected supplier is not part of this quote")


def attachments_from_json(raw: Optional[list]) -> list[Attachment]:
    return [
        Attachment(
            filename=a.get("filename", ""),
            content_type=a.get("content_type", "application/octet-stream"),
            url=a.get("url"),
        )
        for a in (raw or [])
    ]


# --- queries --------------------------------------------------------------


async def list_threads(session: AsyncSession, quote_id) -> list[SupplierThread]:
    result = await session.execute(
        select(SupplierThread)
        .where(SupplierThread.quote_request_id == quote_id)
        .order_by(SupplierThread.is_primary.desc(), SupplierThread.created_at)
    )
    return list(result.scalars().all())


async def get_thread(
    session: AsyncSession,
    organization_id: uuid.UUID,
    thread_id,
    lock: bool = False,
) -> SupplierThread:
    stmt = (
        select(SupplierThread)
        .join(QuoteRequest, QuoteRequest.id == SupplierThread.quote_request_id)
        .where(
            SupplierThread.id == thread_id,
            QuoteRequest.organization_id == organization_id,
        )
    )
    if lock:
        stmt = stmt.with_for_update(of=SupplierThread)
    result = await session.execute(stmt)
    thread = result.scalar_one_or_none()
    if not thread:
        raise NotFoundError("Supplier thread not found")
    return thread


async def latest_inbound_message(
    session: AsyncSession, thread_id
) -> Optional[SupplierThreadMessage]:
    result = await session.execute(
        select(SupplierThreadMessage)
        .where(
            SupplierThreadMessage.thread_id == thread_id,
            SupplierThreadMessage.direction == "INBOUND",
        )
        .order_by(SupplierThreadMessage.received_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def append_message(
    session: AsyncSession,
    thread: SupplierThread,
    external_id: str,
    direction: str,
    body: str,
    subject: Optional[str] = None,
    attachments: Optional[list[Attachment]] = None,
    received_at: Optional[datetime] = None,
) -> Optional[SupplierThreadMessage]:
    """
    Append a message to the thread log.

    Returns None when a message with the same external id is already stored;
    stored messages are never rewritten.
    """
    existing = await session.execute(
        select(SupplierThreadMessage.id).where(
            SupplierThreadMessage.thread_id == thread.id,
            SupplierThreadMessage.external_id == external_id,
        )
    )
    if existing.scalar_one_or_none() is not None:
        return None

    message = SupplierThreadMessage(
        thread_id=thread.id,
        external_id=external_id,
        direction=direction,
        subject=subject,
        body=body or "",
        attachments=[
            {"filename": a.filename, "content_type": a.content_type, "url": a.url}
            for a in (attachments or [])
        ],
        received_at=received_at or utcnow(),
    )
    session.add(message)
    await session.flush()
    return message


async def refresh_quote_total(session: AsyncSession, quote: QuoteRequest) -> Optional[Decimal]:
    """Set the quote's total to the current best price (or the selected supplier's)."""
    threads = await list_threads(session, quote.id)
    chosen = None
    if quote.selected_supplier_id is not None:
        chosen = next(
            (
                t for t in threads
                if t.supplier_id == quote.selected_supplier_id and t.quoted_amount is not None
            ),
            None,
        )
    if chosen is None:
        chosen = pick_best_price(threads)
    quote.total_amount = chosen.quoted_amount if chosen else None
    await session.flush()
    return quote.total_amount


async def build_comparison(
    session: AsyncSession, organization_id: uuid.UUID, quote_id
) -> QuoteComparison:
    result = await session.execute(
        select(QuoteRequest).where(
            QuoteRequest.id == quote_id,
            QuoteRequest.organization_id == organization_id,
        )
    )
    quote = result.scalar_one_or_none()
    if not quote:
        raise NotFoundError("Quote request not found")

    threads = await list_threads(session, quote.id)
    names: dict = {}
    if threads:
        supplier_result = await session.execute(
            select(Supplier.id, Supplier.name).where(
                Supplier.id.in_([t.supplier_id for t in threads])
            )
        )
        names = {row.id: row.name for row in supplier_result}

    best = pick_best_price(threads)
    return QuoteComparison(
        quote_id=str(quote.id),
        status=quote.status,
        threads=[
            ThreadSummary(
                thread_id=str(t.id),
                supplier_id=str(t.supplier_id),
                supplier_name=names.get(t.supplier_id),
                status=t.status,
                responded=is_responded(t),
                quoted_amount=t.quoted_amount,
                disputed_amount=t.disputed_amount,
                response_date=t.response_date,
                expected_response_date=t.expected_response_date,
                is_primary=t.is_primary,
            )
            for t in threads
        ],
        best_supplier_id=str(best.supplier_id) if best else None,
        best_amount=best.quoted_amount if best else None,
        selected_supplier_id=(
            str(quote.selected_supplier_id) if quote.selected_supplier_id else None
        ),
    )


# --- commands -------------------------------------------------------------


async def select_supplier(
    session: AsyncSession, actor: Actor, quote_id, supplier_id
) -> QuoteRequest:
    """Choose which responded supplier the quote will be converted with."""
    quote = await lock_quote(session, quote_id, actor.organization_id)
    if quote.status == QuoteStatus.DRAFT or is_terminal(quote.status):
        raise InvalidStateError(
            f"Cannot select a supplier while quote is {quote.status}"
        )

    threads = await list_threads(session, quote.id)
    thread = validate_selection(threads, supplier_id)

    before = snapshot(quote, ("selected_supplier_id", "total_amount"))
    quote.selected_supplier_id = thread.supplier_id
    quote.total_amount = thread.quoted_amount
    await session.flush()

    await create_audit_log(
        session,
        organization_id=quote.organization_id,
        actor_id=actor.user_id,
        actor_email=actor.email,
        action="QUOTE_SUPPLIER_SELECTED",
        entity_type="QUOTE_REQUEST",
        entity_id=quote.id,
        before_state=before,
        after_state=snapshot(quote, ("selected_supplier_id", "total_amount")),
    )
    logger.info(
        "quote_supplier_selected",
        quote_id=str(quote.id),
        supplier_id=str(thread.supplier_id),
        amount=str(thread.quoted_amount),
    )
    return quote


async def select_best_supplier(
    session: AsyncSession, actor: Actor, quote_id
) -> QuoteRequest:
    threads = await list_threads(session, quote_id)
    best = pick_best_price([t for t in threads if is_responded(t)])
    if best is None:
        raise MissingSelectionError("No supplier has responded with a price yet")
    return await select_supplier(session, actor, quote_id, best.supplier_id)


async def resolve_price_conflict(
    session: AsyncSession,
    actor: Actor,
    thread_id,
    accept: bool,
    authorizer: Authorizer,
) -> SupplierThread:
    """Promote (accept=True) or discard a disputed amount left by price extraction."""
    if not authorizer.has_approval_authority(actor):
        raise PermissionDeniedError("Only approvers can resolve price conflicts")

    thread = await get_thread(session, actor.organization_id, thread_id)
    quote = await lock_quote(session, thread.quote_request_id, actor.organization_id)
    thread = await get_thread(session, actor.organization_id, thread_id, lock=True)

    if thread.disputed_amount is None:
        raise InvalidStateError("Thread has no disputed amount to resolve")
    if is_terminal(quote.status):
        raise InvalidStateError(f"Cannot change prices while quote is {quote.status}")

    before = snapshot(thread, THREAD_AUDIT_FIELDS)
    if accept:
        thread.quoted_amount = thread.disputed_amount
        thread.response_date = utcnow()
    thread.disputed_amount = None
    await session.flush()

    await refresh_quote_total(session, quote)

    await create_audit_log(
        session,
        organization_id=quote.organization_id,
        actor_id=actor.user_id,
        actor_email=actor.email,
        action="PRICE_CONFLICT_ACCEPTED" if accept else "PRICE_CONFLICT_DISCARDED",
        entity_type="SUPPLIER_THREAD",
        entity_id=thread.id,
        before_state=before,
        after_state=snapshot(thread, THREAD_AUDIT_FIELDS),
    )
    logger.info(
        "price_conflict_resolved",
        thread_id=str(thread.id),
        accepted=accept,
        quoted_amount=str(thread.quoted_amount),
    )
    return thread


async def close_threads_for_conversion(
    session: AsyncSession, quote_id, selected_supplier_id
) -> None:
    """Selected thread becomes ACCEPTED; every other open thread becomes REJECTED."""
    for thread in await list_threads(session, quote_id):
        if thread.supplier_id == selected_supplier_id:
            thread.status = ThreadStatus.ACCEPTED
        elif thread.status in (ThreadStatus.PENDING, ThreadStatus.SENT, ThreadStatus.RESPONDED):
            thread.status = ThreadStatus.REJECTED
    await session.flush()
