"""
Quote request service: creation, item and supplier edits, sending, outbound
email dispatch and expiry.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence
import uuid

from sqlalchemy import select, delete, insert
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quotedesk.config import settings
from quotedesk.database import AsyncSessionLocal
from quotedesk.models.quote_request import (
    QuoteItem,
    QuoteRequest,
    QuoteStatus,
    quote_request_suppliers,
)
from quotedesk.models.supplier import Supplier
from quotedesk.models.supplier_thread import (
    SupplierThread,
    SupplierThreadMessage,
    ThreadStatus,
)
from quotedesk.services.audit_service import create_audit_log
from quotedesk.services.collaborators import Actor, Authorizer, EmailClient
from quotedesk.services.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationFailedError,
)
from quotedesk.services.money import to_money_or_none
from quotedesk.services.numbering import generate_quote_number
from quotedesk.services.quote_state import assert_transition, lock_quote, transition
from quotedesk.services.supplier_thread_service import append_message, list_threads
from quotedesk.services.timeutil import add_business_days, to_naive_utc, utcnow

logger = structlog.get_logger()


@dataclass
class ItemInput:
    part_number: str
    quantity: int
    description: str = ""
    unit_price: Optional[Decimal] = None
    id: Optional[uuid.UUID] = None


@dataclass
class SendResult:
    quote: QuoteRequest
    threads: list[SupplierThread]


@dataclass
class DispatchOutcome:
    supplier_id: str
    thread_id: str
    sent: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class DispatchReport:
    quote_id: str
    outcomes: list[DispatchOutcome] = field(default_factory=list)

    @property
    def sent(self) -> int:
        return sum(1 for o in self.outcomes if o.sent)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.sent)


def _validate_items(items: Sequence[ItemInput]) -> None:
    for item in items:
        if not item.part_number or not item.part_number.strip():
            raise ValidationFailedError("Every item needs a part number")
        if item.quantity is None or item.quantity <= 0:
            raise ValidationFailedError(
                f"Quantity for {item.part_number} must be greater than zero"
            )
        if item.unit_price is not None and Decimal(item.unit_price) < 0:
            raise ValidationFailedError(
                f"Unit price for {item.part_number} cannot be negative"
            )


def _dedupe(ids: Sequence) -> list[uuid.UUID]:
    seen: list[uuid.UUID] = []
    for raw in ids:
        value = raw if isinstance(raw, uuid.UUID) else uuid.UUID(str(raw))
        if value not in seen:
            seen.append(value)
    return seen


async def _load_suppliers(
    session: AsyncSession, organization_id: uuid.UUID, supplier_ids: list[uuid.UUID]
) -> list[Supplier]:
    """Suppliers in the given order; every id must belong to the organization."""
    if not supplier_ids:
        return []
    result = await session.execute(
        select(Supplier).where(
            Supplier.id.in_(supplier_ids),
            Supplier.organization_id == organization_id,
            Supplier.deleted_at == None,  # noqa: E711
        )
    )
    by_id = {s.id: s for s in result.scalars().all()}
    missing = [str(sid) for sid in supplier_ids if sid not in by_id]
    if missing:
        raise NotFoundError(f"Supplier(s) not found: {', '.join(missing)}")
    return [by_id[sid] for sid in supplier_ids]


async def _replace_suppliers(
    session: AsyncSession, quote: QuoteRequest, supplier_ids: list[uuid.UUID]
) -> None:
    await session.execute(
        delete(quote_request_suppliers).where(
            quote_request_suppliers.c.quote_request_id == quote.id
        )
    )
    quote.supplier_id = supplier_ids[0] if supplier_ids else None
    if len(supplier_ids) > 1:
        await session.execute(
            insert(quote_request_suppliers),
            [
                {"quote_request_id": quote.id, "supplier_id": sid}
                for sid in supplier_ids[1:]
            ],
        )
    await session.flush()


async def get_quote_request(
    session: AsyncSession, organization_id: uuid.UUID, quote_id
) -> QuoteRequest:
    result = await session.execute(
        select(QuoteRequest).where(
            QuoteRequest.id == quote_id,
            QuoteRequest.organization_id == organization_id,
        )
    )
    quote = result.scalar_one_or_none()
    if not quote:
        raise NotFoundError("Quote request not found")
    return quote


async def get_quote_items(session: AsyncSession, quote_id) -> list[QuoteItem]:
    result = await session.execute(
        select(QuoteItem)
        .where(QuoteItem.quote_request_id == quote_id)
        .order_by(QuoteItem.line_number)
    )
    return list(result.scalars().all())


async def get_quote_supplier_ids(
    session: AsyncSession, quote: QuoteRequest
) -> list[uuid.UUID]:
    """Primary supplier first, then the additional ones."""
    result = await session.execute(
        select(quote_request_suppliers.c.supplier_id).where(
            quote_request_suppliers.c.quote_request_id == quote.id
        )
    )
    ids = [quote.supplier_id] if quote.supplier_id else []
    ids.extend(sid for sid in result.scalars().all() if sid not in ids)
    return ids


async def create_quote_request(
    session: AsyncSession,
    actor: Actor,
    authorizer: Authorizer,
    title: str,
    items: Sequence[ItemInput],
    supplier_ids: Sequence = (),
    vehicle_id: Optional[uuid.UUID] = None,
    expiry_date: Optional[datetime] = None,
    description: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> QuoteRequest:
    """Create a DRAFT quote request with its items and supplier selection."""
    now = now or utcnow()
    if not title or not title.strip():
        raise ValidationFailedError("Title is required")
    _validate_items(items)
    ordered_ids = _dedupe(supplier_ids)
    await _load_suppliers(session, actor.organization_id, ordered_ids)

    quote = QuoteRequest(
        organization_id=actor.organization_id,
        quote_number=await generate_quote_number(session, actor.organization_id, now),
        title=title.strip(),
        description=description,
        notes=notes,
        status=QuoteStatus.DRAFT,
        created_by_id=actor.user_id,
        vehicle_id=vehicle_id,
        requires_approval=not authorizer.has_approval_authority(actor),
        request_date=now,
        expiry_date=(
            to_naive_utc(expiry_date)
            if expiry_date
            else now + timedelta(days=settings.DEFAULT_QUOTE_VALIDITY_DAYS)
        ),
        created_at=now,
        updated_at=now,
    )
    session.add(quote)
    await session.flush()

    for idx, item in enumerate(items, start=1):
        session.add(QuoteItem(
            quote_request_id=quote.id,
            line_number=idx,
            part_number=item.part_number.strip(),
            description=item.description or "",
            quantity=item.quantity,
            unit_price=to_money_or_none(item.unit_price),
        ))
    await _replace_suppliers(session, quote, ordered_ids)

    await create_audit_log(
        session,
        organization_id=quote.organization_id,
        actor_id=actor.user_id,
        actor_email=actor.email,
        action="QUOTE_REQUEST_CREATED",
        entity_type="QUOTE_REQUEST",
        entity_id=quote.id,
        after_state={
            "quote_number": quote.quote_number,
            "status": quote.status,
            "items": len(items),
            "suppliers": len(ordered_ids),
        },
    )
    logger.info(
        "quote_request_created",
        quote_id=str(quote.id),
        quote_number=quote.quote_number,
        items=len(items),
        suppliers=len(ordered_ids),
    )
    return quote


async def set_suppliers(
    session: AsyncSession, actor: Actor, quote_id, supplier_ids: Sequence
) -> QuoteRequest:
    """Replace the supplier selection; only while DRAFT."""
    quote = await lock_quote(session, quote_id, actor.organization_id)
    if quote.status != QuoteStatus.DRAFT:
        raise InvalidStateError(
            f"Suppliers can only be changed while DRAFT (quote is {quote.status})"
        )
    ordered_ids = _dedupe(supplier_ids)
    await _load_suppliers(session, actor.organization_id, ordered_ids)
    before = {"suppliers": [str(s) for s in await get_quote_supplier_ids(session, quote)]}
    await _replace_suppliers(session, quote, ordered_ids)

    await create_audit_log(
        session,
        organization_id=quote.organization_id,
        actor_id=actor.user_id,
        actor_email=actor.email,
        action="QUOTE_SUPPLIERS_UPDATED",
        entity_type="QUOTE_REQUEST",
        entity_id=quote.id,
        before_state=before,
        after_state={"suppliers": [str(s) for s in ordered_ids]},
    )
    return quote


async def update_items(
    session: AsyncSession,
    actor: Actor,
    authorizer: Authorizer,
    quote_id,
    upserts: Sequence[ItemInput] = (),
    removed_ids: Sequence = (),
) -> list[QuoteItem]:
    """
    Add, change or remove quote items.

    Allowed in DRAFT, and in UNDER_REVIEW only for actors with approval
    authority; the authorizer decides.
    """
    quote = await lock_quote(session, quote_id, actor.organization_id)
    if quote.status not in (QuoteStatus.DRAFT, QuoteStatus.UNDER_REVIEW):
        raise InvalidStateError(f"Items cannot be edited while quote is {quote.status}")
    if not authorizer.can_edit_quote_items(actor, quote):
        raise PermissionDeniedError(
            f"You are not allowed to edit items while quote is {quote.status}"
        )
    _validate_items(upserts)

    items = await get_quote_items(session, quote.id)
    by_id = {item.id: item for item in items}
    removed = set(_dedupe(removed_ids))
    unknown = [str(i) for i in removed if i not in by_id]
    unknown += [str(u.id) for u in upserts if u.id is not None and u.id not in by_id]
    if unknown:
        raise NotFoundError(f"Quote item(s) not found: {', '.join(unknown)}")

    for item_id in removed:
        await session.delete(by_id[item_id])

    next_line = max((i.line_number for i in items), default=0) + 1
    for change in upserts:
        if change.id is not None:
            item = by_id[change.id]
            item.part_number = change.part_number.strip()
            item.description = change.description or ""
            item.quantity = change.quantity
            item.unit_price = to_money_or_none(change.unit_price)
        else:
            session.add(QuoteItem(
                quote_request_id=quote.id,
                line_number=next_line,
                part_number=change.part_number.strip(),
                description=change.description or "",
                quantity=change.quantity,
                unit_price=to_money_or_none(change.unit_price),
            ))
            next_line += 1
    await session.flush()

    await create_audit_log(
        session,
        organization_id=quote.organization_id,
        actor_id=actor.user_id,
        actor_email=actor.email,
        action="QUOTE_ITEMS_UPDATED",
        entity_type="QUOTE_REQUEST",
        entity_id=quote.id,
        after_state={
            "upserted": len(upserts),
            "removed": [str(i) for i in removed],
        },
    )
    return await get_quote_items(session, quote.id)


async def send_quote_request(
    session: AsyncSession,
    actor: Actor,
    quote_id,
    now: Optional[datetime] = None,
) -> SendResult:
    """
    DRAFT -> SENT. Creates one SENT thread per selected supplier.

    Validation happens before any thread is created, and the threads and the
    status change share the caller's transaction, so a failure leaves no
    partial fan-out.
    """
    now = now or utcnow()
    quote = await lock_quote(session, quote_id, actor.organization_id)
    assert_transition(quote, QuoteStatus.SENT, now)

    supplier_ids = await get_quote_supplier_ids(session, quote)
    if not supplier_ids:
        raise InvalidStateError("Select at least one supplier before sending")
    items = await get_quote_items(session, quote.id)
    if not items:
        raise InvalidStateError("Add at least one item before sending")

    expected = add_business_days(now, settings.QUOTE_RESPONSE_BUSINESS_DAYS)
    threads = []
    for supplier_id in supplier_ids:
        thread = SupplierThread(
            quote_request_id=quote.id,
            supplier_id=supplier_id,
            thread_ref=f"{quote.quote_number}/{supplier_id}",
            is_primary=supplier_id == quote.supplier_id,
            status=ThreadStatus.SENT,
            expected_response_date=expected,
            created_at=now,
            updated_at=now,
        )
        session.add(thread)
        threads.append(thread)
    await session.flush()

    await transition(
        session, quote, QuoteStatus.SENT, actor, action="QUOTE_SENT", now=now
    )
    logger.info(
        "quote_sent",
        quote_id=str(quote.id),
        quote_number=quote.quote_number,
        suppliers=len(threads),
        expected_response_date=expected.isoformat(),
    )
    return SendResult(quote=quote, threads=threads)


def build_request_email(quote: QuoteRequest, items: Sequence[QuoteItem], supplier: Supplier):
    subject = f"Quote Request {quote.quote_number}: {quote.title}"
    lines = [f"Hello {supplier.contact_person or supplier.name},", ""]
    lines.append("Please provide pricing and availability for the following parts:")
    lines.append("")
    for item in items:
        detail = f" ({item.description})" if item.description else ""
        lines.append(f"  {item.line_number}. {item.part_number}{detail} x {item.quantity}")
    if quote.notes:
        lines.extend(["", quote.notes])
    if quote.expiry_date:
        lines.extend(["", f"This request is valid until {quote.expiry_date.date().isoformat()}."])
    lines.extend(["", f"Reference: {quote.quote_number}"])
    return subject, "\n".join(lines)


async def dispatch_quote_emails(
    session: AsyncSession,
    quote_id,
    email_client: EmailClient,
    timeout: Optional[float] = None,
) -> DispatchReport:
    """
    Send the request email on every SENT thread that has no outbound message yet.

    Runs after the send transaction. All email I/O happens before anything is
    written; each outbound message is then appended to its thread.
    """
    timeout = timeout or settings.COLLABORATOR_TIMEOUT_SECONDS
    quote = (
        await session.execute(select(QuoteRequest).where(QuoteRequest.id == quote_id))
    ).scalar_one_or_none()
    if not quote:
        raise NotFoundError("Quote request not found")
    report = DispatchReport(quote_id=str(quote.id))

    threads = [t for t in await list_threads(session, quote.id) if t.status == ThreadStatus.SENT]
    if threads:
        already_sent = await session.execute(
            select(SupplierThreadMessage.thread_id).where(
                SupplierThreadMessage.thread_id.in_([t.id for t in threads]),
                SupplierThreadMessage.direction == "OUTBOUND",
            )
        )
        done = set(already_sent.scalars().all())
        threads = [t for t in threads if t.id not in done]
    if not threads:
        return report
    items = await get_quote_items(session, quote.id)
    supplier_result = await session.execute(
        select(Supplier).where(Supplier.id.in_([t.supplier_id for t in threads]))
    )
    suppliers = {s.id: s for s in supplier_result.scalars().all()}

    async def _send(thread: SupplierThread) -> DispatchOutcome:
        outcome = DispatchOutcome(
            supplier_id=str(thread.supplier_id), thread_id=str(thread.id), sent=False
        )
        supplier = suppliers.get(thread.supplier_id)
        if supplier is None or not supplier.email:
            outcome.error = "Supplier has no email address"
            return outcome
        subject, body = build_request_email(quote, items, supplier)
        try:
            outcome.message_id = await asyncio.wait_for(
                email_client.send(thread.thread_ref, subject, body, to=supplier.email),
                timeout=timeout,
            )
            outcome.sent = True
        except asyncio.TimeoutError:
            outcome.error = f"Email send timed out after {timeout}s"
        except Exception as e:
            outcome.error = str(e)
        return outcome

    report.outcomes = list(await asyncio.gather(*(_send(t) for t in threads)))

    by_thread = {str(t.id): t for t in threads}
    for outcome in report.outcomes:
        thread = by_thread[outcome.thread_id]
        if not outcome.sent:
            logger.error(
                "quote_email_dispatch_failed",
                quote_id=str(quote.id),
                supplier_id=outcome.supplier_id,
                error=outcome.error,
            )
            continue
        subject, body = build_request_email(quote, items, suppliers[thread.supplier_id])
        await append_message(
            session,
            thread,
            external_id=outcome.message_id or f"outbound-{thread.id}",
            direction="OUTBOUND",
            subject=subject,
            body=body,
        )

    logger.info(
        "quote_emails_dispatched",
        quote_id=str(quote.id),
        sent=report.sent,
        failed=report.failed,
    )
    return report


async def run_quote_email_dispatch(quote_id, email_client: EmailClient) -> DispatchReport:
    """Background-task entry point: dispatch in a fresh session and commit."""
    async with AsyncSessionLocal() as session:
        try:
            report = await dispatch_quote_emails(session, quote_id, email_client)
            await session.commit()
            return report
        except Exception:
            await session.rollback()
            logger.exception("quote_email_dispatch_crashed", quote_id=str(quote_id))
            raise


async def expire_quote_requests(
    session: AsyncSession, now: Optional[datetime] = None
) -> list[QuoteRequest]:
    """Move every non-terminal quote whose expiry date has passed to EXPIRED."""
    now = now or utcnow()
    result = await session.execute(
        select(QuoteRequest)
        .where(
            QuoteRequest.status.notin_(QuoteStatus.TERMINAL),
            QuoteRequest.expiry_date != None,  # noqa: E711
            QuoteRequest.expiry_date <= now,
        )
        .order_by(QuoteRequest.expiry_date)
        .with_for_update(skip_locked=True)
    )
    expired = []
    for quote in result.scalars().all():
        await transition(
            session, quote, QuoteStatus.EXPIRED, None, action="QUOTE_EXPIRED", now=now
        )
        expired.append(quote)
    if expired:
        logger.info("quotes_expired", count=len(expired))
    return expired
