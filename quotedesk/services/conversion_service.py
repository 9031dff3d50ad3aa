"""
Order conversion: turn an approved (or received) quote into exactly one Order.

Line pricing:
  - if every quote item carries a unit price and the extended prices add up
    to the supplier's quoted amount, those prices are used as-is;
  - otherwise the quoted amount is split evenly per unit across all items,
    in whole cents by largest remainder (see money.split_evenly_per_unit).

Order, items, thread outcomes and the quote status change are written in the
caller's transaction; any failure leaves nothing behind.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quotedesk.models.order import Order, OrderItem, OrderStatus
from quotedesk.models.quote_request import QuoteItem, QuoteStatus
from quotedesk.services.audit_service import create_audit_log
from quotedesk.services.collaborators import Actor, Authorizer, PartCatalog
from quotedesk.services.errors import (
    AlreadyConvertedError,
    InvalidStateError,
    PermissionDeniedError,
)
from quotedesk.services.money import split_evenly_per_unit, to_money
from quotedesk.services.numbering import generate_order_number
from quotedesk.services.part_catalog import SqlPartCatalog
from quotedesk.services.quote_service import get_quote_items
from quotedesk.services.quote_state import assert_transition, lock_quote, transition
from quotedesk.services.supplier_thread_service import (
    close_threads_for_conversion,
    list_threads,
    validate_selection,
)
from quotedesk.services.timeutil import utcnow

logger = structlog.get_logger()


@dataclass
class LinePrice:
    unit_price: Decimal
    total_price: Decimal


@dataclass
class ConversionResult:
    order: Order
    items: list[OrderItem]
    pricing: str


def price_lines(items: Sequence[QuoteItem], quoted_amount: Decimal) -> tuple[list[LinePrice], str]:
    """Per-line prices for an order, plus which rule produced them ("itemized" or "even_split")."""
    quoted_amount = to_money(quoted_amount)
    if items and all(i.unit_price is not None for i in items):
        extended = [to_money(Decimal(i.unit_price) * i.quantity) for i in items]
        if sum(extended, Decimal("0")) == quoted_amount:
            return [
                LinePrice(unit_price=to_money(i.unit_price), total_price=total)
                for i, total in zip(items, extended)
            ], "itemized"

    totals = split_evenly_per_unit(quoted_amount, [i.quantity for i in items])
    return [
        LinePrice(unit_price=to_money(total / i.quantity), total_price=total)
        for i, total in zip(items, totals)
    ], "even_split"


async def convert_quote_to_order(
    session: AsyncSession,
    actor: Actor,
    authorizer: Authorizer,
    quote_id,
    part_catalog: Optional[PartCatalog] = None,
    now: Optional[datetime] = None,
) -> ConversionResult:
    now = now or utcnow()
    quote = await lock_quote(session, quote_id, actor.organization_id)

    if quote.status == QuoteStatus.CONVERTED_TO_ORDER:
        raise AlreadyConvertedError(f"Quote {quote.quote_number} has already been converted")
    existing = await session.execute(
        select(Order.id).where(Order.quote_request_id == quote.id)
    )
    if existing.scalar_one_or_none() is not None:
        raise AlreadyConvertedError(f"Quote {quote.quote_number} already has an order")
    if (
        quote.requires_approval
        and quote.status != QuoteStatus.APPROVED
        and not authorizer.has_approval_authority(actor)
    ):
        raise PermissionDeniedError(
            f"Quote {quote.quote_number} needs approval before it can be converted"
        )
    assert_transition(quote, QuoteStatus.CONVERTED_TO_ORDER, now)

    threads = await list_threads(session, quote.id)
    thread = validate_selection(threads, quote.selected_supplier_id)
    items = await get_quote_items(session, quote.id)
    if not items:
        raise InvalidStateError(f"Quote {quote.quote_number} has no items to order")

    quoted_amount = to_money(thread.quoted_amount)
    lines, pricing = price_lines(items, quoted_amount)

    catalog = part_catalog or SqlPartCatalog(session, quote.organization_id)
    order = Order(
        organization_id=quote.organization_id,
        order_number=await generate_order_number(session, quote.organization_id, now),
        supplier_id=thread.supplier_id,
        quote_request_id=quote.id,
        vehicle_id=quote.vehicle_id,
        created_by_id=actor.user_id,
        status=OrderStatus.PENDING,
        subtotal=quoted_amount,
        total_amount=quoted_amount,
        notes=f"Created from quote {quote.quote_number}",
        order_date=now,
        created_at=now,
        updated_at=now,
    )
    session.add(order)
    try:
        await session.flush()
    except IntegrityError as e:
        raise AlreadyConvertedError(
            f"Quote {quote.quote_number} was converted concurrently"
        ) from e

    order_items = []
    for item, line in zip(items, lines):
        part = await catalog.get_part(item.part_number)
        order_item = OrderItem(
            order_id=order.id,
            line_number=item.line_number,
            part_id=part.part_id if part else None,
            part_number=item.part_number,
            description=item.description,
            quantity=item.quantity,
            unit_price=line.unit_price,
            total_price=line.total_price,
        )
        session.add(order_item)
        order_items.append(order_item)
    await session.flush()

    await close_threads_for_conversion(session, quote.id, thread.supplier_id)
    await transition(
        session,
        quote,
        QuoteStatus.CONVERTED_TO_ORDER,
        actor,
        action="QUOTE_CONVERTED_TO_ORDER",
        changes={"total_amount": quoted_amount},
        now=now,
    )
    await create_audit_log(
        session,
        organization_id=order.organization_id,
        actor_id=actor.user_id,
        actor_email=actor.email,
        action="ORDER_CREATED",
        entity_type="ORDER",
        entity_id=order.id,
        after_state={
            "order_number": order.order_number,
            "quote_request_id": str(quote.id),
            "supplier_id": str(order.supplier_id),
            "total_amount": str(order.total_amount),
            "pricing": pricing,
        },
    )

    logger.info(
        "quote_converted_to_order",
        quote_id=str(quote.id),
        order_id=str(order.id),
        order_number=order.order_number,
        total_amount=str(quoted_amount),
        items=len(order_items),
        pricing=pricing,
    )
    return ConversionResult(order=order, items=order_items, pricing=pricing)
