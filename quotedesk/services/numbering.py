"""Human-readable document numbers."""

from datetime import datetime
import uuid

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.models.order import Order
from quotedesk.models.quote_request import QuoteRequest

QUOTE_PREFIX = "QR"
ORDER_PREFIX = "ORD"


async def generate_quote_number(
    db: AsyncSession, organization_id: uuid.UUID, now: datetime
) -> str:
    """QR-MM-YYYY-NNNN, sequence restarts per organization each month."""
    period = f"{QUOTE_PREFIX}-{now.month:02d}-{now.year}-"
    result = await db.execute(
        select(func.count(QuoteRequest.id)).where(
            QuoteRequest.organization_id == organization_id,
            QuoteRequest.quote_number.like(f"{period}%"),
        )
    )
    count = (result.scalar() or 0) + 1
    return f"{period}{count:04d}"


async def generate_order_number(
    db: AsyncSession, organization_id: uuid.UUID, now: datetime
) -> str:
    """ORD-YYYY-NNNN, sequence per organization per year."""
    period = f"{ORDER_PREFIX}-{now.year}-"
    result = await db.execute(
        select(func.count(Order.id)).where(
            Order.organization_id == organization_id,
            Order.order_number.like(f"{period}%"),
        )
    )
    count = (result.scalar() or 0) + 1
    return f"{period}{count:04d}"
