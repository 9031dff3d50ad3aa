import uuid
from typing import Optional, Sequence

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quotedesk.database import get_db
from quotedesk.middleware.auth import get_current_actor
from quotedesk.models.order import Order, OrderItem
from quotedesk.schemas.order import (
    CostSavingsOutcome,
    OrderItemResponse,
    OrderResponse,
    OrderStatusResponse,
    OrderStatusUpdate,
)
from quotedesk.services.collaborators import Actor
from quotedesk.services.cost_savings_service import get_order_items
from quotedesk.services.order_service import get_order, update_order_status

logger = structlog.get_logger()
router = APIRouter()


def _line_to_response(item: OrderItem) -> OrderItemResponse:
    return OrderItemResponse(
        id=str(item.id),
        line_number=item.line_number,
        part_id=str(item.part_id) if item.part_id else None,
        part_number=item.part_number,
        description=item.description,
        quantity=item.quantity,
        unit_price=item.unit_price,
        total_price=item.total_price,
    )


def order_to_response(order: Order, items: Optional[Sequence[OrderItem]] = None) -> OrderResponse:
    return OrderResponse(
        id=str(order.id),
        organization_id=str(order.organization_id),
        order_number=order.order_number,
        supplier_id=str(order.supplier_id),
        quote_request_id=str(order.quote_request_id) if order.quote_request_id else None,
        status=order.status,
        subtotal=order.subtotal,
        total_amount=order.total_amount,
        order_date=order.order_date.isoformat() if order.order_date else None,
        actual_delivery=order.actual_delivery.isoformat() if order.actual_delivery else None,
        items=[_line_to_response(i) for i in (items or [])],
        created_at=order.created_at.isoformat() if order.created_at else "",
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order_detail(
    order_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    order = await get_order(db, actor.organization_id, order_id)
    return order_to_response(order, await get_order_items(db, order.id))


@router.patch("/{order_id}/status", response_model=OrderStatusResponse)
async def change_order_status(
    order_id: uuid.UUID,
    body: OrderStatusUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    result = await update_order_status(
        db, actor, order_id, body.status, delivered_at=body.delivered_at
    )
    savings = None
    if result.cost_savings is not None:
        outcome = result.cost_savings
        savings = CostSavingsOutcome(
            status=outcome.status,
            month=outcome.month,
            year=outcome.year,
            total_savings=outcome.savings.total_savings if outcome.savings else None,
            savings_percent=outcome.savings.savings_percent if outcome.savings else None,
        )
    return OrderStatusResponse(
        order=order_to_response(result.order, await get_order_items(db, result.order.id)),
        cost_savings=savings,
        warning=result.warning,
    )
