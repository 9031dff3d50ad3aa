"""
Order lifecycle.

  PENDING -> PROCESSING -> IN_TRANSIT -> DELIVERED -> RETURNED
  PENDING / PROCESSING / IN_TRANSIT -> CANCELLED

Entering DELIVERED stamps actual_delivery and finalizes cost savings inside a
savepoint. If finalization fails the order still ends up DELIVERED; the
failure comes back as a warning and the retry-cost-savings job picks it up.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quotedesk.models.order import Order, OrderStatus
from quotedesk.services.audit_service import create_audit_log, snapshot
from quotedesk.services.collaborators import Actor, PartCatalog
from quotedesk.services.cost_savings_service import (
    FinalizeResult,
    RecordingStrategy,
    finalize_order_cost_savings,
)
from quotedesk.services.errors import InvalidStateError, NotFoundError
from quotedesk.services.timeutil import to_naive_utc, utcnow

logger = structlog.get_logger()

ORDER_TRANSITIONS: dict[str, frozenset] = {
    OrderStatus.PENDING_QUOTE: frozenset({OrderStatus.PENDING, OrderStatus.CANCELLED}),
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.IN_TRANSIT, OrderStatus.CANCELLED}),
    OrderStatus.IN_TRANSIT: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURNED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.RETURNED: frozenset(),
}

COST_SAVINGS_WARNING = (
    "Order delivered, but cost savings could not be recorded. It will be retried."
)


@dataclass
class OrderStatusResult:
    order: Order
    cost_savings: Optional[FinalizeResult] = None
    warning: Optional[str] = None


def can_transition_order(current: str, target: str) -> bool:
    return target in ORDER_TRANSITIONS.get(current, frozenset())


async def get_order(
    session: AsyncSession, organization_id, order_id, lock: bool = False
) -> Order:
    stmt = select(Order).where(
        Order.id == order_id, Order.organization_id == organization_id
    )
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    order = result.scalar_one_or_none()
    if not order:
        raise NotFoundError("Order not found")
    return order


async def finalize_cost_savings_safely(
    session: AsyncSession,
    order: Order,
    part_catalog: Optional[PartCatalog] = None,
    strategy: Optional[RecordingStrategy] = None,
) -> tuple[Optional[FinalizeResult], Optional[str]]:
    """Run finalization in a savepoint; a failure rolls back only the savepoint."""
    try:
        async with session.begin_nested():
            outcome = await finalize_order_cost_savings(
                session, order, part_catalog=part_catalog, strategy=strategy
            )
        return outcome, None
    except Exception as e:
        logger.error(
            "cost_savings_finalize_failed",
            order_id=str(order.id),
            organization_id=str(order.organization_id),
            error=str(e),
        )
        return None, COST_SAVINGS_WARNING


async def update_order_status(
    session: AsyncSession,
    actor: Actor,
    order_id,
    new_status: str,
    delivered_at: Optional[datetime] = None,
    part_catalog: Optional[PartCatalog] = None,
    strategy: Optional[RecordingStrategy] = None,
) -> OrderStatusResult:
    order = await get_order(session, actor.organization_id, order_id, lock=True)
    if new_status not in OrderStatus.ALL:
        raise InvalidStateError(f"Unknown order status {new_status}")
    if not can_transition_order(order.status, new_status):
        raise InvalidStateError(
            f"Order {order.order_number} cannot move from {order.status} to {new_status}"
        )

    before = snapshot(order, ("status", "actual_delivery"))
    order.status = new_status
    if new_status == OrderStatus.DELIVERED:
        order.actual_delivery = to_naive_utc(delivered_at) if delivered_at else utcnow()
    await session.flush()

    await create_audit_log(
        session,
        organization_id=order.organization_id,
        actor_id=actor.user_id,
        actor_email=actor.email,
        action=f"ORDER_{new_status}",
        entity_type="ORDER",
        entity_id=order.id,
        before_state=before,
        after_state=snapshot(order, ("status", "actual_delivery")),
    )
    logger.info(
        "order_status_updated",
        order_id=str(order.id),
        from_status=before["status"],
        to_status=new_status,
    )

    result = OrderStatusResult(order=order)
    if new_status == OrderStatus.DELIVERED:
        result.cost_savings, result.warning = await finalize_cost_savings_safely(
            session, order, part_catalog=part_catalog, strategy=strategy
        )
    return result
