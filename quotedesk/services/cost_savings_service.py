"""
Cost savings aggregator.

Per order:  manual_cost   = sum(list price x quantity)   (what list price would have cost)
            platform_cost = sum(order item total)         (what was actually paid)
            total_savings = manual_cost - platform_cost

Only items with a usable list price count (part.price if > 0, else part.cost);
operational lines (OPERATIONAL_PART_PREFIX, e.g. shipping or tax) are skipped.
An order with no such item is "not applicable": it gets a zero ledger row so
it is not picked up again by the retry job, and no monthly record changes.

Finalizing an order writes, in one transaction:
  1. a CostSavingsEntry ledger row (unique per order, so replays are no-ops),
  2. an atomic upsert-with-increment of the monthly CostSavingsRecord,
  3. a locked re-read that recomputes savings_percent and avg_order_value
     from the cumulative totals just written.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol, Sequence
import uuid
import warnings

from sqlalchemy import select, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quotedesk.config import settings
from quotedesk.models.cost_savings import CostSavingsEntry, CostSavingsRecord
from quotedesk.models.order import Order, OrderItem, OrderStatus
from quotedesk.services.collaborators import PartCatalog, PartPrice
from quotedesk.services.errors import InvalidStateError
from quotedesk.services.money import ZERO, percent_of, safe_average, to_money
from quotedesk.services.part_catalog import SqlPartCatalog
from quotedesk.services.timeutil import utcnow

logger = structlog.get_logger()


@dataclass
class OrderSavings:
    manual_cost: Decimal
    platform_cost: Decimal
    total_savings: Decimal
    savings_percent: Decimal
    items_counted: int

    @property
    def avg_order_value(self) -> Decimal:
        return self.platform_cost


@dataclass
class FinalizeResult:
    order_id: str
    month: int
    year: int
    status: str  # RECORDED | NOT_APPLICABLE | ALREADY_RECORDED
    savings: Optional[OrderSavings] = None
    record: Optional[CostSavingsRecord] = None

    @property
    def recorded(self) -> bool:
        return self.status == "RECORDED"


# --- recording strategies ---------------------------------------------------


class RecordingStrategy(Protocol):
    name: str

    def bucket(self, order: Order) -> tuple[int, int]:
        """(month, year) the order's savings belong to; raises if not eligible."""
        ...


class DeliveryTimeStrategy:
    """Bucket by actual delivery date. Only delivered orders are eligible."""

    name = "DELIVERY_TIME"

    def bucket(self, order: Order) -> tuple[int, int]:
        if order.status != OrderStatus.DELIVERED:
            raise InvalidStateError(
                f"Order {order.order_number} is {order.status}, not DELIVERED"
            )
        if order.actual_delivery is None:
            raise InvalidStateError(f"Order {order.order_number} has no delivery date")
        return order.actual_delivery.month, order.actual_delivery.year


class CreationTimeStrategy:
    """
    Bucket by order creation date.

    Deprecated: savings land in the month the order was placed even if it is
    never delivered. Kept for replaying historical data only.
    """

    name = "CREATION_TIME"

    def __init__(self):
        warnings.warn(
            "CreationTimeStrategy is deprecated; use DeliveryTimeStrategy",
            DeprecationWarning,
            stacklevel=2,
        )

    def bucket(self, order: Order) -> tuple[int, int]:
        created = order.created_at or order.order_date
        return created.month, created.year


# --- calculation -------------------------------------------------------------


def list_price_of(part: Optional[PartPrice]) -> Optional[Decimal]:
    if part is None:
        return None
    if part.price is not None and Decimal(part.price) > 0:
        return Decimal(part.price)
    if part.cost is not None and Decimal(part.cost) > 0:
        return Decimal(part.cost)
    return None


async def calculate_order_savings(
    items: Sequence[OrderItem],
    part_catalog: PartCatalog,
    operational_prefix: Optional[str] = None,
) -> Optional[OrderSavings]:
    """Savings for one order, or None when no item has a usable list price."""
    prefix = settings.OPERATIONAL_PART_PREFIX if operational_prefix is None else operational_prefix
    manual_cost = Decimal("0")
    platform_cost = Decimal("0")
    counted = 0

    for item in items:
        if prefix and item.part_number.startswith(prefix):
            continue
        list_price = list_price_of(await part_catalog.get_part(item.part_number))
        if list_price is None:
            continue
        manual_cost += list_price * item.quantity
        platform_cost += Decimal(item.total_price)
        counted += 1

    if counted == 0 or manual_cost == 0:
        return None

    manual_cost = to_money(manual_cost)
    platform_cost = to_money(platform_cost)
    total_savings = manual_cost - platform_cost
    return OrderSavings(
        manual_cost=manual_cost,
        platform_cost=platform_cost,
        total_savings=total_savings,
        savings_percent=percent_of(total_savings, manual_cost),
        items_counted=counted,
    )


def apply_derived_fields(record: CostSavingsRecord) -> CostSavingsRecord:
    """Recompute the derived fields from the cumulative ones; never incremented."""
    record.savings_percent = percent_of(record.total_savings, record.manual_cost)
    record.avg_order_value = safe_average(record.platform_cost, record.orders_processed)
    return record


# --- persistence -------------------------------------------------------------


def _record_key(organization_id, month: int, year: int):
    return (
        CostSavingsRecord.organization_id == organization_id,
        CostSavingsRecord.month == month,
        CostSavingsRecord.year == year,
    )


async def _lock_record(
    session: AsyncSession, organization_id, month: int, year: int
) -> Optional[CostSavingsRecord]:
    result = await session.execute(
        select(CostSavingsRecord)
        .where(*_record_key(organization_id, month, year))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _increment_monthly_record(
    session: AsyncSession,
    organization_id: uuid.UUID,
    month: int,
    year: int,
    savings: OrderSavings,
) -> None:
    """Create-or-increment the monthly record in a single statement where the dialect allows."""
    now = utcnow()
    dialect = session.get_bind().dialect.name
    if dialect in ("postgresql", "sqlite"):
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
        table = CostSavingsRecord.__table__
        stmt = insert_fn(table).values(
            id=uuid.uuid4(),
            organization_id=organization_id,
            month=month,
            year=year,
            total_savings=savings.total_savings,
            manual_cost=savings.manual_cost,
            platform_cost=savings.platform_cost,
            orders_processed=1,
            savings_percent=ZERO,
            avg_order_value=ZERO,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["organization_id", "month", "year"],
            set_={
                "total_savings": table.c.total_savings + stmt.excluded.total_savings,
                "manual_cost": table.c.manual_cost + stmt.excluded.manual_cost,
                "platform_cost": table.c.platform_cost + stmt.excluded.platform_cost,
                "orders_processed": table.c.orders_processed + 1,
                "updated_at": now,
            },
        )
        await session.execute(stmt)
        return

    record = await _lock_record(session, organization_id, month, year)
    if record is None:
        record = CostSavingsRecord(
            organization_id=organization_id,
            month=month,
            year=year,
            total_savings=ZERO,
            manual_cost=ZERO,
            platform_cost=ZERO,
            orders_processed=0,
        )
        session.add(record)
    record.total_savings += savings.total_savings
    record.manual_cost += savings.manual_cost
    record.platform_cost += savings.platform_cost
    record.orders_processed += 1
    await session.flush()


async def recompute_monthly_record(
    session: AsyncSession, organization_id, month: int, year: int
) -> Optional[CostSavingsRecord]:
    """Re-read the record under lock and refresh its derived fields."""
    record = await _lock_record(session, organization_id, month, year)
    if record is None:
        return None
    apply_derived_fields(record)
    await session.flush()
    return record


async def get_order_items(session: AsyncSession, order_id) -> list[OrderItem]:
    result = await session.execute(
        select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.line_number)
    )
    return list(result.scalars().all())


async def _add_ledger_entry(
    session: AsyncSession,
    order: Order,
    month: int,
    year: int,
    strategy: RecordingStrategy,
    savings: Optional[OrderSavings],
) -> bool:
    """Insert the order's ledger row in a savepoint; False if one already exists."""
    try:
        async with session.begin_nested():
            session.add(CostSavingsEntry(
                order_id=order.id,
                organization_id=order.organization_id,
                month=month,
                year=year,
                manual_cost=savings.manual_cost if savings else ZERO,
                platform_cost=savings.platform_cost if savings else ZERO,
                total_savings=savings.total_savings if savings else ZERO,
                strategy=strategy.name,
                outcome="RECORDED" if savings else "NOT_APPLICABLE",
            ))
    except IntegrityError:
        return False
    return True


async def finalize_order_cost_savings(
    session: AsyncSession,
    order: Order,
    part_catalog: Optional[PartCatalog] = None,
    strategy: Optional[RecordingStrategy] = None,
) -> FinalizeResult:
    """Roll one order into its monthly record. Safe to call more than once."""
    strategy = strategy or DeliveryTimeStrategy()
    month, year = strategy.bucket(order)
    result = FinalizeResult(order_id=str(order.id), month=month, year=year, status="RECORDED")

    existing = await session.execute(
        select(CostSavingsEntry.outcome).where(CostSavingsEntry.order_id == order.id)
    )
    outcome = existing.scalar_one_or_none()
    if outcome is not None:
        result.status = "NOT_APPLICABLE" if outcome == "NOT_APPLICABLE" else "ALREADY_RECORDED"
        return result

    catalog = part_catalog or SqlPartCatalog(session, order.organization_id)
    savings = await calculate_order_savings(await get_order_items(session, order.id), catalog)
    if savings is None:
        logger.info("cost_savings_not_applicable", order_id=str(order.id))
        result.status = "NOT_APPLICABLE"
        if not await _add_ledger_entry(session, order, month, year, strategy, None):
            result.status = "ALREADY_RECORDED"
        return result
    result.savings = savings

    # The ledger row goes first: a concurrent finalize of the same order
    # fails here, before touching the monthly record.
    if not await _add_ledger_entry(session, order, month, year, strategy, savings):
        result.status = "ALREADY_RECORDED"
        return result

    await _increment_monthly_record(session, order.organization_id, month, year, savings)
    result.record = await recompute_monthly_record(session, order.organization_id, month, year)

    logger.info(
        "cost_savings_finalized",
        order_id=str(order.id),
        organization_id=str(order.organization_id),
        month=month,
        year=year,
        strategy=strategy.name,
        total_savings=str(savings.total_savings),
        savings_percent=str(savings.savings_percent),
    )
    return result


async def rebuild_monthly_record(
    session: AsyncSession, organization_id, month: int, year: int
) -> Optional[CostSavingsRecord]:
    """Recompute a monthly record from its ledger entries."""
    totals = (
        await session.execute(
            select(
                func.coalesce(func.sum(CostSavingsEntry.total_savings), 0),
                func.coalesce(func.sum(CostSavingsEntry.manual_cost), 0),
                func.coalesce(func.sum(CostSavingsEntry.platform_cost), 0),
                func.count(CostSavingsEntry.id),
            ).where(
                CostSavingsEntry.organization_id == organization_id,
                CostSavingsEntry.month == month,
                CostSavingsEntry.year == year,
                CostSavingsEntry.outcome == "RECORDED",
            )
        )
    ).one()
    total_savings, manual_cost, platform_cost, count = totals

    record = await _lock_record(session, organization_id, month, year)
    if record is None:
        if count == 0:
            return None
        record = CostSavingsRecord(organization_id=organization_id, month=month, year=year)
        session.add(record)

    record.total_savings = to_money(total_savings)
    record.manual_cost = to_money(manual_cost)
    record.platform_cost = to_money(platform_cost)
    record.orders_processed = int(count)
    apply_derived_fields(record)
    await session.flush()

    logger.info(
        "cost_savings_record_rebuilt",
        organization_id=str(organization_id),
        month=month,
        year=year,
        orders_processed=record.orders_processed,
    )
    return record


async def find_unrecorded_delivered_orders(
    session: AsyncSession, limit: int = 100
) -> list[Order]:
    """
    Delivered orders with no ledger entry, oldest delivery first.

    Not-applicable orders have a zero entry, so only orders whose finalization
    failed come back here.
    """
    result = await session.execute(
        select(Order)
        .outerjoin(CostSavingsEntry, CostSavingsEntry.order_id == Order.id)
        .where(
            Order.status == OrderStatus.DELIVERED,
            Order.actual_delivery != None,  # noqa: E711
            CostSavingsEntry.id == None,  # noqa: E711
        )
        .order_by(Order.actual_delivery)
        .limit(limit)
    )
    return list(result.scalars().all())
