"""
Cost savings recording against a real database, including concurrent
finalization from separate sessions.
"""

import asyncio
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from quotedesk.models.cost_savings import CostSavingsEntry, CostSavingsRecord
from quotedesk.models.order import Order, OrderItem, OrderStatus
from quotedesk.services.cost_savings_service import (
    CreationTimeStrategy,
    finalize_order_cost_savings,
    find_unrecorded_delivered_orders,
    rebuild_monthly_record,
)
from quotedesk.services.errors import InvalidStateError
from quotedesk.services.order_service import (
    COST_SAVINGS_WARNING,
    finalize_cost_savings_safely,
    update_order_status,
)
from quotedesk.services.reporting_service import get_organization_cost_savings
from tests.helpers import add_part, add_supplier, make_actor

DELIVERED_AT = datetime(2026, 3, 18, 15, 30)


class BrokenCatalog:
    async def get_part(self, part_number):
        raise RuntimeError("catalog unavailable")


async def add_order(db, org, supplier, lines, status=OrderStatus.DELIVERED, number="ORD-2026-0001",
                    delivered_at=DELIVERED_AT, created_at=datetime(2026, 2, 27, 9, 0)):
    """lines: (part_number, quantity, total_price) tuples."""
    total = sum((Decimal(str(t)) for _, _, t in lines), Decimal("0"))
    order = Order(
        organization_id=org.id,
        order_number=number,
        supplier_id=supplier.id,
        created_by_id=make_actor(org.id).user_id,
        status=status,
        subtotal=total,
        total_amount=total,
        order_date=created_at,
        created_at=created_at,
        actual_delivery=delivered_at if status == OrderStatus.DELIVERED else None,
    )
    db.add(order)
    await db.flush()
    for idx, (part_number, quantity, line_total) in enumerate(lines, start=1):
        line_total = Decimal(str(line_total))
        db.add(OrderItem(
            order_id=order.id,
            line_number=idx,
            part_number=part_number,
            quantity=quantity,
            unit_price=line_total / quantity,
            total_price=line_total,
        ))
    await db.flush()
    return order


async def _record(session, org, month=3, year=2026):
    result = await session.execute(
        select(CostSavingsRecord)
        .where(
            CostSavingsRecord.organization_id == org.id,
            CostSavingsRecord.month == month,
            CostSavingsRecord.year == year,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _finalize_in_own_session(session_factory, order_id):
    async with session_factory() as session:
        order = await session.get(Order, order_id)
        result = await finalize_order_cost_savings(session, order)
        await session.commit()
        return result


@pytest.mark.asyncio
async def test_delivered_order_is_recorded_in_delivery_month(db, org):
    supplier = await add_supplier(db, org.id, "Alpha Parts")
    await add_part(db, org.id, "BRK-PAD-001", "1000.00")
    order = await add_order(db, org, supplier, [("BRK-PAD-001", 1, "750.00")])

    result = await finalize_order_cost_savings(db, order)

    assert result.status == "RECORDED"
    assert (result.month, result.year) == (3, 2026)
    record = result.record
    assert record.total_savings == Decimal("250.00")
    assert record.manual_cost == Decimal("1000.00")
    assert record.platform_cost == Decimal("750.00")
    assert record.savings_percent == Decimal("25.0000")
    assert record.orders_processed == 1
    assert record.avg_order_value == Decimal("750.00")


@pytest.mark.asyncio
async def test_operational_and_unknown_lines_are_ignored(db, org):
    supplier = await add_supplier(db, org.id, "Alpha Parts")
    await add_part(db, org.id, "OIL-FLT-014", "40.00")
    order = await add_order(db, org, supplier, [
        ("OIL-FLT-014", 2, "70.00"),
        ("MISC-SHIPPING", 1, "15.00"),
        ("NOT-IN-CATALOG", 1, "99.00"),
    ])

    result = await finalize_order_cost_savings(db, order)

    assert result.savings.manual_cost == Decimal("80.00")
    assert result.savings.platform_cost == Decimal("70.00")
    assert result.savings.items_counted == 1


@pytest.mark.asyncio
async def test_order_without_catalog_prices_records_nothing(db, org):
    supplier = await add_supplier(db, org.id, "Alpha Parts")
    order = await add_order(db, org, supplier, [("UNKNOWN-1", 1, "50.00")])

    result = await finalize_order_cost_savings(db, order)

    assert result.status == "NOT_APPLICABLE"
    assert await _record(db, org) is None
    entry = (await db.execute(select(CostSavingsEntry))).scalar_one()
    assert entry.outcome == "NOT_APPLICABLE"
    assert entry.total_savings == Decimal("0")

    again = await finalize_order_cost_savings(db, order)
    assert again.status == "NOT_APPLICABLE"
    assert await _record(db, org) is None


@pytest.mark.asyncio
async def test_not_applicable_orders_leave_the_retry_queue(db, org):
    supplier = await add_supplier(db, org.id, "Alpha Parts")
    await add_part(db, org.id, "BRK-PAD-001", "1000.00")
    unpriced = await add_order(
        db, org, supplier, [("UNKNOWN-1", 1, "50.00")], number="ORD-2026-0001",
        delivered_at=datetime(2026, 3, 1, 8, 0),
    )
    failed = await add_order(db, org, supplier, [("BRK-PAD-001", 1, "750.00")], number="ORD-2026-0002")

    assert [o.id for o in await find_unrecorded_delivered_orders(db, limit=1)] == [unpriced.id]

    await finalize_order_cost_savings(db, unpriced)

    assert [o.id for o in await find_unrecorded_delivered_orders(db, limit=1)] == [failed.id]

    await finalize_order_cost_savings(db, failed)
    assert await find_unrecorded_delivered_orders(db) == []
    rebuilt = await rebuild_monthly_record(db, org.id, 3, 2026)
    assert rebuilt.orders_processed == 1
    assert rebuilt.total_savings == Decimal("250.00")


@pytest.mark.asyncio
async def test_replay_is_a_no_op(db, org):
    supplier = await add_supplier(db, org.id, "Alpha Parts")
    await add_part(db, org.id, "BRK-PAD-001", "1000.00")
    order = await add_order(db, org, supplier, [("BRK-PAD-001", 1, "750.00")])

    await finalize_order_cost_savings(db, order)
    replay = await finalize_order_cost_savings(db, order)

    assert replay.status == "ALREADY_RECORDED"
    record = await _record(db, org)
    assert record.orders_processed == 1
    assert record.total_savings == Decimal("250.00")


@pytest.mark.asyncio
async def test_undelivered_order_is_not_eligible(db, org):
    supplier = await add_supplier(db, org.id, "Alpha Parts")
    await add_part(db, org.id, "BRK-PAD-001", "1000.00")
    order = await add_order(db, org, supplier, [("BRK-PAD-001", 1, "750.00")], status=OrderStatus.PENDING)

    with pytest.raises(InvalidStateError):
        await finalize_order_cost_savings(db, order)


@pytest.mark.asyncio
async def test_creation_time_strategy_buckets_by_order_date(db, org):
    supplier = await add_supplier(db, org.id, "Alpha Parts")
    await add_part(db, org.id, "BRK-PAD-001", "1000.00")
    order = await add_order(db, org, supplier, [("BRK-PAD-001", 1, "900.00")])

    with pytest.warns(DeprecationWarning):
        strategy = CreationTimeStrategy()
    result = await finalize_order_cost_savings(db, order, strategy=strategy)

    assert (result.month, result.year) == (2, 2026)
    entry = (await db.execute(select(CostSavingsEntry))).scalar_one()
    assert entry.strategy == "CREATION_TIME"


@pytest.mark.asyncio
async def test_concurrent_orders_accumulate_into_one_record(db, org, session_factory):
    supplier = await add_supplier(db, org.id, "Alpha Parts")
    await add_part(db, org.id, "BRK-PAD-001", "1000.00")
    await add_part(db, org.id, "WPR-BLD-22", "100.00")
    first = await add_order(db, org, supplier, [("BRK-PAD-001", 1, "750.00")], number="ORD-2026-0001")
    second = await add_order(db, org, supplier, [("WPR-BLD-22", 2, "180.00")], number="ORD-2026-0002")
    await db.commit()

    results = await asyncio.gather(
        _finalize_in_own_session(session_factory, first.id),
        _finalize_in_own_session(session_factory, second.id),
    )

    assert [r.status for r in results] == ["RECORDED", "RECORDED"]
    async with session_factory() as session:
        record = await _record(session, org)
    assert record.orders_processed == 2
    assert record.total_savings == Decimal("270.00")
    assert record.manual_cost == Decimal("1200.00")
    assert record.platform_cost == Decimal("930.00")
    assert record.savings_percent == Decimal("22.5000")
    assert record.avg_order_value == Decimal("465.00")


@pytest.mark.asyncio
async def test_concurrent_finalize_of_same_order_records_once(db, org, session_factory):
    supplier = await add_supplier(db, org.id, "Alpha Parts")
    await add_part(db, org.id, "BRK-PAD-001", "1000.00")
    order = await add_order(db, org, supplier, [("BRK-PAD-001", 1, "750.00")])
    await db.commit()

    results = await asyncio.gather(
        _finalize_in_own_session(session_factory, order.id),
        _finalize_in_own_session(session_factory, order.id),
    )

    assert sorted(r.status for r in results) == ["ALREADY_RECORDED", "RECORDED"]
    async with session_factory() as session:
        record = await _record(session, org)
        entries = await session.execute(select(func.count(CostSavingsEntry.id)))
        assert entries.scalar() == 1
    assert record.orders_processed == 1


@pytest.mark.asyncio
async def test_delivery_status_change_finalizes_savings(db, org):
    supplier = await add_supplier(db, org.id, "Alpha Parts")
    await add_part(db, org.id, "BRK-PAD-001", "1000.00")
    order = await add_order(db, org, supplier, [("BRK-PAD-001", 1, "750.00")], status=OrderStatus.IN_TRANSIT)
    actor = make_actor(org.id, "ADMIN")

    result = await update_order_status(db, actor, order.id, OrderStatus.DELIVERED, delivered_at=DELIVERED_AT)

    assert order.status == OrderStatus.DELIVERED
    assert order.actual_delivery == DELIVERED_AT
    assert result.warning is None
    assert result.cost_savings.status == "RECORDED"

    with pytest.raises(InvalidStateError):
        await update_order_status(db, actor, order.id, OrderStatus.PROCESSING)


@pytest.mark.asyncio
async def test_failed_finalization_keeps_delivery_and_is_retried(db, org):
    supplier = await add_supplier(db, org.id, "Alpha Parts")
    await add_part(db, org.id, "BRK-PAD-001", "1000.00")
    order = await add_order(db, org, supplier, [("BRK-PAD-001", 1, "750.00")], status=OrderStatus.IN_TRANSIT)
    actor = make_actor(org.id, "ADMIN")

    result = await update_order_status(
        db, actor, order.id, OrderStatus.DELIVERED, delivered_at=DELIVERED_AT, part_catalog=BrokenCatalog()
    )

    assert result.warning == COST_SAVINGS_WARNING
    assert result.cost_savings is None
    stored = (await db.execute(select(Order.status).where(Order.id == order.id))).scalar_one()
    assert stored == OrderStatus.DELIVERED
    assert await _record(db, org) is None

    pending = await find_unrecorded_delivered_orders(db)
    assert [o.id for o in pending] == [order.id]

    outcome, warning = await finalize_cost_savings_safely(db, pending[0])
    assert warning is None
    assert outcome.status == "RECORDED"
    assert await find_unrecorded_delivered_orders(db) == []


@pytest.mark.asyncio
async def test_rebuild_restores_record_from_ledger(db, org):
    supplier = await add_supplier(db, org.id, "Alpha Parts")
    await add_part(db, org.id, "BRK-PAD-001", "1000.00")
    await add_part(db, org.id, "WPR-BLD-22", "100.00")
    first = await add_order(db, org, supplier, [("BRK-PAD-001", 1, "750.00")], number="ORD-2026-0001")
    second = await add_order(db, org, supplier, [("WPR-BLD-22", 2, "180.00")], number="ORD-2026-0002")
    await finalize_order_cost_savings(db, first)
    await finalize_order_cost_savings(db, second)

    record = await _record(db, org)
    record.total_savings = Decimal("0")
    record.orders_processed = 7
    record.savings_percent = Decimal("99")
    await db.flush()

    rebuilt = await rebuild_monthly_record(db, org.id, 3, 2026)

    assert rebuilt.total_savings == Decimal("270.00")
    assert rebuilt.orders_processed == 2
    assert rebuilt.savings_percent == Decimal("22.5000")
    assert rebuilt.avg_order_value == Decimal("465.00")
    assert await rebuild_monthly_record(db, org.id, 4, 2026) is None


@pytest.mark.asyncio
async def test_organization_report_over_trailing_window(db, org):
    supplier = await add_supplier(db, org.id, "Alpha Parts")
    await add_part(db, org.id, "BRK-PAD-001", "1000.00")
    march = await add_order(db, org, supplier, [("BRK-PAD-001", 1, "750.00")], number="ORD-2026-0001")
    april = await add_order(
        db, org, supplier, [("BRK-PAD-001", 1, "950.00")], number="ORD-2026-0002",
        delivered_at=datetime(2026, 4, 2, 8, 0),
    )
    await finalize_order_cost_savings(db, march)
    await finalize_order_cost_savings(db, april)

    summary = await get_organization_cost_savings(db, org.id, months=12, now=datetime(2026, 4, 20))

    assert summary.total_savings == Decimal("300.00")
    assert summary.total_manual_cost == Decimal("2000.00")
    assert summary.overall_savings_percent == Decimal("15.0000")
    assert summary.total_orders_processed == 2
    assert summary.avg_order_value == Decimal("850.00")
    assert [(m.month, m.year) for m in summary.monthly_savings] == [(3, 2026), (4, 2026)]

    april_only = await get_organization_cost_savings(db, org.id, months=1, now=datetime(2026, 4, 20))
    assert april_only.total_savings == Decimal("50.00")
