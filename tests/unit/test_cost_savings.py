"""
Unit tests for the calculation side of quotedesk/services/cost_savings_service.py

Tests: list price fallback, per-order savings, operational line skip,
       recording strategies, derived field recompute.
"""

import uuid
import warnings
from datetime import datetime
from decimal import Decimal

import pytest

from quotedesk.models.cost_savings import CostSavingsRecord
from quotedesk.models.order import Order, OrderItem, OrderStatus
from quotedesk.services.collaborators import PartPrice
from quotedesk.services.cost_savings_service import (
    CreationTimeStrategy,
    DeliveryTimeStrategy,
    apply_derived_fields,
    calculate_order_savings,
    list_price_of,
)
from quotedesk.services.errors import InvalidStateError
from tests.helpers import FakeCatalog


def _item(part_number: str, quantity: int, total: str) -> OrderItem:
    return OrderItem(
        part_number=part_number,
        quantity=quantity,
        unit_price=Decimal(total) / quantity,
        total_price=Decimal(total),
    )


def _order(status=OrderStatus.DELIVERED, delivered=None, created=None) -> Order:
    return Order(
        id=uuid.uuid4(),
        order_number="ORD-2026-0001",
        status=status,
        actual_delivery=delivered,
        created_at=created or datetime(2026, 2, 27, 8, 0),
    )


def test_list_price_prefers_price_then_cost():
    assert list_price_of(PartPrice(price=Decimal("12.00"), cost=Decimal("8.00"))) == Decimal("12.00")
    assert list_price_of(PartPrice(price=Decimal("0"), cost=Decimal("8.00"))) == Decimal("8.00")
    assert list_price_of(PartPrice(price=None, cost=None)) is None
    assert list_price_of(PartPrice(price=Decimal("0"), cost=Decimal("0"))) is None
    assert list_price_of(None) is None


@pytest.mark.asyncio
async def test_order_savings_against_list_price():
    catalog = FakeCatalog({"BRK-PAD-001": PartPrice(price=Decimal("1000.00"), cost=None)})
    savings = await calculate_order_savings([_item("BRK-PAD-001", 1, "750.00")], catalog)

    assert savings.manual_cost == Decimal("1000.00")
    assert savings.platform_cost == Decimal("750.00")
    assert savings.total_savings == Decimal("250.00")
    assert savings.savings_percent == Decimal("25.0000")
    assert savings.items_counted == 1


@pytest.mark.asyncio
async def test_items_without_list_price_are_left_out():
    catalog = FakeCatalog({"OIL-FLT-014": PartPrice(price=Decimal("25.00"), cost=None)})
    items = [_item("OIL-FLT-014", 4, "80.00"), _item("UNKNOWN-9", 1, "500.00")]
    savings = await calculate_order_savings(items, catalog)

    assert savings.manual_cost == Decimal("100.00")
    assert savings.platform_cost == Decimal("80.00")
    assert savings.items_counted == 1


@pytest.mark.asyncio
async def test_operational_lines_are_skipped():
    catalog = FakeCatalog({
        "MISC-SHIPPING": PartPrice(price=Decimal("40.00"), cost=None),
        "WPR-BLD-22": PartPrice(price=Decimal("30.00"), cost=None),
    })
    items = [_item("MISC-SHIPPING", 1, "15.00"), _item("WPR-BLD-22", 2, "50.00")]
    savings = await calculate_order_savings(items, catalog, operational_prefix="MISC-")

    assert savings.manual_cost == Decimal("60.00")
    assert savings.platform_cost == Decimal("50.00")


@pytest.mark.asyncio
async def test_no_priced_item_means_not_applicable():
    savings = await calculate_order_savings([_item("UNKNOWN-9", 1, "500.00")], FakeCatalog())
    assert savings is None


@pytest.mark.asyncio
async def test_overpaying_gives_negative_savings():
    catalog = FakeCatalog({"ALT-220-R": PartPrice(price=None, cost=Decimal("400.00"))})
    savings = await calculate_order_savings([_item("ALT-220-R", 1, "440.00")], catalog)
    assert savings.total_savings == Decimal("-40.00")
    assert savings.savings_percent == Decimal("-10.0000")


def test_delivery_strategy_buckets_by_delivery_month():
    order = _order(delivered=datetime(2026, 3, 31, 23, 0))
    assert DeliveryTimeStrategy().bucket(order) == (3, 2026)


def test_delivery_strategy_requires_delivered_order():
    with pytest.raises(InvalidStateError):
        DeliveryTimeStrategy().bucket(_order(status=OrderStatus.IN_TRANSIT))
    with pytest.raises(InvalidStateError):
        DeliveryTimeStrategy().bucket(_order(delivered=None))


def test_creation_strategy_is_deprecated():
    with pytest.warns(DeprecationWarning):
        strategy = CreationTimeStrategy()
    order = _order(status=OrderStatus.PENDING, created=datetime(2026, 2, 27, 8, 0))
    assert strategy.bucket(order) == (2, 2026)


def test_derived_fields_come_from_cumulative_totals():
    record = CostSavingsRecord(
        total_savings=Decimal("300.00"),
        manual_cost=Decimal("1200.00"),
        platform_cost=Decimal("900.00"),
        orders_processed=2,
    )
    apply_derived_fields(record)
    assert record.savings_percent == Decimal("25.0000")
    assert record.avg_order_value == Decimal("450.00")


def test_derived_fields_with_no_orders():
    record = CostSavingsRecord(
        total_savings=Decimal("0"),
        manual_cost=Decimal("0"),
        platform_cost=Decimal("0"),
        orders_processed=0,
    )
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        apply_derived_fields(record)
    assert record.savings_percent == Decimal("0")
    assert record.avg_order_value == Decimal("0")
