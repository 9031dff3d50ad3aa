"""
Unit tests for quotedesk/services/money.py and quotedesk/services/timeutil.py
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from quotedesk.services.money import (
    percent_of,
    safe_average,
    split_evenly_per_unit,
    to_money,
    to_money_or_none,
)
from quotedesk.services.timeutil import add_business_days, month_window_start, to_naive_utc


def test_to_money_quantizes_half_up():
    assert to_money("10.005") == Decimal("10.01")
    assert to_money(0.1) == Decimal("0.10")
    assert to_money(7) == Decimal("7.00")


def test_to_money_rejects_garbage():
    with pytest.raises(ValueError):
        to_money("twelve dollars")


def test_to_money_or_none_passes_none_through():
    assert to_money_or_none(None) is None
    assert to_money_or_none("3.5") == Decimal("3.50")


def test_percent_of():
    assert percent_of(Decimal("250"), Decimal("1000")) == Decimal("25.0000")
    assert percent_of(Decimal("1"), Decimal("3")) == Decimal("33.3333")
    assert percent_of(Decimal("5"), Decimal("0")) == Decimal("0")


def test_safe_average():
    assert safe_average(Decimal("1500"), 2) == Decimal("750.00")
    assert safe_average(Decimal("100"), 0) == Decimal("0.00")


def test_even_split_sums_exactly():
    lines = split_evenly_per_unit(Decimal("100"), [1, 1, 1])
    assert lines == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert sum(lines) == Decimal("100.00")


def test_even_split_is_per_unit():
    assert split_evenly_per_unit(Decimal("420"), [1, 2, 3]) == [
        Decimal("70.00"),
        Decimal("140.00"),
        Decimal("210.00"),
    ]


def test_even_split_never_goes_negative():
    lines = split_evenly_per_unit(Decimal("0.03"), [1, 1, 1, 1, 1])
    assert lines == [Decimal("0.00"), Decimal("0.00"), Decimal("0.01"), Decimal("0.01"), Decimal("0.01")]
    assert sum(lines) == Decimal("0.03")


def test_even_split_gives_leftover_cents_to_largest_shares():
    lines = split_evenly_per_unit(Decimal("10.00"), [1, 2])
    assert lines == [Decimal("3.33"), Decimal("6.67")]


def test_even_split_requires_positive_quantity():
    assert split_evenly_per_unit(Decimal("10"), []) == []
    with pytest.raises(ValueError):
        split_evenly_per_unit(Decimal("10"), [0])


def test_add_business_days_skips_weekend():
    friday = datetime(2026, 3, 6, 12, 0)
    assert add_business_days(friday, 3) == datetime(2026, 3, 11, 12, 0)
    monday = datetime(2026, 3, 2, 12, 0)
    assert add_business_days(monday, 3) == monday + timedelta(days=3)


def test_to_naive_utc_converts_aware_values():
    aware = datetime(2026, 3, 2, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_naive_utc(aware) == datetime(2026, 3, 2, 10, 0)


def test_month_window_start_crosses_year():
    assert month_window_start(datetime(2026, 3, 15), 12) == (4, 2025)
    assert month_window_start(datetime(2026, 3, 15), 1) == (3, 2026)
    assert month_window_start(datetime(2026, 1, 1), 2) == (12, 2025)
