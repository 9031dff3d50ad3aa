"""
Unit tests for quotedesk/services/reporting_service.py summarize()
"""

import uuid
from decimal import Decimal

from quotedesk.models.cost_savings import CostSavingsRecord
from quotedesk.services.reporting_service import summarize

ORG_A = uuid.uuid4()
ORG_B = uuid.uuid4()


def _record(org, month, year, savings, manual, platform, orders) -> CostSavingsRecord:
    return CostSavingsRecord(
        organization_id=org,
        month=month,
        year=year,
        total_savings=Decimal(savings),
        manual_cost=Decimal(manual),
        platform_cost=Decimal(platform),
        orders_processed=orders,
    )


def test_summary_recomputes_percent_from_totals():
    summary = summarize([
        _record(ORG_A, 2, 2026, "100.00", "1000.00", "900.00", 1),
        _record(ORG_A, 3, 2026, "250.00", "1000.00", "750.00", 1),
    ])

    assert summary.total_savings == Decimal("350.00")
    assert summary.total_manual_cost == Decimal("2000.00")
    assert summary.total_platform_cost == Decimal("1650.00")
    # 350 / 2000, not the mean of 10% and 25%
    assert summary.overall_savings_percent == Decimal("17.5000")
    assert summary.total_orders_processed == 2
    assert summary.avg_order_value == Decimal("825.00")
    assert [(m.month, m.year) for m in summary.monthly_savings] == [(2, 2026), (3, 2026)]
    assert summary.savings_by_organization is None


def test_months_are_merged_across_organizations():
    summary = summarize(
        [
            _record(ORG_A, 3, 2026, "250.00", "1000.00", "750.00", 1),
            _record(ORG_B, 3, 2026, "50.00", "1000.00", "950.00", 2),
            _record(ORG_B, 12, 2025, "10.00", "100.00", "90.00", 1),
        ],
        organization_names={ORG_A: "North Fleet", ORG_B: "South Haulage"},
    )

    assert [(m.month, m.year) for m in summary.monthly_savings] == [(12, 2025), (3, 2026)]
    march = summary.monthly_savings[1]
    assert march.total_savings == Decimal("300.00")
    assert march.savings_percent == Decimal("15.0000")
    assert march.orders_processed == 3

    by_org = summary.savings_by_organization
    assert [o.organization_name for o in by_org] == ["North Fleet", "South Haulage"]
    assert by_org[1].total_savings == Decimal("60.00")


def test_empty_summary():
    summary = summarize([])
    assert summary.total_savings == Decimal("0")
    assert summary.overall_savings_percent == Decimal("0")
    assert summary.avg_order_value == Decimal("0")
    assert summary.monthly_savings == []
