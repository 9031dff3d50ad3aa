"""
Read-side cost savings reporting over a trailing window of months.

Percentages and averages are always recomputed from summed totals, never
averaged from the stored per-month percentages.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
import uuid

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.models.cost_savings import CostSavingsRecord
from quotedesk.models.organization import Organization
from quotedesk.services.money import ZERO, percent_of, safe_average
from quotedesk.services.timeutil import month_window_start, utcnow

DEFAULT_MONTHS = 12


@dataclass
class _Totals:
    total_savings: Decimal = ZERO
    manual_cost: Decimal = ZERO
    platform_cost: Decimal = ZERO
    orders_processed: int = 0

    def add(self, record: CostSavingsRecord) -> None:
        self.total_savings += Decimal(record.total_savings)
        self.manual_cost += Decimal(record.manual_cost)
        self.platform_cost += Decimal(record.platform_cost)
        self.orders_processed += record.orders_processed

    @property
    def savings_percent(self) -> Decimal:
        return percent_of(self.total_savings, self.manual_cost)

    @property
    def avg_order_value(self) -> Decimal:
        return safe_average(self.platform_cost, self.orders_processed)


@dataclass
class MonthlySavings:
    month: int
    year: int
    total_savings: Decimal
    savings_percent: Decimal
    orders_processed: int


@dataclass
class OrganizationSavings:
    organization_id: str
    organization_name: Optional[str]
    total_savings: Decimal
    savings_percent: Decimal
    orders_processed: int


@dataclass
class CostSavingsSummary:
    total_savings: Decimal
    total_manual_cost: Decimal
    total_platform_cost: Decimal
    overall_savings_percent: Decimal
    total_orders_processed: int
    avg_order_value: Decimal
    monthly_savings: list[MonthlySavings] = field(default_factory=list)
    savings_by_organization: Optional[list[OrganizationSavings]] = None


def _window_filter(now: datetime, months: int):
    start_month, start_year = month_window_start(now, months)
    return or_(
        and_(CostSavingsRecord.year == start_year, CostSavingsRecord.month >= start_month),
        CostSavingsRecord.year > start_year,
    )


def summarize(
    records: Iterable[CostSavingsRecord],
    organization_names: Optional[dict] = None,
) -> CostSavingsSummary:
    """
    Aggregate monthly records into one summary.

    Records for the same (month, year) across organizations are merged. When
    organization_names is given, a per-organization breakdown is added,
    sorted by savings descending.
    """
    overall = _Totals()
    by_month: dict[tuple[int, int], _Totals] = {}
    by_org: dict = {}

    for record in records:
        overall.add(record)
        by_month.setdefault((record.year, record.month), _Totals()).add(record)
        by_org.setdefault(record.organization_id, _Totals()).add(record)

    summary = CostSavingsSummary(
        total_savings=overall.total_savings,
        total_manual_cost=overall.manual_cost,
        total_platform_cost=overall.platform_cost,
        overall_savings_percent=overall.savings_percent,
        total_orders_processed=overall.orders_processed,
        avg_order_value=overall.avg_order_value,
        monthly_savings=[
            MonthlySavings(
                month=month,
                year=year,
                total_savings=totals.total_savings,
                savings_percent=totals.savings_percent,
                orders_processed=totals.orders_processed,
            )
            for (year, month), totals in sorted(by_month.items())
        ],
    )

    if organization_names is not None:
        summary.savings_by_organization = sorted(
            (
                OrganizationSavings(
                    organization_id=str(org_id),
                    organization_name=organization_names.get(org_id),
                    total_savings=totals.total_savings,
                    savings_percent=totals.savings_percent,
                    orders_processed=totals.orders_processed,
                )
                for org_id, totals in by_org.items()
            ),
            key=lambda o: o.total_savings,
            reverse=True,
        )
    return summary


async def get_organization_cost_savings(
    session: AsyncSession,
    organization_id: uuid.UUID,
    months: int = DEFAULT_MONTHS,
    now: Optional[datetime] = None,
) -> CostSavingsSummary:
    now = now or utcnow()
    result = await session.execute(
        select(CostSavingsRecord)
        .where(
            CostSavingsRecord.organization_id == organization_id,
            _window_filter(now, months),
        )
        .order_by(CostSavingsRecord.year, CostSavingsRecord.month)
    )
    return summarize(result.scalars().all())


async def get_all_organizations_cost_savings(
    session: AsyncSession,
    months: int = DEFAULT_MONTHS,
    now: Optional[datetime] = None,
) -> CostSavingsSummary:
    now = now or utcnow()
    result = await session.execute(
        select(CostSavingsRecord)
        .where(_window_filter(now, months))
        .order_by(CostSavingsRecord.year, CostSavingsRecord.month)
    )
    records = list(result.scalars().all())

    names: dict = {}
    org_ids = {r.organization_id for r in records}
    if org_ids:
        org_result = await session.execute(
            select(Organization.id, Organization.name).where(Organization.id.in_(org_ids))
        )
        names = {row.id: row.name for row in org_result}
    return summarize(records, organization_names=names)
