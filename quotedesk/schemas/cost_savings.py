from decimal import Decimal
from typing import List, Optional

from quotedesk.schemas.common import ORMModel


class MonthlySavingsResponse(ORMModel):
    month: int
    year: int
    total_savings: Decimal
    savings_percent: Decimal
    orders_processed: int


class OrganizationSavingsResponse(ORMModel):
    organization_id: str
    organization_name: Optional[str] = None
    total_savings: Decimal
    savings_percent: Decimal
    orders_processed: int


class CostSavingsSummaryResponse(ORMModel):
    total_savings: Decimal
    total_manual_cost: Decimal
    total_platform_cost: Decimal
    overall_savings_percent: Decimal
    total_orders_processed: int
    avg_order_value: Decimal
    monthly_savings: List[MonthlySavingsResponse]
    savings_by_organization: Optional[List[OrganizationSavingsResponse]] = None
