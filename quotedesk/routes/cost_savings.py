from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quotedesk.database import get_db
from quotedesk.middleware.auth import get_current_actor
from quotedesk.middleware.authorization import require_roles
from quotedesk.schemas.cost_savings import CostSavingsSummaryResponse, MonthlySavingsResponse
from quotedesk.services.collaborators import Actor
from quotedesk.services.cost_savings_service import rebuild_monthly_record
from quotedesk.services.errors import NotFoundError
from quotedesk.services.reporting_service import (
    get_all_organizations_cost_savings,
    get_organization_cost_savings,
)

logger = structlog.get_logger()
router = APIRouter()


class RebuildRequest(BaseModel):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)


@router.get("", response_model=CostSavingsSummaryResponse)
async def cost_savings_summary(
    months: int = Query(12, ge=1, le=120),
    all_organizations: bool = Query(False, alias="all"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    # Only platform administrators may look across organizations
    if all_organizations and actor.role == "MASTER_ADMIN":
        summary = await get_all_organizations_cost_savings(db, months=months)
    else:
        summary = await get_organization_cost_savings(db, actor.organization_id, months=months)
    return CostSavingsSummaryResponse.model_validate(summary)


@router.post("/rebuild", response_model=MonthlySavingsResponse)
async def rebuild_cost_savings_month(
    body: RebuildRequest,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_roles("ADMIN", "MASTER_ADMIN")),
    db: AsyncSession = Depends(get_db),
):
    """Recompute one month's record for the caller's organization from the ledger."""
    record = await rebuild_monthly_record(db, actor.organization_id, body.month, body.year)
    if record is None:
        raise NotFoundError(f"No cost savings recorded for {body.month:02d}/{body.year}")
    logger.info(
        "cost_savings_rebuild_requested",
        organization_id=str(actor.organization_id),
        month=body.month,
        year=body.year,
    )
    return MonthlySavingsResponse.model_validate(record)
