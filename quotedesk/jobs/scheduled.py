# quotedesk/jobs/scheduled.py
"""
Scheduled background jobs, triggered by an external scheduler hitting these
endpoints.

Jobs:
  - expire-quotes: Hourly; moves elapsed quote requests to EXPIRED
  - retry-cost-savings: Every 30 minutes; finalizes delivered orders whose
    cost savings recording failed
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quotedesk.config import settings
from quotedesk.database import get_db
from quotedesk.services.cost_savings_service import find_unrecorded_delivered_orders
from quotedesk.services.order_service import finalize_cost_savings_safely
from quotedesk.services.quote_service import expire_quote_requests

logger = structlog.get_logger()
router = APIRouter()


async def _require_internal_auth(request: Request):
    """Validate the X-Internal-Secret header against INTERNAL_JOB_SECRET."""
    secret = settings.INTERNAL_JOB_SECRET
    if not secret:
        # In development (DEBUG=True), allow unauthenticated internal calls
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="INTERNAL_JOB_SECRET is not configured",
        )
    provided = request.headers.get("X-Internal-Secret")
    if not provided or provided != secret:
        logger.warning("internal_auth_failed", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )


@router.post("/expire-quotes")
async def expire_quotes(
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_internal_auth),
):
    expired = await expire_quote_requests(db)
    logger.info("job_expire_quotes_completed", expired=len(expired))
    return {"status": "ok", "expired": len(expired)}


@router.post("/retry-cost-savings")
async def retry_cost_savings(
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_internal_auth),
):
    orders = await find_unrecorded_delivered_orders(db, limit=limit)
    counts = {"RECORDED": 0, "NOT_APPLICABLE": 0, "ALREADY_RECORDED": 0, "FAILED": 0}
    for order in orders:
        outcome, warning = await finalize_cost_savings_safely(db, order)
        counts["FAILED" if warning else outcome.status] += 1

    logger.info("job_retry_cost_savings_completed", checked=len(orders), **counts)
    return {"status": "ok", "checked": len(orders), **{k.lower(): v for k, v in counts.items()}}
