import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.database import get_db
from quotedesk.middleware.auth import get_current_actor
from quotedesk.middleware.authorization import RoleAuthorizer, get_authorizer
from quotedesk.schemas.quote_request import ResolveConflictRequest, ThreadSummaryResponse
from quotedesk.services.collaborators import Actor
from quotedesk.services.supplier_thread_service import is_responded, resolve_price_conflict

router = APIRouter()


@router.post("/{thread_id}/resolve-conflict", response_model=ThreadSummaryResponse)
async def resolve_conflict(
    thread_id: uuid.UUID,
    body: ResolveConflictRequest,
    actor: Actor = Depends(get_current_actor),
    authorizer: RoleAuthorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    thread = await resolve_price_conflict(db, actor, thread_id, body.accept, authorizer)
    return ThreadSummaryResponse(
        thread_id=str(thread.id),
        supplier_id=str(thread.supplier_id),
        status=thread.status,
        responded=is_responded(thread),
        quoted_amount=thread.quoted_amount,
        disputed_amount=thread.disputed_amount,
        response_date=thread.response_date.isoformat() if thread.response_date else None,
        expected_response_date=(
            thread.expected_response_date.isoformat() if thread.expected_response_date else None
        ),
        is_primary=thread.is_primary,
    )
