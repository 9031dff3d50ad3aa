"""
Approval workflow: request review, approve, reject.

Role-gated decisions are layered on the quote state machine:
  SENT/RECEIVED -> UNDER_REVIEW     creator without approval authority
  UNDER_REVIEW  -> APPROVED         approver other than the creator
  UNDER_REVIEW  -> REJECTED         approver, with a non-empty reason

Who counts as an approver is decided by the injected Authorizer.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quotedesk.models.quote_request import QuoteRequest, QuoteStatus
from quotedesk.services.collaborators import Actor, Authorizer
from quotedesk.services.errors import (
    InvalidStateError,
    PermissionDeniedError,
    ValidationFailedError,
)
from quotedesk.services.quote_state import lock_quote, transition
from quotedesk.services.supplier_thread_service import list_threads, validate_selection
from quotedesk.services.timeutil import utcnow

logger = structlog.get_logger()


@dataclass
class ApprovalResult:
    quote: QuoteRequest
    is_approved: bool
    is_rejected: bool


async def request_review(
    session: AsyncSession,
    actor: Actor,
    authorizer: Authorizer,
    quote_id,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> QuoteRequest:
    quote = await lock_quote(session, quote_id, actor.organization_id)

    if quote.status == QuoteStatus.UNDER_REVIEW:
        raise InvalidStateError(f"Quote {quote.quote_number} is already under review")
    if quote.created_by_id != actor.user_id:
        raise PermissionDeniedError("Only the quote creator can request a review")
    if authorizer.has_approval_authority(actor):
        raise PermissionDeniedError(
            "You can approve this quote yourself; a review is not required"
        )

    changes = {"requires_approval": True}
    if notes:
        changes["notes"] = notes
    await transition(
        session,
        quote,
        QuoteStatus.UNDER_REVIEW,
        actor,
        action="QUOTE_REVIEW_REQUESTED",
        changes=changes,
        now=now,
    )
    logger.info(
        "quote_review_requested",
        quote_id=str(quote.id),
        requested_by=str(actor.user_id),
    )
    return quote


async def _decide(
    session: AsyncSession,
    actor: Actor,
    authorizer: Authorizer,
    quote_id,
) -> QuoteRequest:
    if not authorizer.has_approval_authority(actor):
        raise PermissionDeniedError("You do not have permission to approve or reject quotes")
    quote = await lock_quote(session, quote_id, actor.organization_id)
    if quote.status != QuoteStatus.UNDER_REVIEW:
        raise InvalidStateError(
            f"Quote {quote.quote_number} is not awaiting approval (status {quote.status})"
        )
    return quote


async def approve_quote(
    session: AsyncSession,
    actor: Actor,
    authorizer: Authorizer,
    quote_id,
    notes: Optional[str] = None,
    selected_supplier_id=None,
    now: Optional[datetime] = None,
) -> ApprovalResult:
    """
    UNDER_REVIEW -> APPROVED.

    The approver may pick the supplier in the same step; the pick must be a
    supplier whose thread responded with a price.
    """
    now = now or utcnow()
    quote = await _decide(session, actor, authorizer, quote_id)
    if quote.created_by_id == actor.user_id:
        raise PermissionDeniedError("You cannot approve your own quote request")

    changes = {
        "approved_by_id": actor.user_id,
        "approved_at": now,
        "approval_notes": notes,
    }
    if selected_supplier_id is not None:
        thread = validate_selection(
            await list_threads(session, quote.id), selected_supplier_id
        )
        changes["selected_supplier_id"] = thread.supplier_id
        changes["total_amount"] = thread.quoted_amount

    await transition(
        session,
        quote,
        QuoteStatus.APPROVED,
        actor,
        action="QUOTE_APPROVED",
        changes=changes,
        now=now,
    )
    logger.info(
        "quote_approved",
        quote_id=str(quote.id),
        approver_id=str(actor.user_id),
        selected_supplier_id=str(quote.selected_supplier_id) if quote.selected_supplier_id else None,
    )
    return ApprovalResult(quote=quote, is_approved=True, is_rejected=False)


async def reject_quote(
    session: AsyncSession,
    actor: Actor,
    authorizer: Authorizer,
    quote_id,
    reason: Optional[str],
    now: Optional[datetime] = None,
) -> ApprovalResult:
    """UNDER_REVIEW -> REJECTED; a reason is mandatory."""
    if not reason or not reason.strip():
        raise ValidationFailedError("A reason is required when rejecting a quote")
    now = now or utcnow()
    quote = await _decide(session, actor, authorizer, quote_id)

    await transition(
        session,
        quote,
        QuoteStatus.REJECTED,
        actor,
        action="QUOTE_REJECTED",
        changes={
            "approved_by_id": actor.user_id,
            "approved_at": now,
            "approval_notes": reason.strip(),
        },
        now=now,
    )
    logger.info(
        "quote_rejected",
        quote_id=str(quote.id),
        approver_id=str(actor.user_id),
    )
    return ApprovalResult(quote=quote, is_approved=False, is_rejected=True)
