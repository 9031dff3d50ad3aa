"""
Quote state machine: the transition table, its guards, and the linearized
status write.

  DRAFT -> SENT -> {RECEIVED, UNDER_REVIEW} -> {APPROVED, REJECTED} -> CONVERTED_TO_ORDER
  RECEIVED -> CONVERTED_TO_ORDER (no review needed)
  any non-terminal -> EXPIRED once expiry_date has elapsed

Every status write goes through transition(): the caller holds the row lock
from lock_quote(), and the UPDATE additionally compares the stored status so
two racing writers can never both succeed.
"""

from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value
import structlog

from quotedesk.models.quote_request import QuoteRequest, QuoteStatus
from quotedesk.services.audit_service import create_audit_log, snapshot
from quotedesk.services.collaborators import Actor
from quotedesk.services.errors import InvalidStateError, NotFoundError
from quotedesk.services.timeutil import utcnow

logger = structlog.get_logger()

TRANSITIONS: dict[str, frozenset] = {
    QuoteStatus.DRAFT: frozenset({QuoteStatus.SENT, QuoteStatus.EXPIRED}),
    QuoteStatus.SENT: frozenset(
        {QuoteStatus.RECEIVED, QuoteStatus.UNDER_REVIEW, QuoteStatus.EXPIRED}
    ),
    QuoteStatus.RECEIVED: frozenset(
        {QuoteStatus.UNDER_REVIEW, QuoteStatus.CONVERTED_TO_ORDER, QuoteStatus.EXPIRED}
    ),
    QuoteStatus.UNDER_REVIEW: frozenset(
        {QuoteStatus.APPROVED, QuoteStatus.REJECTED, QuoteStatus.EXPIRED}
    ),
    QuoteStatus.APPROVED: frozenset(
        {QuoteStatus.CONVERTED_TO_ORDER, QuoteStatus.EXPIRED}
    ),
    QuoteStatus.REJECTED: frozenset(),
    QuoteStatus.EXPIRED: frozenset(),
    QuoteStatus.CONVERTED_TO_ORDER: frozenset(),
}

AUDIT_FIELDS = (
    "status",
    "requires_approval",
    "approved_by_id",
    "approval_notes",
    "selected_supplier_id",
    "total_amount",
)


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def is_terminal(status: str) -> bool:
    return status in QuoteStatus.TERMINAL


def is_expired(quote: QuoteRequest, now: Optional[datetime] = None) -> bool:
    if quote.expiry_date is None or is_terminal(quote.status):
        return False
    return quote.expiry_date <= (now or utcnow())


def assert_transition(
    quote: QuoteRequest, target: str, now: Optional[datetime] = None
) -> None:
    """Raise InvalidStateError unless quote may move to target right now."""
    if not can_transition(quote.status, target):
        raise InvalidStateError(
            f"Quote {quote.quote_number} cannot move from {quote.status} to {target}"
        )
    if target != QuoteStatus.EXPIRED and is_expired(quote, now):
        raise InvalidStateError(
            f"Quote {quote.quote_number} expired on {quote.expiry_date.isoformat()}",
            code="QUOTE_EXPIRED",
        )


async def lock_quote(
    session: AsyncSession,
    quote_id,
    organization_id: Optional[uuid.UUID] = None,
) -> QuoteRequest:
    """SELECT ... FOR UPDATE on the quote row, scoped to the organization."""
    stmt = select(QuoteRequest).where(QuoteRequest.id == quote_id)
    if organization_id is not None:
        stmt = stmt.where(QuoteRequest.organization_id == organization_id)
    result = await session.execute(stmt.with_for_update())
    quote = result.scalar_one_or_none()
    if not quote:
        raise NotFoundError("Quote request not found")
    return quote


async def transition(
    session: AsyncSession,
    quote: QuoteRequest,
    target: str,
    actor: Optional[Actor],
    action: str,
    changes: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> QuoteRequest:
    """
    Move quote to target, writing any extra column changes in the same UPDATE.

    The UPDATE matches on the status we validated against; a zero rowcount
    means another writer got there first and nothing is changed.
    """
    now = now or utcnow()
    assert_transition(quote, target, now)

    before = snapshot(quote, AUDIT_FIELDS)
    expected = quote.status
    values = dict(changes or {})
    values["status"] = target
    values["updated_at"] = now

    result = await session.execute(
        update(QuoteRequest)
        .where(QuoteRequest.id == quote.id, QuoteRequest.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(
            "quote_transition_conflict",
            quote_id=str(quote.id),
            expected=expected,
            target=target,
        )
        raise InvalidStateError(
            f"Quote {quote.quote_number} was modified concurrently; expected {expected}",
            code="CONCURRENT_MODIFICATION",
        )

    # Already written; keep the identity-map copy in step without re-flushing.
    for key, value in values.items():
        set_committed_value(quote, key, value)

    await create_audit_log(
        session,
        organization_id=quote.organization_id,
        actor_id=actor.user_id if actor else None,
        actor_email=actor.email if actor else None,
        action=action,
        entity_type="QUOTE_REQUEST",
        entity_id=quote.id,
        before_state=before,
        after_state=snapshot(quote, AUDIT_FIELDS),
    )

    logger.info(
        "quote_transitioned",
        quote_id=str(quote.id),
        quote_number=quote.quote_number,
        from_status=expected,
        to_status=target,
    )
    return quote
