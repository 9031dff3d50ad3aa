"""
Audit trail for quotes, threads and orders.

Rows are written with the caller's session in the same transaction as the
change they describe, so a rolled-back change leaves no audit row behind.
"""

from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quotedesk.models.audit_log import AuditLog
from quotedesk.services.timeutil import utcnow

logger = structlog.get_logger()


def _as_uuid(value, field_name: str) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise ValueError(f"{field_name} must be a valid UUID, got {value!r}") from e


def changed_fields(before: Optional[dict], after: Optional[dict]) -> Optional[list[str]]:
    """Keys whose values differ; on creation (no before state) every key in after."""
    if not after:
        return None
    if before is None:
        return sorted(after)
    keys = sorted(set(before) | set(after))
    return [k for k in keys if before.get(k) != after.get(k)] or None


def snapshot(entity, fields: tuple[str, ...]) -> dict:
    """JSON-safe dict of selected attributes (UUIDs, Decimals and datetimes as strings)."""
    state = {}
    for name in fields:
        value = getattr(entity, name, None)
        if value is not None and not isinstance(value, (str, int, float, bool)):
            value = value.isoformat() if hasattr(value, "isoformat") else str(value)
        state[name] = value
    return state


async def create_audit_log(
    session: AsyncSession,
    organization_id,
    actor_id,
    action: str,
    entity_type: str,
    entity_id,
    before_state: Optional[dict] = None,
    after_state: Optional[dict] = None,
    actor_email: Optional[str] = None,
) -> AuditLog:
    if organization_id is None or entity_id is None:
        raise ValueError("Audit entries need an organization and an entity")

    audit = AuditLog(
        organization_id=_as_uuid(organization_id, "organization_id"),
        actor_id=_as_uuid(actor_id, "actor_id"),
        actor_email=actor_email,
        action=action,
        entity_type=entity_type,
        entity_id=_as_uuid(entity_id, "entity_id"),
        before_state=before_state,
        after_state=after_state,
        changed_fields=changed_fields(before_state, after_state),
        # Set by CorrelationIdMiddleware; absent for scheduled jobs
        request_id=structlog.contextvars.get_contextvars().get("request_id"),
        created_at=utcnow(),
    )
    session.add(audit)
    await session.flush()

    logger.debug(
        "audit_log_created",
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        actor_id=str(actor_id) if actor_id else "system",
    )
    return audit


async def get_entity_history(
    session: AsyncSession, entity_type: str, entity_id
) -> list[AuditLog]:
    """Audit rows for one entity, oldest first."""
    result = await session.execute(
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.created_at, AuditLog.id)
    )
    return list(result.scalars().all())
