"""
Price extraction orchestrator.

For every open supplier thread of a quote:
  1. pull new messages from the email collaborator,
  2. hand the newest inbound message to the extraction collaborator, unless
     the thread was already evaluated against that same message,
  3. write the result back onto the thread.

Steps 1-2 run for all threads concurrently, each call bounded by
COLLABORATOR_TIMEOUT_SECONDS, before any row is locked. A thread that fails
is reported in the batch result and never aborts its siblings.

An already-priced thread is never overwritten: a different amount is kept as
the thread's disputed_amount for an approver to resolve.

Writes take the quote lock before any thread lock, the same order conversion
and conflict resolution use.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quotedesk.config import settings
from quotedesk.models.quote_request import QuoteStatus
from quotedesk.models.supplier_thread import SupplierThread, ThreadStatus
from quotedesk.services.collaborators import (
    Actor,
    EmailClient,
    Message,
    PriceExtractor,
)
from quotedesk.services.errors import ExternalCollaboratorError, InvalidStateError
from quotedesk.services.money import to_money_or_none
from quotedesk.services.quote_service import get_quote_request
from quotedesk.services.quote_state import is_expired, is_terminal, lock_quote, transition
from quotedesk.services.supplier_thread_service import (
    append_message,
    attachments_from_json,
    latest_inbound_message,
    list_threads,
    refresh_quote_total,
)
from quotedesk.services.timeutil import to_naive_utc, utcnow

logger = structlog.get_logger()


class ExtractionOutcome:
    PRICED = "PRICED"
    UNCHANGED = "UNCHANGED"
    NO_PRICE_FOUND = "NO_PRICE_FOUND"
    CONFLICT = "CONFLICT"
    FAILED = "FAILED"


@dataclass
class ThreadExtractionResult:
    thread_id: str
    supplier_id: str
    outcome: str
    amount: Optional[Decimal] = None
    new_messages: int = 0
    error: Optional[str] = None
    collaborator: Optional[str] = None


@dataclass
class ExtractionBatchResult:
    quote_id: str
    quote_status: str
    results: list[ThreadExtractionResult] = field(default_factory=list)

    def _count(self, outcome: str) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def succeeded(self) -> int:
        return len(self.results) - self.failed

    @property
    def failed(self) -> int:
        return self._count(ExtractionOutcome.FAILED)

    @property
    def priced(self) -> int:
        return self._count(ExtractionOutcome.PRICED)

    @property
    def no_price_found(self) -> int:
        return self._count(ExtractionOutcome.NO_PRICE_FOUND)

    @property
    def conflicts(self) -> int:
        return self._count(ExtractionOutcome.CONFLICT)


@dataclass
class _Fetched:
    """Everything gathered for one thread before any write happens."""

    thread: SupplierThread
    messages: list[Message] = field(default_factory=list)
    amount: Optional[Decimal] = None
    priced_at: Optional[datetime] = None
    message_id: Optional[str] = None
    error: Optional[ExternalCollaboratorError] = None


def _newest_inbound(
    new_messages: list[Message], stored: Optional[Message]
) -> Optional[Message]:
    candidates = [m for m in new_messages if m.direction == "INBOUND"]
    if stored is not None:
        candidates.append(stored)
    if not candidates:
        return None
    return max(candidates, key=lambda m: to_naive_utc(m.received_at))


async def _fetch_thread(
    thread: SupplierThread,
    stored: Optional[Message],
    email_client: EmailClient,
    extractor: PriceExtractor,
    timeout: float,
) -> _Fetched:
    fetched = _Fetched(thread=thread)
    ref = thread.thread_ref or str(thread.id)

    if thread.thread_ref:
        try:
            fetched.messages = list(
                await asyncio.wait_for(email_client.list_new_messages(ref), timeout=timeout)
            )
        except asyncio.TimeoutError:
            fetched.error = ExternalCollaboratorError("email", ref, f"timed out after {timeout}s")
            return fetched
        except Exception as e:
            fetched.error = ExternalCollaboratorError("email", ref, str(e))
            return fetched

    newest = _newest_inbound(fetched.messages, stored)
    if newest is None:
        return fetched
    if newest.external_id == thread.extracted_message_id:
        # Already evaluated against this message
        return fetched

    try:
        raw = await asyncio.wait_for(
            extractor.extract_amount(newest.body, newest.attachments), timeout=timeout
        )
        fetched.amount = to_money_or_none(raw)
    except asyncio.TimeoutError:
        fetched.error = ExternalCollaboratorError("extraction", ref, f"timed out after {timeout}s")
        return fetched
    except Exception as e:
        fetched.error = ExternalCollaboratorError("extraction", ref, str(e))
        return fetched

    if fetched.amount is not None and fetched.amount <= 0:
        logger.warning(
            "price_extraction_invalid_amount",
            thread_id=str(thread.id),
            amount=str(fetched.amount),
        )
        fetched.amount = None
    fetched.priced_at = to_naive_utc(newest.received_at)
    fetched.message_id = newest.external_id
    return fetched


def apply_extracted_amount(
    thread: SupplierThread,
    amount: Optional[Decimal],
    priced_at: datetime,
) -> str:
    """Write an extracted amount onto a thread; returns the outcome."""
    if amount is None:
        return ExtractionOutcome.NO_PRICE_FOUND

    if thread.quoted_amount is None:
        thread.quoted_amount = amount
        thread.response_date = priced_at
        thread.disputed_amount = None
        if thread.status == ThreadStatus.SENT:
            thread.status = ThreadStatus.RESPONDED
        return ExtractionOutcome.PRICED

    if Decimal(thread.quoted_amount) == amount:
        return ExtractionOutcome.UNCHANGED

    thread.disputed_amount = amount
    return ExtractionOutcome.CONFLICT


async def _load_stored_inbound(session: AsyncSession, thread: SupplierThread) -> Optional[Message]:
    stored = await latest_inbound_message(session, thread.id)
    if stored is None:
        return None
    return Message(
        external_id=stored.external_id,
        subject=stored.subject,
        body=stored.body,
        received_at=stored.received_at,
        direction=stored.direction,
        attachments=attachments_from_json(stored.attachments),
    )


async def extract_prices(
    session: AsyncSession,
    actor: Actor,
    quote_id,
    email_client: EmailClient,
    extractor: PriceExtractor,
    timeout: Optional[float] = None,
    now: Optional[datetime] = None,
) -> ExtractionBatchResult:
    timeout = timeout or settings.COLLABORATOR_TIMEOUT_SECONDS
    now = now or utcnow()

    quote = await get_quote_request(session, actor.organization_id, quote_id)
    if quote.status == QuoteStatus.DRAFT:
        raise InvalidStateError("Prices cannot be extracted before the quote is sent")

    threads = [
        t for t in await list_threads(session, quote.id)
        if t.status in (ThreadStatus.SENT, ThreadStatus.RESPONDED)
    ]
    stored = {t.id: await _load_stored_inbound(session, t) for t in threads}

    # Collaborator I/O only; no row locks are held here.
    fetched_all = await asyncio.gather(*(
        _fetch_thread(t, stored[t.id], email_client, extractor, timeout)
        for t in threads
    ))

    quote = await lock_quote(session, quote.id, actor.organization_id)
    batch = ExtractionBatchResult(quote_id=str(quote.id), quote_status=quote.status)
    any_priced = False

    for fetched in fetched_all:
        locked = await session.execute(
            select(SupplierThread)
            .where(SupplierThread.id == fetched.thread.id)
            .with_for_update()
        )
        thread = locked.scalar_one()

        appended = 0
        for message in fetched.messages:
            stored_message = await append_message(
                session,
                thread,
                external_id=message.external_id,
                direction=message.direction,
                subject=message.subject,
                body=message.body,
                attachments=message.attachments,
                received_at=to_naive_utc(message.received_at),
            )
            if stored_message is not None:
                appended += 1
        thread.last_checked_at = now

        result = ThreadExtractionResult(
            thread_id=str(thread.id),
            supplier_id=str(thread.supplier_id),
            outcome=ExtractionOutcome.FAILED,
            new_messages=appended,
        )
        if fetched.error is not None:
            result.error = fetched.error.reason
            result.collaborator = fetched.error.collaborator
            logger.error(
                "price_extraction_thread_failed",
                quote_id=str(quote.id),
                thread_id=str(thread.id),
                collaborator=fetched.error.collaborator,
                error=fetched.error.reason,
            )
        elif fetched.message_id is None:
            result.outcome = (
                ExtractionOutcome.NO_PRICE_FOUND
                if thread.quoted_amount is None
                else ExtractionOutcome.UNCHANGED
            )
        else:
            thread.extracted_message_id = fetched.message_id
            result.outcome = apply_extracted_amount(
                thread, fetched.amount, fetched.priced_at or now
            )
            result.amount = fetched.amount
            if result.outcome == ExtractionOutcome.PRICED:
                any_priced = True
            elif result.outcome == ExtractionOutcome.CONFLICT:
                logger.warning(
                    "price_extraction_conflict",
                    quote_id=str(quote.id),
                    thread_id=str(thread.id),
                    quoted_amount=str(thread.quoted_amount),
                    extracted_amount=str(fetched.amount),
                )
        await session.flush()
        batch.results.append(result)

    if any_priced:
        if quote.status == QuoteStatus.SENT and not is_expired(quote, now):
            await transition(
                session,
                quote,
                QuoteStatus.RECEIVED,
                actor,
                action="QUOTE_RESPONSE_RECEIVED",
                now=now,
            )
        if not is_terminal(quote.status):
            await refresh_quote_total(session, quote)
        batch.quote_status = quote.status

    logger.info(
        "price_extraction_completed",
        quote_id=str(quote.id),
        threads=len(batch.results),
        succeeded=batch.succeeded,
        failed=batch.failed,
        priced=batch.priced,
        no_price_found=batch.no_price_found,
        conflicts=batch.conflicts,
    )
    return batch
