import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quotedesk.database import get_db
from quotedesk.middleware.auth import get_current_actor
from quotedesk.middleware.authorization import RoleAuthorizer, get_authorizer
from quotedesk.models.quote_request import QuoteItem, QuoteRequest
from quotedesk.schemas.common import PaginatedResponse, build_pagination
from quotedesk.schemas.order import ConversionResponse
from quotedesk.schemas.quote_request import (
    ApproveRequest,
    ExtractionBatchResponse,
    QuoteComparisonResponse,
    QuoteItemResponse,
    QuoteItemsUpdate,
    QuoteRequestCreate,
    QuoteRequestResponse,
    QuoteSuppliersUpdate,
    RejectRequest,
    ReviewRequest,
    SelectSupplierRequest,
    SendResponse,
    ThreadExtractionResponse,
    ThreadSummaryResponse,
)
from quotedesk.routes.orders import order_to_response
from quotedesk.services import approval_service, quote_service
from quotedesk.services.collaborators import Actor, EmailClient, PriceExtractor
from quotedesk.services.conversion_service import convert_quote_to_order
from quotedesk.services.email_gateway import EmailGatewayClient
from quotedesk.services.extraction_client import ExtractionClient
from quotedesk.services.extraction_service import extract_prices
from quotedesk.services.quote_service import ItemInput
from quotedesk.services.supplier_thread_service import (
    build_comparison,
    select_best_supplier,
    select_supplier,
)

logger = structlog.get_logger()
router = APIRouter()


def get_email_client() -> EmailClient:
    return EmailGatewayClient()


def get_price_extractor() -> PriceExtractor:
    return ExtractionClient()


def _iso(value):
    return value.isoformat() if value else None


def _item_to_response(item: QuoteItem) -> QuoteItemResponse:
    return QuoteItemResponse(
        id=str(item.id),
        line_number=item.line_number,
        part_number=item.part_number,
        description=item.description,
        quantity=item.quantity,
        unit_price=item.unit_price,
    )


async def _build_response(db: AsyncSession, quote: QuoteRequest) -> QuoteRequestResponse:
    items = await quote_service.get_quote_items(db, quote.id)
    supplier_ids = await quote_service.get_quote_supplier_ids(db, quote)
    return QuoteRequestResponse(
        id=str(quote.id),
        organization_id=str(quote.organization_id),
        quote_number=quote.quote_number,
        title=quote.title,
        description=quote.description,
        notes=quote.notes,
        status=quote.status,
        created_by_id=str(quote.created_by_id),
        vehicle_id=str(quote.vehicle_id) if quote.vehicle_id else None,
        supplier_ids=[str(s) for s in supplier_ids],
        requires_approval=quote.requires_approval,
        approved_by_id=str(quote.approved_by_id) if quote.approved_by_id else None,
        approved_at=_iso(quote.approved_at),
        approval_notes=quote.approval_notes,
        total_amount=quote.total_amount,
        selected_supplier_id=(
            str(quote.selected_supplier_id) if quote.selected_supplier_id else None
        ),
        request_date=_iso(quote.request_date),
        expiry_date=_iso(quote.expiry_date),
        items=[_item_to_response(i) for i in items],
        created_at=_iso(quote.created_at) or "",
    )


def _to_inputs(items) -> list[ItemInput]:
    return [
        ItemInput(
            id=getattr(i, "id", None),
            part_number=i.part_number,
            description=i.description,
            quantity=i.quantity,
            unit_price=i.unit_price,
        )
        for i in items
    ]


@router.get("", response_model=PaginatedResponse[QuoteRequestResponse])
async def list_quote_requests(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=50),
    quote_status: str = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    q = select(QuoteRequest).where(QuoteRequest.organization_id == actor.organization_id)
    count_q = select(func.count(QuoteRequest.id)).where(
        QuoteRequest.organization_id == actor.organization_id
    )
    if quote_status:
        q = q.where(QuoteRequest.status == quote_status)
        count_q = count_q.where(QuoteRequest.status == quote_status)

    total = (await db.execute(count_q)).scalar() or 0
    result = await db.execute(
        q.order_by(QuoteRequest.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    data = [await _build_response(db, quote) for quote in result.scalars().all()]
    return PaginatedResponse(data=data, pagination=build_pagination(page, limit, total))


@router.post("", response_model=QuoteRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_quote_request(
    body: QuoteRequestCreate,
    actor: Actor = Depends(get_current_actor),
    authorizer: RoleAuthorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    quote = await quote_service.create_quote_request(
        db,
        actor,
        authorizer,
        title=body.title,
        items=_to_inputs(body.items),
        supplier_ids=body.supplier_ids,
        vehicle_id=body.vehicle_id,
        expiry_date=body.expiry_date,
        description=body.description,
        notes=body.notes,
    )
    return await _build_response(db, quote)


@router.get("/{quote_id}", response_model=QuoteRequestResponse)
async def get_quote_request(
    quote_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    quote = await quote_service.get_quote_request(db, actor.organization_id, quote_id)
    return await _build_response(db, quote)


@router.put("/{quote_id}/items", response_model=QuoteRequestResponse)
async def update_quote_items(
    quote_id: uuid.UUID,
    body: QuoteItemsUpdate,
    actor: Actor = Depends(get_current_actor),
    authorizer: RoleAuthorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    await quote_service.update_items(
        db,
        actor,
        authorizer,
        quote_id,
        upserts=_to_inputs(body.upserts),
        removed_ids=body.removed_ids,
    )
    quote = await quote_service.get_quote_request(db, actor.organization_id, quote_id)
    return await _build_response(db, quote)


@router.put("/{quote_id}/suppliers", response_model=QuoteRequestResponse)
async def update_quote_suppliers(
    quote_id: uuid.UUID,
    body: QuoteSuppliersUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    quote = await quote_service.set_suppliers(db, actor, quote_id, body.supplier_ids)
    return await _build_response(db, quote)


@router.post("/{quote_id}/send", response_model=SendResponse)
async def send_quote_request(
    quote_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    email_client: EmailClient = Depends(get_email_client),
    db: AsyncSession = Depends(get_db),
):
    result = await quote_service.send_quote_request(db, actor, quote_id)
    response = SendResponse(
        quote=await _build_response(db, result.quote),
        threads_created=len(result.threads),
        expected_response_date=(
            _iso(result.threads[0].expected_response_date) if result.threads else None
        ),
    )
    # Threads must be committed before any email references them.
    await db.commit()
    background_tasks.add_task(
        quote_service.run_quote_email_dispatch, result.quote.id, email_client
    )
    return response


@router.post("/{quote_id}/request-approval", response_model=QuoteRequestResponse)
async def request_approval(
    quote_id: uuid.UUID,
    body: ReviewRequest = ReviewRequest(),
    actor: Actor = Depends(get_current_actor),
    authorizer: RoleAuthorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    quote = await approval_service.request_review(
        db, actor, authorizer, quote_id, notes=body.notes
    )
    return await _build_response(db, quote)


@router.post("/{quote_id}/approve", response_model=QuoteRequestResponse)
async def approve_quote_request(
    quote_id: uuid.UUID,
    body: ApproveRequest = ApproveRequest(),
    actor: Actor = Depends(get_current_actor),
    authorizer: RoleAuthorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    result = await approval_service.approve_quote(
        db,
        actor,
        authorizer,
        quote_id,
        notes=body.notes,
        selected_supplier_id=body.selected_supplier_id,
    )
    return await _build_response(db, result.quote)


@router.post("/{quote_id}/reject", response_model=QuoteRequestResponse)
async def reject_quote_request(
    quote_id: uuid.UUID,
    body: RejectRequest,
    actor: Actor = Depends(get_current_actor),
    authorizer: RoleAuthorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    result = await approval_service.reject_quote(
        db, actor, authorizer, quote_id, reason=body.reason
    )
    return await _build_response(db, result.quote)


@router.post("/{quote_id}/extract-prices", response_model=ExtractionBatchResponse)
async def extract_quote_prices(
    quote_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    email_client: EmailClient = Depends(get_email_client),
    extractor: PriceExtractor = Depends(get_price_extractor),
    db: AsyncSession = Depends(get_db),
):
    batch = await extract_prices(db, actor, quote_id, email_client, extractor)
    return ExtractionBatchResponse(
        quote_id=batch.quote_id,
        quote_status=batch.quote_status,
        succeeded=batch.succeeded,
        failed=batch.failed,
        priced=batch.priced,
        no_price_found=batch.no_price_found,
        conflicts=batch.conflicts,
        results=[
            ThreadExtractionResponse(
                thread_id=r.thread_id,
                supplier_id=r.supplier_id,
                outcome=r.outcome,
                amount=r.amount,
                new_messages=r.new_messages,
                error=r.error,
                collaborator=r.collaborator,
            )
            for r in batch.results
        ],
    )


@router.post("/{quote_id}/select-supplier", response_model=QuoteRequestResponse)
async def select_quote_supplier(
    quote_id: uuid.UUID,
    body: SelectSupplierRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    if body.best_price or body.supplier_id is None:
        quote = await select_best_supplier(db, actor, quote_id)
    else:
        quote = await select_supplier(db, actor, quote_id, body.supplier_id)
    return await _build_response(db, quote)


@router.post(
    "/{quote_id}/convert-to-order",
    response_model=ConversionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def convert_to_order(
    quote_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    authorizer: RoleAuthorizer = Depends(get_authorizer),
    db: AsyncSession = Depends(get_db),
):
    result = await convert_quote_to_order(db, actor, authorizer, quote_id)
    return ConversionResponse(
        order=order_to_response(result.order, result.items),
        pricing=result.pricing,
    )


@router.get("/{quote_id}/comparison", response_model=QuoteComparisonResponse)
async def get_quote_comparison(
    quote_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    comparison = await build_comparison(db, actor.organization_id, quote_id)
    return QuoteComparisonResponse(
        quote_id=comparison.quote_id,
        status=comparison.status,
        threads=[
            ThreadSummaryResponse(
                thread_id=t.thread_id,
                supplier_id=t.supplier_id,
                supplier_name=t.supplier_name,
                status=t.status,
                responded=t.responded,
                quoted_amount=t.quoted_amount,
                disputed_amount=t.disputed_amount,
                response_date=_iso(t.response_date),
                expected_response_date=_iso(t.expected_response_date),
                is_primary=t.is_primary,
            )
            for t in comparison.threads
        ],
        best_supplier_id=comparison.best_supplier_id,
        best_amount=comparison.best_amount,
        selected_supplier_id=comparison.selected_supplier_id,
    )
