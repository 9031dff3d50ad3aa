from datetime import datetime
from decimal import Decimal
from typing import List, Optional
import uuid

from pydantic import BaseModel, Field


class QuoteItemCreate(BaseModel):
    part_number: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    quantity: int = Field(..., ge=1)
    unit_price: Optional[Decimal] = Field(None, ge=0)


class QuoteItemUpsert(QuoteItemCreate):
    id: Optional[uuid.UUID] = None


class QuoteRequestCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    notes: Optional[str] = None
    vehicle_id: Optional[uuid.UUID] = None
    expiry_date: Optional[datetime] = None
    supplier_ids: List[uuid.UUID] = Field(default_factory=list)
    items: List[QuoteItemCreate] = Field(default_factory=list)


class QuoteItemsUpdate(BaseModel):
    upserts: List[QuoteItemUpsert] = Field(default_factory=list)
    removed_ids: List[uuid.UUID] = Field(default_factory=list)


class QuoteSuppliersUpdate(BaseModel):
    supplier_ids: List[uuid.UUID]


class ReviewRequest(BaseModel):
    notes: Optional[str] = None


class ApproveRequest(BaseModel):
    notes: Optional[str] = None
    selected_supplier_id: Optional[uuid.UUID] = None


class RejectRequest(BaseModel):
    reason: str = Field(..., max_length=2000)


class SelectSupplierRequest(BaseModel):
    supplier_id: Optional[uuid.UUID] = None
    best_price: bool = False


class QuoteItemResponse(BaseModel):
    id: str
    line_number: int
    part_number: str
    description: str
    quantity: int
    unit_price: Optional[Decimal] = None


class QuoteRequestResponse(BaseModel):
    id: str
    organization_id: str
    quote_number: str
    title: str
    description: Optional[str] = None
    notes: Optional[str] = None
    status: str
    created_by_id: str
    vehicle_id: Optional[str] = None
    supplier_ids: List[str] = Field(default_factory=list)
    requires_approval: bool
    approved_by_id: Optional[str] = None
    approved_at: Optional[str] = None
    approval_notes: Optional[str] = None
    total_amount: Optional[Decimal] = None
    selected_supplier_id: Optional[str] = None
    request_date: Optional[str] = None
    expiry_date: Optional[str] = None
    items: List[QuoteItemResponse] = Field(default_factory=list)
    created_at: str


class ThreadSummaryResponse(BaseModel):
    thread_id: str
    supplier_id: str
    supplier_name: Optional[str] = None
    status: str
    responded: bool
    quoted_amount: Optional[Decimal] = None
    disputed_amount: Optional[Decimal] = None
    response_date: Optional[str] = None
    expected_response_date: Optional[str] = None
    is_primary: bool


class QuoteComparisonResponse(BaseModel):
    quote_id: str
    status: str
    threads: List[ThreadSummaryResponse]
    best_supplier_id: Optional[str] = None
    best_amount: Optional[Decimal] = None
    selected_supplier_id: Optional[str] = None


class SendResponse(BaseModel):
    quote: QuoteRequestResponse
    threads_created: int
    expected_response_date: Optional[str] = None


class ThreadExtractionResponse(BaseModel):
    thread_id: str
    supplier_id: str
    outcome: str
    amount: Optional[Decimal] = None
    new_messages: int
    error: Optional[str] = None
    collaborator: Optional[str] = None


class ExtractionBatchResponse(BaseModel):
    quote_id: str
    quote_status: str
    succeeded: int
    failed: int
    priced: int
    no_price_found: int
    conflicts: int
    results: List[ThreadExtractionResponse]


class ResolveConflictRequest(BaseModel):
    accept: bool
