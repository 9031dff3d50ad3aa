from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class OrderItemResponse(BaseModel):
    id: str
    line_number: int
    part_id: Optional[str] = None
    part_number: str
    description: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class OrderResponse(BaseModel):
    id: str
    organization_id: str
    order_number: str
    supplier_id: str
    quote_request_id: Optional[str] = None
    status: str
    subtotal: Decimal
    total_amount: Decimal
    order_date: Optional[str] = None
    actual_delivery: Optional[str] = None
    items: List[OrderItemResponse] = []
    created_at: str


class ConversionResponse(BaseModel):
    order: OrderResponse
    pricing: str


class OrderStatusUpdate(BaseModel):
    status: str
    delivered_at: Optional[datetime] = None


class CostSavingsOutcome(BaseModel):
    status: str
    month: int
    year: int
    total_savings: Optional[Decimal] = None
    savings_percent: Optional[Decimal] = None


class OrderStatusResponse(BaseModel):
    order: OrderResponse
    cost_savings: Optional[CostSavingsOutcome] = None
    warning: Optional[str] = None
