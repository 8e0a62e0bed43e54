"""Pydantic schemas for order status and order line operations."""
from pydantic import BaseModel, Field

from app.schemas.base import BaseResponseSchema
from typing import Dict, Optional, List
from datetime import datetime
import uuid


class OrderItemResponse(BaseResponseSchema):
    """Order item response schema."""
    id: uuid.UUID
    order_id: uuid.UUID
    barcode: str
    product_name: Optional[str] = None
    quantity: int
    status: str
    run_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    updated_at: datetime


class OrderStatusResponse(BaseModel):
    order_id: uuid.UUID
    platform: str
    platform_order_id: str
    status: str
    item_counts: Dict[str, int]
    items: List[OrderItemResponse]


class OrderItemCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
