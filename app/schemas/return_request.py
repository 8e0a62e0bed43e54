"""Pydantic schemas for return requests."""
from pydantic import BaseModel

from app.schemas.base import BaseResponseSchema, Money
from typing import Literal, Optional
from datetime import datetime
import uuid


class ReturnProcessRequest(BaseModel):
    decision: Literal["processed", "rejected"]
    notes: Optional[str] = None


class ReturnRequestResponse(BaseResponseSchema):
    """Return request response schema."""
    id: uuid.UUID
    store_id: uuid.UUID
    store_name: str
    barcode: str
    style_name: str
    size: Optional[str] = None
    quantity: int
    reason: str
    return_amount: Money
    status: str
    run_id: Optional[uuid.UUID] = None
    run_number: Optional[int] = None
    processed_at: Optional[datetime] = None
    notes: Optional[str] = None
