"""Pydantic schemas for picking and store visit completion."""
from pydantic import BaseModel, Field

from app.schemas.base import BaseResponseSchema, Money
from typing import Optional
from datetime import datetime
import uuid


class AdjustRequest(BaseModel):
    """Tap +/-: change picked quantity by delta."""
    delta: int = Field(..., ge=-10000, le=10000)


class SetQuantityRequest(BaseModel):
    """Type-in: set picked quantity outright."""
    quantity: int


class ConfirmUnavailableRequest(BaseModel):
    """How long the courier held the confirm control, in milliseconds."""
    hold_duration_ms: int = Field(..., ge=0)


class CompleteStoreVisitRequest(BaseModel):
    receipt_image_url: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = None


class RunConfirmationResponse(BaseResponseSchema):
    """Run confirmation response schema."""
    id: uuid.UUID
    run_id: uuid.UUID
    store_id: uuid.UUID
    store_name: str
    receipt_image_url: str
    pickup_amount: Money
    return_amount: Money
    total_amount: Money
    notes: Optional[str] = None
    confirmed_by: Optional[uuid.UUID] = None
    confirmed_at: datetime
    updated_at: datetime


class StoreVisitLedgerEntry(BaseResponseSchema):
    id: uuid.UUID
    transaction_type: str
    amount: Money
    run_number: Optional[int] = None
    notes: Optional[str] = None


class CompleteStoreVisitResponse(BaseResponseSchema):
    confirmation: RunConfirmationResponse
    created: bool
    ledger_entry: Optional[StoreVisitLedgerEntry] = None
    items_finalized: int = 0
