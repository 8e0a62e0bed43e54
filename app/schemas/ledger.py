"""Pydantic schemas for ledger entries, balances and confirmation amendments."""
from pydantic import BaseModel, Field

from app.schemas.base import BaseResponseSchema, Money
from app.schemas.picking import RunConfirmationResponse
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
import uuid

from app.models.ledger import TransactionType


class LedgerEntryResponse(BaseResponseSchema):
    """Ledger entry response schema."""
    id: uuid.UUID
    store_id: uuid.UUID
    store_name: str
    transaction_type: str
    amount: Money
    discount: Money
    net_amount: Money
    entry_date: date
    run_number: Optional[int] = None
    run_confirmation_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    created_at: datetime


class LedgerListResponse(BaseModel):
    items: List[LedgerEntryResponse]
    total: int
    skip: int
    limit: int


class ManualEntryCreate(BaseModel):
    """Operator credit/debit not tied to a run."""
    store_id: uuid.UUID
    transaction_type: TransactionType
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    discount: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    entry_date: Optional[date] = None
    notes: Optional[str] = None


class StoreBalanceResponse(BaseResponseSchema):
    store_id: uuid.UUID
    store_name: str
    debits: Money
    credits: Money
    balance: Money


class BalanceReportResponse(BaseResponseSchema):
    stores: List[StoreBalanceResponse]
    total_debits: Money
    total_credits: Money
    total_balance: Money


class ConfirmationAmendRequest(BaseModel):
    """Operator correction of a finalized store visit."""
    total_amount: Optional[Decimal] = Field(None, max_digits=12, decimal_places=2)
    notes: Optional[str] = None
    receipt_image_url: Optional[str] = Field(None, max_length=1000)


class ConfirmationAmendResponse(BaseResponseSchema):
    confirmation: RunConfirmationResponse
    ledger_entry: Optional[LedgerEntryResponse] = None
    old_amount: Money
    new_amount: Money
    amount_changed: bool
    ledger_action: str


class DeduplicateResponse(BaseResponseSchema):
    groups_affected: int
    deleted_count: int
    deleted_ids: List[uuid.UUID]
