"""Pydantic schemas for runs, consolidation and cancellation."""
from pydantic import BaseModel, Field

from app.schemas.base import BaseResponseSchema, CamelCaseSchema, Money
from typing import Optional, List
from datetime import date, datetime
import uuid


# ==================== RUN ITEM SCHEMAS ====================

class RunItemResponse(BaseResponseSchema):
    """Run item response schema."""
    id: uuid.UUID
    run_id: uuid.UUID
    type: str
    barcode: str
    store_id: uuid.UUID
    store_name: str
    style_name: str
    size: Optional[str] = None
    color: Optional[str] = None
    image_url: Optional[str] = None
    cost_price: Money
    target_qty: int
    picked_qty: int
    status: str
    original_return_id: Optional[uuid.UUID] = None
    updated_at: datetime


# ==================== RUN SCHEMAS ====================

class RunGenerateRequest(BaseModel):
    """
    Consolidate pending demand into runs.

    Omit both lists to consolidate the whole pending pool.
    """
    order_item_ids: Optional[List[uuid.UUID]] = None
    return_ids: Optional[List[uuid.UUID]] = None


class GeneratedRunResponse(BaseResponseSchema):
    run_id: uuid.UUID
    run_number: int
    pickup_count: int
    return_count: int
    total_items: int
    total_stores: int
    total_styles: int
    has_returns: bool


class RunGenerateResponse(BaseResponseSchema):
    runs: List[GeneratedRunResponse]
    order_items_assigned: int
    returns_assigned: int


class RunActivateRequest(BaseModel):
    """Activate a draft run, optionally assigning the courier."""
    runner_id: Optional[uuid.UUID] = None
    runner_name: Optional[str] = Field(None, max_length=255)


class RunAssignRequest(BaseModel):
    """Assign (or clear, with null) the courier of a run."""
    runner_id: Optional[uuid.UUID] = None
    runner_name: Optional[str] = Field(None, max_length=255)


class RunResponse(BaseResponseSchema):
    """Run response schema."""
    id: uuid.UUID
    run_number: int
    run_date: date
    status: str
    total_items: int
    total_stores: int
    total_styles: int
    has_returns: bool
    runner_id: Optional[uuid.UUID] = None
    runner_name: Optional[str] = None
    notes: Optional[str] = None
    activated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class RunDetailResponse(RunResponse):
    """Detailed run response with items."""
    items: List[RunItemResponse] = []


class RunListResponse(BaseModel):
    """Paginated run list."""
    items: List[RunResponse]
    total: int
    skip: int
    limit: int


# ==================== PROGRESS SCHEMAS ====================

class StoreProgressResponse(BaseResponseSchema):
    store_id: uuid.UUID
    store_name: str
    item_count: int
    style_count: int
    target_units: int
    picked_units: int
    pickup_count: int
    return_count: int
    is_confirmed: bool


class RunProgressResponse(BaseResponseSchema):
    run_id: uuid.UUID
    run_number: int
    status: str
    stores_total: int
    stores_completed: int
    target_units: int
    picked_units: int
    percent_complete: float
    stores: List[StoreProgressResponse]


# ==================== CANCELLATION SCHEMAS ====================

class RunCancelRequest(CamelCaseSchema):
    """Body: {"runIds": [...]}"""
    run_ids: List[uuid.UUID] = Field(..., min_length=1)


class RunCancelResult(CamelCaseSchema):
    """One run's outcome: {"runId", "status", "pickedCount", "revertedCount", "error"?}"""
    run_id: str
    status: Optional[str] = None
    picked_count: int = 0
    reverted_count: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None


class RunCancelResponse(CamelCaseSchema):
    results: List[RunCancelResult]
