"""Ledger API endpoints: entries, balances, amendments and maintenance."""
from typing import Optional
import uuid

from fastapi import APIRouter, Query, Depends, status

from app.api.deps import DB, require_permissions
from app.models.ledger import TransactionType
from app.schemas.ledger import (
    LedgerEntryResponse,
    LedgerListResponse,
    ManualEntryCreate,
    BalanceReportResponse,
    ConfirmationAmendRequest,
    ConfirmationAmendResponse,
    DeduplicateResponse,
)
from app.services.ledger_service import LedgerService


router = APIRouter()


@router.get(
    "",
    response_model=LedgerListResponse,
    dependencies=[Depends(require_permissions("ledger:view"))]
)
async def list_ledger_entries(
    db: DB,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    store_id: Optional[uuid.UUID] = Query(None),
    run_number: Optional[int] = Query(None),
    transaction_type: Optional[TransactionType] = Query(None),
):
    """Get paginated ledger entries, newest first."""
    entries, total = await LedgerService(db).list_entries(
        store_id=store_id,
        run_number=run_number,
        transaction_type=transaction_type.value if transaction_type else None,
        skip=skip,
        limit=limit,
    )
    return LedgerListResponse(
        items=[LedgerEntryResponse.model_validate(e) for e in entries],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post(
    "",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions("ledger:manage"))]
)
async def create_manual_entry(
    data: ManualEntryCreate,
    db: DB,
):
    """Record an operator credit or debit that is not tied to a run."""
    entry = await LedgerService(db).record_manual_entry(
        store_id=data.store_id,
        transaction_type=data.transaction_type.value,
        amount=data.amount,
        discount=data.discount,
        entry_date=data.entry_date,
        notes=data.notes,
    )
    return LedgerEntryResponse.model_validate(entry)


@router.get(
    "/balances",
    response_model=BalanceReportResponse,
    dependencies=[Depends(require_permissions("ledger:view"))]
)
async def get_store_balances(db: DB):
    """Per-store balance: credits minus debits, net of discounts."""
    report = await LedgerService(db).get_store_balances()
    return BalanceReportResponse.model_validate(report)


@router.patch(
    "/confirmations/{confirmation_id}",
    response_model=ConfirmationAmendResponse,
    dependencies=[Depends(require_permissions("ledger:manage"))]
)
async def amend_confirmation(
    confirmation_id: uuid.UUID,
    data: ConfirmationAmendRequest,
    db: DB,
):
    """Correct a confirmed store visit; its ledger entry follows."""
    result = await LedgerService(db).amend_confirmation(
        confirmation_id,
        total_amount=data.total_amount,
        notes=data.notes,
        receipt_image_url=data.receipt_image_url,
    )
    return ConfirmationAmendResponse.model_validate(result)


@router.post(
    "/deduplicate",
    response_model=DeduplicateResponse,
    dependencies=[Depends(require_permissions("ledger:manage"))]
)
async def deduplicate_ledger(db: DB):
    """Remove duplicate run entries left by data loaded before the unique constraint."""
    result = await LedgerService(db).deduplicate_by_run_store()
    return DeduplicateResponse.model_validate(result)
