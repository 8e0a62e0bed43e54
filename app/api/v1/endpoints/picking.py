"""Picking API endpoints used by the courier app."""
import uuid

from fastapi import APIRouter, Depends

from app.api.deps import DB, CurrentUser, Permissions, ensure_can_pick, require_permissions
from app.services.picking_service import PickingService
from app.schemas.run import RunItemResponse
from app.schemas.picking import (
    AdjustRequest,
    SetQuantityRequest,
    ConfirmUnavailableRequest,
    CompleteStoreVisitRequest,
    CompleteStoreVisitResponse,
)
from app.services.run_lifecycle_service import RunLifecycleService
from app.core.exceptions import UnknownReference


router = APIRouter()


# ==================== ITEM PROGRESS ====================

@router.post(
    "/items/{item_id}/adjust",
    response_model=RunItemResponse,
    dependencies=[Depends(require_permissions("picking:update"))]
)
async def adjust_item(
    item_id: uuid.UUID,
    data: AdjustRequest,
    db: DB,
    permissions: Permissions,
):
    """Tap +/- on a line; the result is clamped to the allowed range."""
    service = PickingService(db)
    run = await service.get_item_run(item_id)
    ensure_can_pick(permissions, run.runner_id)

    item = await service.adjust(item_id, data.delta)
    return RunItemResponse.model_validate(item)


@router.put(
    "/items/{item_id}/quantity",
    response_model=RunItemResponse,
    dependencies=[Depends(require_permissions("picking:update"))]
)
async def set_item_quantity(
    item_id: uuid.UUID,
    data: SetQuantityRequest,
    db: DB,
    permissions: Permissions,
):
    """Set the picked quantity of a line outright."""
    service = PickingService(db)
    run = await service.get_item_run(item_id)
    ensure_can_pick(permissions, run.runner_id)

    item = await service.set_picked_quantity(item_id, data.quantity)
    return RunItemResponse.model_validate(item)


@router.post(
    "/items/{item_id}/unavailable",
    response_model=RunItemResponse,
    dependencies=[Depends(require_permissions("picking:update"))]
)
async def confirm_item_unavailable(
    item_id: uuid.UUID,
    data: ConfirmUnavailableRequest,
    db: DB,
    permissions: Permissions,
):
    """Press-and-hold confirmation that a line cannot be found at the store."""
    service = PickingService(db)
    run = await service.get_item_run(item_id)
    ensure_can_pick(permissions, run.runner_id)

    item = await service.confirm_unavailable(item_id, data.hold_duration_ms)
    return RunItemResponse.model_validate(item)


# ==================== STORE VISIT ====================

@router.post(
    "/runs/{run_id}/stores/{store_id}/complete",
    response_model=CompleteStoreVisitResponse,
    dependencies=[Depends(require_permissions("picking:update"))]
)
async def complete_store_visit(
    run_id: uuid.UUID,
    store_id: uuid.UUID,
    data: CompleteStoreVisitRequest,
    db: DB,
    current_user: CurrentUser,
    permissions: Permissions,
):
    """
    Confirm a store visit with its receipt photo.

    Safe to retry: a visit that is already confirmed returns the existing
    confirmation with ``created`` false.
    """
    run = await RunLifecycleService(db).get_run(run_id)
    if run is None:
        raise UnknownReference("Run not found", {"run_id": str(run_id)})
    ensure_can_pick(permissions, run.runner_id)

    result = await PickingService(db).complete_store_visit(
        run_id=run_id,
        store_id=store_id,
        receipt_image_url=data.receipt_image_url,
        notes=data.notes,
        confirmed_by=current_user.user_id,
    )
    return CompleteStoreVisitResponse.model_validate(result)
