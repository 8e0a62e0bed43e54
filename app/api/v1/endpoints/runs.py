"""Run API endpoints: consolidation, lifecycle and cancellation."""
from typing import Optional
import uuid

from fastapi import APIRouter, HTTPException, status, Query, Depends

from app.api.deps import DB, require_permissions
from app.models.run import RunStatus
from app.schemas.run import (
    RunGenerateRequest,
    RunGenerateResponse,
    GeneratedRunResponse,
    RunActivateRequest,
    RunAssignRequest,
    RunResponse,
    RunDetailResponse,
    RunListResponse,
    RunProgressResponse,
    RunCancelRequest,
    RunCancelResponse,
    RunCancelResult,
)
from app.services.consolidation_service import ConsolidationService
from app.services.run_lifecycle_service import RunLifecycleService


router = APIRouter()


# ==================== CONSOLIDATION ====================

@router.post(
    "/generate",
    response_model=RunGenerateResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions("runs:create"))]
)
async def generate_runs(
    data: RunGenerateRequest,
    db: DB,
):
    """Consolidate pending order items and returns into draft runs."""
    result = await ConsolidationService(db).generate_runs(
        order_item_ids=data.order_item_ids,
        return_ids=data.return_ids,
    )
    return RunGenerateResponse(
        runs=[GeneratedRunResponse.model_validate(r) for r in result.runs],
        order_items_assigned=result.order_items_assigned,
        returns_assigned=result.returns_assigned,
    )


# ==================== CANCELLATION ====================

@router.post(
    "/cancel",
    response_model=RunCancelResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_permissions("runs:cancel"))]
)
async def cancel_runs(
    data: RunCancelRequest,
    db: DB,
):
    """
    Cancel a batch of runs.

    Runs with any picked item are closed as completed and only their
    unpicked items revert; runs with nothing picked are cancelled outright.
    """
    outcomes = await RunLifecycleService(db).cancel_runs(data.run_ids)
    return RunCancelResponse(
        results=[RunCancelResult.model_validate(o) for o in outcomes]
    )


# ==================== RUN QUERIES ====================

@router.get(
    "",
    response_model=RunListResponse,
    dependencies=[Depends(require_permissions("runs:view"))]
)
async def list_runs(
    db: DB,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    status: Optional[RunStatus] = Query(None),
    runner_id: Optional[uuid.UUID] = Query(None),
):
    """Get paginated list of runs, newest first."""
    runs, total = await RunLifecycleService(db).get_runs(
        status=status.value if status else None,
        runner_id=runner_id,
        skip=skip,
        limit=limit,
    )
    return RunListResponse(
        items=[RunResponse.model_validate(r) for r in runs],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/{run_id}",
    response_model=RunDetailResponse,
    dependencies=[Depends(require_permissions("runs:view"))]
)
async def get_run(
    run_id: uuid.UUID,
    db: DB,
):
    """Get run with items."""
    run = await RunLifecycleService(db).get_run(run_id, with_items=True)
    if not run:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Run not found"
        )
    return RunDetailResponse.model_validate(run)


@router.get(
    "/{run_id}/progress",
    response_model=RunProgressResponse,
    dependencies=[Depends(require_permissions("runs:view"))]
)
async def get_run_progress(
    run_id: uuid.UUID,
    db: DB,
):
    """Per-store progress of a run."""
    progress = await RunLifecycleService(db).get_run_progress(run_id)
    return RunProgressResponse.model_validate(progress)


# ==================== LIFECYCLE ====================

@router.post(
    "/{run_id}/activate",
    response_model=RunResponse,
    dependencies=[Depends(require_permissions("runs:manage"))]
)
async def activate_run(
    run_id: uuid.UUID,
    db: DB,
    data: Optional[RunActivateRequest] = None,
):
    """Hand a draft run to the courier."""
    data = data or RunActivateRequest()
    run = await RunLifecycleService(db).activate_run(
        run_id,
        runner_id=data.runner_id,
        runner_name=data.runner_name,
    )
    return RunResponse.model_validate(run)


@router.post(
    "/{run_id}/assign",
    response_model=RunResponse,
    dependencies=[Depends(require_permissions("runs:manage"))]
)
async def assign_runner(
    run_id: uuid.UUID,
    data: RunAssignRequest,
    db: DB,
):
    """Assign or clear the courier of a run."""
    run = await RunLifecycleService(db).assign_runner(
        run_id,
        runner_id=data.runner_id,
        runner_name=data.runner_name,
    )
    return RunResponse.model_validate(run)


@router.post(
    "/{run_id}/complete",
    response_model=RunResponse,
    dependencies=[Depends(require_permissions("runs:manage"))]
)
async def complete_run(
    run_id: uuid.UUID,
    db: DB,
):
    """Mark an active run as dropped off once every store is confirmed."""
    run = await RunLifecycleService(db).complete_run(run_id)
    return RunResponse.model_validate(run)
