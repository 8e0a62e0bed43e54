"""
Run Lifecycle & Cancellation

Owns run status changes after generation: activation, runner assignment,
"dropped off" completion, and batch cancellation that hands unconsumed work
back to the pending pool.

Cancellation rule, per run:
    any item with picked_qty > 0  -> run completed, only unpicked items revert
    nothing picked                -> run cancelled, every item reverts

Each run in a cancellation batch is its own transaction; one failing run is
reported in its result and does not stop the others.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select, func
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import FulfillmentError, InvalidRunState, UnknownReference
from app.models.order import OrderItem, OrderItemStatus
from app.models.return_request import ReturnRequest, ReturnStatus
from app.models.run import (
    Run, RunItem, RunConfirmation,
    RunStatus, RunItemType, RunItemStatus,
)
from app.services.ledger_service import LedgerService
from app.services.run_state_machine import (
    can_assign_runner,
    is_terminal,
    transition_run,
    validate_transition,
)


logger = logging.getLogger(__name__)


@dataclass
class CancellationOutcome:
    run_id: str
    status: Optional[str]
    picked_count: int = 0
    reverted_count: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None


@dataclass
class StoreProgress:
    store_id: uuid.UUID
    store_name: str
    item_count: int = 0
    style_count: int = 0
    target_units: int = 0
    picked_units: int = 0
    pickup_count: int = 0
    return_count: int = 0
    is_confirmed: bool = False


@dataclass
class RunProgress:
    run_id: uuid.UUID
    run_number: int
    status: str
    stores: List[StoreProgress] = field(default_factory=list)

    @property
    def stores_total(self) -> int:
        return len(self.stores)

    @property
    def stores_completed(self) -> int:
        return sum(1 for s in self.stores if s.is_confirmed)

    @property
    def target_units(self) -> int:
        return sum(s.target_units for s in self.stores)

    @property
    def picked_units(self) -> int:
        return sum(s.picked_units for s in self.stores)

    @property
    def percent_complete(self) -> float:
        if not self.stores:
            return 0.0
        return round(self.stores_completed * 100.0 / len(self.stores), 1)


class RunLifecycleService:
    """Service for run status transitions and cancellation."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== QUERIES ====================

    async def get_run(self, run_id: uuid.UUID, with_items: bool = False) -> Optional[Run]:
        stmt = select(Run).where(Run.id == run_id)
        if with_items:
            stmt = stmt.options(selectinload(Run.items))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_runs(
        self,
        status: Optional[str] = None,
        runner_id: Optional[uuid.UUID] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Run], int]:
        """Get paginated runs, newest run number first."""
        stmt = select(Run)
        count_stmt = select(func.count(Run.id))

        filters = []
        if status:
            filters.append(Run.status == status)
        if runner_id:
            filters.append(Run.runner_id == runner_id)
        if filters:
            stmt = stmt.where(*filters)
            count_stmt = count_stmt.where(*filters)

        total = (await self.db.execute(count_stmt)).scalar() or 0
        stmt = stmt.order_by(Run.run_number.desc()).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def _lock_run(self, run_id: uuid.UUID) -> Run:
        result = await self.db.execute(
            select(Run)
            .where(Run.id == run_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        run = result.scalar_one_or_none()
        if run is None:
            raise UnknownReference("Run not found", {"run_id": str(run_id)})
        return run

    async def get_run_progress(self, run_id: uuid.UUID) -> RunProgress:
        """Per-store pick summary for a run."""
        run = await self.get_run(run_id)
        if run is None:
            raise UnknownReference("Run not found", {"run_id": str(run_id)})

        items = (await self.db.execute(
            select(RunItem).where(RunItem.run_id == run_id)
        )).scalars().all()
        confirmed = set((await self.db.execute(
            select(RunConfirmation.store_id).where(RunConfirmation.run_id == run_id)
        )).scalars().all())

        stores = {}
        styles = {}
        for item in items:
            progress = stores.get(item.store_id)
            if progress is None:
                progress = StoreProgress(
                    store_id=item.store_id,
                    store_name=item.store_name,
                    is_confirmed=item.store_id in confirmed,
                )
                stores[item.store_id] = progress
                styles[item.store_id] = set()
            progress.item_count += 1
            progress.target_units += item.target_qty
            progress.picked_units += item.picked_qty or 0
            if item.type == RunItemType.RETURN.value:
                progress.return_count += 1
            else:
                progress.pickup_count += 1
            styles[item.store_id].add(item.style_name)

        for store_id, progress in stores.items():
            progress.style_count = len(styles[store_id])

        return RunProgress(
            run_id=run.id,
            run_number=run.run_number,
            status=run.status,
            stores=sorted(stores.values(), key=lambda s: (s.store_name, str(s.store_id))),
        )

    # ==================== TRANSITIONS ====================

    async def activate_run(
        self,
        run_id: uuid.UUID,
        runner_id: Optional[uuid.UUID] = None,
        runner_name: Optional[str] = None,
    ) -> Run:
        """draft -> active, optionally assigning the courier in the same step."""
        try:
            run = await self._lock_run(run_id)
            if run.status != RunStatus.DRAFT.value:
                raise InvalidRunState(
                    f"Run #{run.run_number} is {run.status}; only draft runs can be activated",
                    {"run_id": str(run_id), "status": run.status},
                )
            transition_run(run, RunStatus.ACTIVE.value)
            if runner_id is not None:
                run.runner_id = runner_id
                run.runner_name = runner_name
            await self.db.commit()
        except FulfillmentError:
            await self.db.rollback()
            raise

        logger.info(f"Run #{run.run_number} activated (runner: {run.runner_name or 'unassigned'})")
        return run

    async def assign_runner(
        self,
        run_id: uuid.UUID,
        runner_id: Optional[uuid.UUID],
        runner_name: Optional[str] = None,
    ) -> Run:
        """Set or clear the courier of a draft or active run."""
        try:
            run = await self._lock_run(run_id)
            if not can_assign_runner(run.status):
                raise InvalidRunState(
                    f"Cannot assign a runner to a {run.status} run",
                    {"run_id": str(run_id), "status": run.status},
                )
            run.runner_id = runner_id
            run.runner_name = runner_name if runner_id is not None else None
            await self.db.commit()
        except FulfillmentError:
            await self.db.rollback()
            raise

        logger.info(f"Run #{run.run_number} assigned to {run.runner_name or runner_id}")
        return run

    async def complete_run(self, run_id: uuid.UUID) -> Run:
        """
        Mark an active run as dropped off.

        Every store in the run must already be confirmed, which also means
        every item is terminal. The run's ledger entries are re-synchronized
        from the (possibly amended) confirmations.
        """
        try:
            run = await self._lock_run(run_id)
            validate_transition(run.status, RunStatus.COMPLETED.value)
            if run.status == RunStatus.COMPLETED.value:
                raise InvalidRunState(
                    f"Run #{run.run_number} is already completed",
                    {"run_id": str(run_id)},
                )

            store_ids = set((await self.db.execute(
                select(RunItem.store_id).where(RunItem.run_id == run_id)
            )).scalars().all())
            confirmed = set((await self.db.execute(
                select(RunConfirmation.store_id).where(RunConfirmation.run_id == run_id)
            )).scalars().all())
            open_stores = store_ids - confirmed
            if open_stores:
                raise InvalidRunState(
                    f"{len(open_stores)} store visit(s) still open on run #{run.run_number}",
                    {"run_id": str(run_id), "open_store_ids": sorted(str(s) for s in open_stores)},
                )

            open_items = await self.db.scalar(
                select(func.count(RunItem.id)).where(
                    RunItem.run_id == run_id,
                    RunItem.status == RunItemStatus.PENDING.value,
                )
            )
            if open_items:
                raise InvalidRunState(
                    f"{open_items} item(s) on run #{run.run_number} are not finalized",
                    {"run_id": str(run_id)},
                )

            await LedgerService(self.db).sync_run_entries(run)
            transition_run(run, RunStatus.COMPLETED.value)
            await self.db.commit()
        except FulfillmentError:
            await self.db.rollback()
            raise
        except Exception:
            await self.db.rollback()
            logger.exception(f"Completing run {run_id} failed, rolled back")
            raise

        logger.info(f"Run #{run.run_number} dropped off and completed")
        return run

    # ==================== CANCELLATION ====================

    async def _revert_sources(self, run: Run, item: RunItem) -> None:
        """Send the source records of an unconsumed item back to pending."""
        if item.type == RunItemType.PICKUP.value:
            result = await self.db.execute(
                select(OrderItem)
                .where(
                    OrderItem.run_id == run.id,
                    OrderItem.barcode == item.barcode,
                    OrderItem.status == OrderItemStatus.ASSIGNED_TO_RUN.value,
                )
                .with_for_update()
            )
            for order_item in result.scalars().all():
                order_item.status = OrderItemStatus.PENDING.value
                order_item.run_id = None
            return

        stmt = select(ReturnRequest).with_for_update()
        if item.original_return_id is not None:
            stmt = stmt.where(ReturnRequest.id == item.original_return_id)
        else:
            stmt = stmt.where(
                ReturnRequest.run_id == run.id,
                ReturnRequest.barcode == item.barcode,
                ReturnRequest.store_id == item.store_id,
            )
        stmt = stmt.where(ReturnRequest.status == ReturnStatus.ASSIGNED_TO_RUN.value)
        for ret in (await self.db.execute(stmt)).scalars().all():
            ret.status = ReturnStatus.PENDING.value
            ret.run_id = None
            ret.run_number = None

    async def cancel_run(self, run_id: uuid.UUID) -> CancellationOutcome:
        """
        Cancel one run in its own transaction.

        Runs already completed or cancelled are reported as they are and
        left untouched.
        """
        try:
            run = await self._lock_run(run_id)
            items = list((await self.db.execute(
                select(RunItem)
                .where(RunItem.run_id == run_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )).scalars().all())

            picked = [i for i in items if (i.picked_qty or 0) > 0]
            unpicked = [i for i in items if (i.picked_qty or 0) == 0]

            if is_terminal(run.status):
                outcome = CancellationOutcome(
                    run_id=str(run_id),
                    status=run.status,
                    picked_count=len(picked) if run.status == RunStatus.COMPLETED.value else 0,
                    reverted_count=0,
                )
                await self.db.commit()
                logger.info(f"Run #{run.run_number} already {run.status}; nothing to cancel")
                return outcome

            if picked:
                new_status = RunStatus.COMPLETED.value
                to_revert = unpicked
            else:
                new_status = RunStatus.CANCELLED.value
                to_revert = items
            validate_transition(run.status, new_status)

            for item in to_revert:
                await self._revert_sources(run, item)
                item.status = RunItemStatus.CANCELLED.value

            # Picked lines keep their sources; they only need a terminal status
            for item in picked:
                if item.status == RunItemStatus.PENDING.value:
                    item.status = (
                        RunItemStatus.RETURNED.value
                        if item.type == RunItemType.RETURN.value
                        else RunItemStatus.PICKED.value
                    )

            transition_run(run, new_status)
            run_number = run.run_number
            await self.db.commit()
        except FulfillmentError as exc:
            await self.db.rollback()
            logger.warning(f"Cancelling run {run_id} rejected: {exc.message}")
            return CancellationOutcome(
                run_id=str(run_id),
                status=None,
                error=exc.message,
                error_kind=exc.kind,
            )
        except Exception as exc:
            await self.db.rollback()
            logger.exception(f"Cancelling run {run_id} failed, rolled back")
            return CancellationOutcome(
                run_id=str(run_id),
                status=None,
                error=str(exc) or type(exc).__name__,
                error_kind="partial_failure",
            )

        logger.info(
            f"Run #{run_number} {new_status}: {len(picked)} picked, "
            f"{len(to_revert)} reverted"
        )
        return CancellationOutcome(
            run_id=str(run_id),
            status=new_status,
            picked_count=len(picked),
            reverted_count=len(to_revert),
        )

    async def cancel_runs(self, run_ids: Sequence[uuid.UUID]) -> List[CancellationOutcome]:
        """
        Cancel a batch of runs, one independent transaction per run.

        Runs share one session, so they are processed in order; duplicate ids
        are processed once.
        """
        outcomes = []
        seen = set()
        for run_id in run_ids:
            if run_id in seen:
                continue
            seen.add(run_id)
            outcomes.append(await self.cancel_run(run_id))

        failed = sum(1 for o in outcomes if o.error)
        logger.info(f"Cancellation batch of {len(outcomes)} runs finished, {failed} failed")
        return outcomes
