"""Picking session: per-item progress at a store and store visit completion."""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    FulfillmentError,
    InvalidQuantity,
    InvalidRunState,
    ReceiptRequired,
    UnconfirmedAction,
    UnknownReference,
)
from app.models.ledger import LedgerEntry
from app.models.order import OrderItem, OrderItemStatus
from app.models.product import Product
from app.models.return_request import ReturnRequest, ReturnStatus
from app.models.run import (
    Run, RunItem, RunConfirmation,
    RunStatus, RunItemType, RunItemStatus,
)
from app.models.store import Store
from app.services.ledger_service import LedgerService, build_run_note, to_money


logger = logging.getLogger(__name__)


def clamp_picked_qty(current: int, delta: int, target_qty: int, slack: int) -> int:
    """picked_qty + delta, bounded to [0, target_qty + slack]."""
    return max(0, min(current + delta, target_qty + slack))


def final_item_status(item: RunItem) -> str:
    """Terminal status a run item takes when its store visit is confirmed."""
    if (item.picked_qty or 0) > 0:
        if item.type == RunItemType.RETURN.value:
            return RunItemStatus.RETURNED.value
        return RunItemStatus.PICKED.value
    return RunItemStatus.NOT_FOUND.value


@dataclass
class VisitTotals:
    pickup_amount: Decimal
    return_amount: Decimal

    @property
    def net_amount(self) -> Decimal:
        """Pickups minus returns; positive means the operator owes the store."""
        return self.pickup_amount - self.return_amount


def compute_visit_totals(items: List[RunItem]) -> VisitTotals:
    pickup = sum(
        (i.line_amount for i in items if i.type == RunItemType.PICKUP.value),
        Decimal("0"),
    )
    returned = sum(
        (i.line_amount for i in items if i.type == RunItemType.RETURN.value),
        Decimal("0"),
    )
    return VisitTotals(pickup_amount=to_money(pickup), return_amount=to_money(returned))


@dataclass
class StoreVisitResult:
    confirmation: RunConfirmation
    created: bool
    ledger_entry: Optional[LedgerEntry] = None
    items_finalized: int = 0


class PickingService:
    """Service for courier picking operations within an active run."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== LOOKUPS ====================

    async def get_item_run(self, item_id: uuid.UUID) -> Run:
        """Run that owns an item (used for access checks before mutating)."""
        result = await self.db.execute(
            select(Run).join(RunItem, RunItem.run_id == Run.id).where(RunItem.id == item_id)
        )
        run = result.scalar_one_or_none()
        if run is None:
            raise UnknownReference("Run item not found", {"item_id": str(item_id)})
        return run

    async def _lock_item(self, item_id: uuid.UUID) -> Tuple[RunItem, Run]:
        """
        Load an item FOR UPDATE and check it can still be picked: its run is
        active and its store visit has not been confirmed.
        """
        result = await self.db.execute(
            select(RunItem)
            .where(RunItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise UnknownReference("Run item not found", {"item_id": str(item_id)})

        run = await self.db.get(Run, item.run_id)
        if run.status != RunStatus.ACTIVE.value:
            raise InvalidRunState(
                f"Run #{run.run_number} is {run.status}; picking requires an active run",
                {"run_id": str(run.id), "status": run.status},
            )

        confirmed = await self.db.scalar(
            select(RunConfirmation.id).where(
                RunConfirmation.run_id == item.run_id,
                RunConfirmation.store_id == item.store_id,
            )
        )
        if confirmed is not None:
            raise InvalidRunState(
                f"Store visit for {item.store_name or item.store_id} is already confirmed",
                {"run_id": str(run.id), "store_id": str(item.store_id)},
            )
        if item.status == RunItemStatus.CANCELLED.value:
            raise InvalidRunState("Run item is cancelled", {"item_id": str(item.id)})
        return item, run

    async def _commit_item(self, item: RunItem) -> RunItem:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception(f"Saving run item {item.id} failed, rolled back")
            raise
        return item

    # ==================== PICK PROGRESS ====================

    async def adjust(self, item_id: uuid.UUID, delta: int) -> RunItem:
        """
        Add delta (negative to undo) to picked_qty, clamped to
        [0, target_qty + OVER_PICK_SLACK].
        """
        try:
            item, _ = await self._lock_item(item_id)
        except FulfillmentError:
            await self.db.rollback()
            raise

        item.picked_qty = clamp_picked_qty(
            item.picked_qty or 0, delta, item.target_qty, settings.OVER_PICK_SLACK
        )
        # Finding stock after "unavailable" puts the line back in play
        if item.status == RunItemStatus.NOT_FOUND.value and item.picked_qty > 0:
            item.status = RunItemStatus.PENDING.value
        return await self._commit_item(item)

    async def set_picked_quantity(self, item_id: uuid.UUID, quantity: int) -> RunItem:
        """Absolute set of picked_qty; rejects values outside the allowed range."""
        try:
            item, _ = await self._lock_item(item_id)
            upper = item.target_qty + settings.OVER_PICK_SLACK
            if quantity < 0 or quantity > upper:
                raise InvalidQuantity(
                    f"Picked quantity must be between 0 and {upper}",
                    {"quantity": quantity, "target_qty": item.target_qty, "max": upper},
                )
        except FulfillmentError:
            await self.db.rollback()
            raise

        item.picked_qty = quantity
        if item.status == RunItemStatus.NOT_FOUND.value and quantity > 0:
            item.status = RunItemStatus.PENDING.value
        return await self._commit_item(item)

    async def confirm_unavailable(self, item_id: uuid.UUID, hold_duration_ms: int) -> RunItem:
        """
        Zero an item and mark it not_found.

        The client must report a sustained hold of at least
        CONFIRM_UNAVAILABLE_HOLD_MS; a tap is not enough. Allowed even when
        the item was already fully picked.
        """
        required = settings.CONFIRM_UNAVAILABLE_HOLD_MS
        if hold_duration_ms is None or hold_duration_ms < required:
            logger.warning(f"Confirm-unavailable on {item_id} rejected: held {hold_duration_ms}ms")
            raise UnconfirmedAction(
                f"Hold for at least {required / 1000:g} seconds to confirm the item is unavailable",
                {"hold_duration_ms": hold_duration_ms, "required_ms": required},
            )

        try:
            item, _ = await self._lock_item(item_id)
        except FulfillmentError:
            await self.db.rollback()
            raise

        item.picked_qty = 0
        item.status = RunItemStatus.NOT_FOUND.value
        logger.info(f"Run item {item.barcode} at {item.store_name} marked not found")
        return await self._commit_item(item)

    # ==================== STORE VISIT COMPLETION ====================

    async def get_confirmation(
        self, run_id: uuid.UUID, store_id: uuid.UUID
    ) -> Optional[RunConfirmation]:
        result = await self.db.execute(
            select(RunConfirmation).where(
                RunConfirmation.run_id == run_id,
                RunConfirmation.store_id == store_id,
            )
        )
        return result.scalar_one_or_none()

    async def _existing_visit(self, confirmation: RunConfirmation) -> StoreVisitResult:
        run_number = await self.db.scalar(select(Run.run_number).where(Run.id == confirmation.run_id))
        entry = None
        if run_number is not None:
            entry = await LedgerService(self.db).get_run_entry(run_number, confirmation.store_id)
        return StoreVisitResult(confirmation=confirmation, created=False, ledger_entry=entry)

    async def complete_store_visit(
        self,
        run_id: uuid.UUID,
        store_id: uuid.UUID,
        receipt_image_url: Optional[str],
        notes: Optional[str] = None,
        confirmed_by: Optional[uuid.UUID] = None,
    ) -> StoreVisitResult:
        """
        Close out one store's visit within a run, in one transaction:

        1. Sum picked value of pickups and returns at the store
        2. Create the RunConfirmation (unique per run and store)
        3. Write the run ledger entry when the net is non-zero
        4. Finalize each item and propagate to its source records and inventory

        Retrying a completed visit returns the existing confirmation and
        writes nothing.

        Raises:
            ReceiptRequired: no receipt reference supplied
            UnknownReference: run unknown, or store has no items in the run
            InvalidRunState: run is not active
        """
        if not receipt_image_url or not receipt_image_url.strip():
            raise ReceiptRequired(
                "A receipt photo is required to complete the store visit",
                {"run_id": str(run_id), "store_id": str(store_id)},
            )

        try:
            result = await self.db.execute(
                select(Run)
                .where(Run.id == run_id)
                .with_for_update()
            )
            run = result.scalar_one_or_none()
            if run is None:
                raise UnknownReference("Run not found", {"run_id": str(run_id)})

            existing = await self.get_confirmation(run_id, store_id)
            if existing is not None:
                visit = await self._existing_visit(existing)
                # Nothing written; ends the transaction and releases the run lock
                await self.db.commit()
                logger.info(f"Run #{run.run_number} store {existing.store_name}: already confirmed, returning existing")
                return visit

            if run.status != RunStatus.ACTIVE.value:
                raise InvalidRunState(
                    f"Run #{run.run_number} is {run.status}; only active runs can confirm store visits",
                    {"run_id": str(run_id), "status": run.status},
                )

            result = await self.db.execute(
                select(RunItem)
                .where(RunItem.run_id == run_id, RunItem.store_id == store_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            items = list(result.scalars().all())
            if not items:
                raise UnknownReference(
                    "Store has no items in this run",
                    {"run_id": str(run_id), "store_id": str(store_id)},
                )

            store_name = items[0].store_name
            if not store_name:
                store = await self.db.get(Store, store_id)
                store_name = store.name if store else ""

            totals = compute_visit_totals(items)
            net = totals.net_amount

            confirmation = RunConfirmation(
                run_id=run_id,
                store_id=store_id,
                store_name=store_name,
                receipt_image_url=receipt_image_url.strip(),
                pickup_amount=totals.pickup_amount,
                return_amount=totals.return_amount,
                total_amount=net,
                notes=notes,
                confirmed_by=confirmed_by,
                confirmed_at=datetime.now(timezone.utc),
            )
            self.db.add(confirmation)
            await self.db.flush()

            entry = None
            if net != 0:
                entry = await LedgerService(self.db).upsert_run_entry(
                    store_id=store_id,
                    store_name=store_name,
                    run_number=run.run_number,
                    net_amount=net,
                    notes=build_run_note(run.run_number, totals.pickup_amount, totals.return_amount),
                    run_confirmation_id=confirmation.id,
                )

            for item in items:
                await self._finalize_item(run, item)

            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent completion of the same visit
            await self.db.rollback()
            existing = await self.get_confirmation(run_id, store_id)
            if existing is None:
                logger.exception(f"Completing store {store_id} on run {run_id} failed, rolled back")
                raise
            logger.warning(f"Store {store_id} on run {run_id} confirmed concurrently, returning existing")
            return await self._existing_visit(existing)
        except FulfillmentError as exc:
            await self.db.rollback()
            logger.warning(f"Store visit completion rejected: {exc.message}")
            raise
        except Exception:
            await self.db.rollback()
            logger.exception(f"Completing store {store_id} on run {run_id} failed, rolled back")
            raise

        logger.info(
            f"Run #{run.run_number} store {store_name} confirmed: "
            f"pickups {totals.pickup_amount}, returns {totals.return_amount}, net {net}"
        )
        return StoreVisitResult(
            confirmation=confirmation,
            created=True,
            ledger_entry=entry,
            items_finalized=len(items),
        )

    async def _finalize_item(self, run: Run, item: RunItem) -> None:
        """Set the item's terminal status and propagate it to its sources."""
        item.status = final_item_status(item)
        picked = item.picked_qty or 0

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
                if picked > 0:
                    order_item.status = OrderItemStatus.PICKED.value
                else:
                    # No not_found state on order lines: demand goes back to the pool
                    order_item.status = OrderItemStatus.PENDING.value
                    order_item.run_id = None

            if picked > 0:
                product = await self._lock_product(item.barcode)
                if product is not None:
                    product.inventory = max(0, (product.inventory or 0) - picked)
                    # Later items may lock the same product with populate_existing
                    await self.db.flush()
            return

        now = datetime.now(timezone.utc)
        for ret in await self._matching_returns(run, item):
            ret.status = ReturnStatus.PROCESSED.value if picked > 0 else ReturnStatus.REJECTED.value
            ret.processed_at = now

        if picked > 0:
            product = await self._lock_product(item.barcode)
            if product is not None:
                product.inventory = (product.inventory or 0) + picked
                await self.db.flush()

    async def _matching_returns(self, run: Run, item: RunItem) -> List[ReturnRequest]:
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
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _lock_product(self, barcode: str) -> Optional[Product]:
        result = await self.db.execute(
            select(Product)
            .where(Product.barcode == barcode)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
