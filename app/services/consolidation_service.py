"""
Consolidation Planner

Aggregates pending demand (order lines and store returns) into bounded
runs for the courier.

Flow:
    1. Select pending OrderItems / ReturnRequests (all, or a caller subset)
    2. Resolve each pickup barcode against the catalog
    3. Group pickups and returns by (store_id, barcode), summing quantities
    4. Order pickups first, then returns, and chunk into RUN_CHUNK_SIZE lines
    5. Per chunk, in one transaction: lock sources, allocate a run number,
       create the Run and its RunItems, mark sources assigned_to_run

Steps 1-3 only read, so any failure there aborts with nothing written.
"""
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    ConflictingAssignment,
    FulfillmentError,
    NoEligibleDemand,
    PartialFailure,
    UnknownReference,
)
from app.models.order import OrderItem, OrderItemStatus
from app.models.product import Product
from app.models.return_request import ReturnRequest, ReturnStatus
from app.models.run import Run, RunItem, RunItemType, RunItemStatus, RunStatus
from app.models.store import Store
from app.services.run_sequence_service import RunSequenceService


logger = logging.getLogger(__name__)


@dataclass
class DemandLine:
    """One aggregated (store_id, barcode, type) line before it becomes a RunItem."""
    type: str
    store_id: uuid.UUID
    barcode: str
    store_name: str
    style_name: str
    size: Optional[str] = None
    color: Optional[str] = None
    image_url: Optional[str] = None
    cost_price: Decimal = Decimal("0")
    quantity: int = 0
    source_ids: List[uuid.UUID] = field(default_factory=list)

    @property
    def sort_key(self) -> Tuple[str, str, str]:
        return (self.store_name.lower(), self.style_name.lower(), self.barcode)


@dataclass
class GeneratedRun:
    run_id: uuid.UUID
    run_number: int
    pickup_count: int
    return_count: int
    total_items: int
    total_stores: int
    total_styles: int
    has_returns: bool


@dataclass
class ConsolidationResult:
    runs: List[GeneratedRun] = field(default_factory=list)
    order_items_assigned: int = 0
    returns_assigned: int = 0


def chunk_lines(lines: Sequence[DemandLine], chunk_size: int) -> List[List[DemandLine]]:
    """Split lines into consecutive chunks of at most chunk_size."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    return [list(lines[i:i + chunk_size]) for i in range(0, len(lines), chunk_size)]


class ConsolidationService:
    """Service that turns pending demand into draft runs."""

    def __init__(self, db: AsyncSession, chunk_size: Optional[int] = None):
        self.db = db
        self.chunk_size = chunk_size or settings.RUN_CHUNK_SIZE

    # ==================== SELECTION ====================

    async def _select_order_items(
        self, order_item_ids: Optional[Sequence[uuid.UUID]]
    ) -> List[OrderItem]:
        if order_item_ids is None:
            result = await self.db.execute(
                select(OrderItem)
                .where(OrderItem.status == OrderItemStatus.PENDING.value)
                .order_by(OrderItem.created_at)
            )
            return list(result.scalars().all())

        wanted = set(order_item_ids)
        if not wanted:
            return []
        result = await self.db.execute(select(OrderItem).where(OrderItem.id.in_(wanted)))
        items = list(result.scalars().all())

        missing = wanted - {i.id for i in items}
        if missing:
            raise UnknownReference(
                f"{len(missing)} order item(s) not found",
                {"order_item_ids": sorted(str(i) for i in missing)},
            )
        taken = [i for i in items if i.status != OrderItemStatus.PENDING.value]
        if taken:
            raise ConflictingAssignment(
                f"{len(taken)} order item(s) are no longer pending",
                {"order_item_ids": sorted(str(i.id) for i in taken)},
            )
        return items

    async def _select_returns(
        self, return_ids: Optional[Sequence[uuid.UUID]]
    ) -> List[ReturnRequest]:
        if return_ids is None:
            result = await self.db.execute(
                select(ReturnRequest)
                .where(ReturnRequest.status == ReturnStatus.PENDING.value)
                .order_by(ReturnRequest.created_at)
            )
            return list(result.scalars().all())

        wanted = set(return_ids)
        if not wanted:
            return []
        result = await self.db.execute(select(ReturnRequest).where(ReturnRequest.id.in_(wanted)))
        returns = list(result.scalars().all())

        missing = wanted - {r.id for r in returns}
        if missing:
            raise UnknownReference(
                f"{len(missing)} return request(s) not found",
                {"return_ids": sorted(str(i) for i in missing)},
            )
        taken = [r for r in returns if r.status != ReturnStatus.PENDING.value]
        if taken:
            raise ConflictingAssignment(
                f"{len(taken)} return request(s) are no longer pending",
                {"return_ids": sorted(str(r.id) for r in taken)},
            )
        return returns

    # ==================== AGGREGATION ====================

    async def _load_products(self, barcodes: set) -> Dict[str, Product]:
        if not barcodes:
            return {}
        result = await self.db.execute(select(Product).where(Product.barcode.in_(barcodes)))
        return {p.barcode: p for p in result.scalars().all()}

    async def _load_store_names(self, store_ids: set) -> Dict[uuid.UUID, str]:
        if not store_ids:
            return {}
        result = await self.db.execute(select(Store.id, Store.name).where(Store.id.in_(store_ids)))
        return {row[0]: row[1] for row in result.all()}

    async def build_lines(
        self,
        order_items: Sequence[OrderItem],
        returns: Sequence[ReturnRequest],
    ) -> List[DemandLine]:
        """
        Aggregate demand into ordered run lines: pickups first, then returns,
        each sorted by store, style and barcode.

        Raises:
            UnknownReference: a pickup barcode has no catalog entry
        """
        products = await self._load_products(
            {i.barcode for i in order_items} | {r.barcode for r in returns}
        )

        unknown = sorted({i.barcode for i in order_items if i.barcode not in products})
        if unknown:
            raise UnknownReference(
                f"{len(unknown)} barcode(s) not found in the product catalog",
                {"barcodes": unknown},
            )

        store_names = await self._load_store_names(
            {p.store_id for p in products.values()} | {r.store_id for r in returns}
        )

        pickups: Dict[Tuple[uuid.UUID, str], DemandLine] = {}
        for item in order_items:
            product = products[item.barcode]
            key = (product.store_id, item.barcode)
            line = pickups.get(key)
            if line is None:
                line = DemandLine(
                    type=RunItemType.PICKUP.value,
                    store_id=product.store_id,
                    barcode=item.barcode,
                    store_name=store_names.get(product.store_id, ""),
                    style_name=product.style_name or item.product_name or "",
                    size=product.size,
                    color=product.color,
                    image_url=product.image_url,
                    cost_price=Decimal(product.cost_price or 0),
                )
                pickups[key] = line
            line.quantity += item.quantity
            line.source_ids.append(item.id)

        return_groups: Dict[Tuple[uuid.UUID, str], DemandLine] = {}
        return_amounts: Dict[Tuple[uuid.UUID, str], Decimal] = {}
        for ret in returns:
            key = (ret.store_id, ret.barcode)
            product = products.get(ret.barcode)
            line = return_groups.get(key)
            if line is None:
                # Returns carry their own names; the barcode may not be catalogued
                line = DemandLine(
                    type=RunItemType.RETURN.value,
                    store_id=ret.store_id,
                    barcode=ret.barcode,
                    store_name=ret.store_name or store_names.get(ret.store_id, ""),
                    style_name=ret.style_name or (product.style_name if product else ""),
                    size=ret.size or (product.size if product else None),
                    color=product.color if product else None,
                    image_url=product.image_url if product else None,
                )
                return_groups[key] = line
                return_amounts[key] = Decimal("0")
            line.quantity += ret.quantity
            line.source_ids.append(ret.id)
            return_amounts[key] += Decimal(ret.return_amount or 0)

        for key, line in return_groups.items():
            product = products.get(line.barcode)
            if product is not None:
                line.cost_price = Decimal(product.cost_price or 0)
            elif line.quantity > 0:
                line.cost_price = (return_amounts[key] / line.quantity).quantize(Decimal("0.01"))

        return (
            sorted(pickups.values(), key=lambda ln: ln.sort_key)
            + sorted(return_groups.values(), key=lambda ln: ln.sort_key)
        )

    # ==================== RUN CREATION ====================

    async def _lock_pending_sources(
        self, lines: Sequence[DemandLine]
    ) -> Tuple[Dict[uuid.UUID, OrderItem], Dict[uuid.UUID, ReturnRequest]]:
        """
        Re-read the chunk's source rows FOR UPDATE and require they are
        still pending, so two consolidations never assign the same record.
        """
        order_ids = [i for ln in lines if ln.type == RunItemType.PICKUP.value for i in ln.source_ids]
        return_ids = [i for ln in lines if ln.type == RunItemType.RETURN.value for i in ln.source_ids]

        order_items: Dict[uuid.UUID, OrderItem] = {}
        if order_ids:
            result = await self.db.execute(
                select(OrderItem)
                .where(OrderItem.id.in_(order_ids))
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            order_items = {i.id: i for i in result.scalars().all()}
            stale = [
                str(i) for i in order_ids
                if i not in order_items
                or order_items[i].status != OrderItemStatus.PENDING.value
            ]
            if stale:
                raise ConflictingAssignment(
                    f"{len(stale)} order item(s) were assigned by another request",
                    {"order_item_ids": stale},
                )

        returns: Dict[uuid.UUID, ReturnRequest] = {}
        if return_ids:
            result = await self.db.execute(
                select(ReturnRequest)
                .where(ReturnRequest.id.in_(return_ids))
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            returns = {r.id: r for r in result.scalars().all()}
            stale = [
                str(i) for i in return_ids
                if i not in returns
                or returns[i].status != ReturnStatus.PENDING.value
            ]
            if stale:
                raise ConflictingAssignment(
                    f"{len(stale)} return request(s) were assigned by another request",
                    {"return_ids": stale},
                )

        return order_items, returns

    async def _create_run(self, lines: Sequence[DemandLine]) -> GeneratedRun:
        """Create one draft run from a chunk. Does NOT commit."""
        order_items, returns = await self._lock_pending_sources(lines)
        run_number = await RunSequenceService(self.db).get_next_number()

        pickup_count = sum(1 for ln in lines if ln.type == RunItemType.PICKUP.value)
        return_count = len(lines) - pickup_count

        run = Run(
            run_number=run_number,
            status=RunStatus.DRAFT.value,
            total_items=sum(ln.quantity for ln in lines),
            total_stores=len({ln.store_id for ln in lines}),
            total_styles=len({ln.style_name for ln in lines}),
            has_returns=return_count > 0,
        )
        self.db.add(run)
        await self.db.flush()

        for line in lines:
            is_return = line.type == RunItemType.RETURN.value
            self.db.add(RunItem(
                run_id=run.id,
                type=line.type,
                barcode=line.barcode,
                store_id=line.store_id,
                store_name=line.store_name,
                style_name=line.style_name,
                size=line.size,
                color=line.color,
                image_url=line.image_url,
                cost_price=line.cost_price,
                target_qty=line.quantity,
                picked_qty=0,
                status=RunItemStatus.PENDING.value,
                # A grouped return maps back to its request only when it had one source
                original_return_id=(
                    line.source_ids[0] if is_return and len(line.source_ids) == 1 else None
                ),
            ))

            if is_return:
                for source_id in line.source_ids:
                    ret = returns[source_id]
                    ret.status = ReturnStatus.ASSIGNED_TO_RUN.value
                    ret.run_id = run.id
                    ret.run_number = run_number
            else:
                for source_id in line.source_ids:
                    item = order_items[source_id]
                    item.status = OrderItemStatus.ASSIGNED_TO_RUN.value
                    item.run_id = run.id

        await self.db.flush()

        return GeneratedRun(
            run_id=run.id,
            run_number=run_number,
            pickup_count=pickup_count,
            return_count=return_count,
            total_items=run.total_items,
            total_stores=run.total_stores,
            total_styles=run.total_styles,
            has_returns=run.has_returns,
        )

    async def generate_runs(
        self,
        order_item_ids: Optional[Sequence[uuid.UUID]] = None,
        return_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> ConsolidationResult:
        """
        Consolidate pending demand into one or more draft runs.

        With neither id list given, the whole pending pool is used. Once
        either list is given, only the listed records are consolidated.

        Each chunk is committed on its own. If a later chunk fails, earlier
        runs stay committed and PartialFailure reports them.

        Raises:
            NoEligibleDemand: nothing selected
            UnknownReference: unknown id or uncatalogued pickup barcode
            ConflictingAssignment: a selected record is no longer pending
            PartialFailure: some chunks committed before another failed
        """
        if order_item_ids is not None or return_ids is not None:
            order_item_ids = order_item_ids or []
            return_ids = return_ids or []

        order_items = await self._select_order_items(order_item_ids)
        returns = await self._select_returns(return_ids)
        if not order_items and not returns:
            raise NoEligibleDemand("No pending order items or returns selected")

        lines = await self.build_lines(order_items, returns)
        chunks = chunk_lines(lines, self.chunk_size)

        result = ConsolidationResult()
        for index, chunk in enumerate(chunks):
            try:
                generated = await self._create_run(chunk)
                await self.db.commit()
            except Exception as exc:
                await self.db.rollback()
                if isinstance(exc, FulfillmentError):
                    logger.warning(f"Consolidation chunk {index + 1}/{len(chunks)} rejected: {exc.message}")
                else:
                    logger.exception(f"Consolidation chunk {index + 1}/{len(chunks)} failed, rolled back")
                if not result.runs:
                    raise
                raise PartialFailure(
                    f"Created {len(result.runs)} of {len(chunks)} runs before a failure",
                    {
                        "created_run_numbers": [r.run_number for r in result.runs],
                        "failed_chunk": index + 1,
                        "cause": getattr(exc, "kind", type(exc).__name__),
                    },
                ) from exc

            result.runs.append(generated)
            result.order_items_assigned += sum(
                len(ln.source_ids) for ln in chunk if ln.type == RunItemType.PICKUP.value
            )
            result.returns_assigned += sum(
                len(ln.source_ids) for ln in chunk if ln.type == RunItemType.RETURN.value
            )

        logger.info(
            f"Consolidated {result.order_items_assigned} order items and "
            f"{result.returns_assigned} returns into runs "
            f"{', '.join(f'#{r.run_number}' for r in result.runs)}"
        )
        return result
