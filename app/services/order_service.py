"""Order line operations outside the run flow."""
import logging
import uuid
from dataclasses import dataclass
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictingAssignment, FulfillmentError, UnknownReference
from app.models.order import (
    Order, OrderItem, OrderItemStatus, OrderStatus, derive_order_status,
)


logger = logging.getLogger(__name__)


@dataclass
class OrderStatusSummary:
    order: Order
    status: OrderStatus
    items: List[OrderItem]

    @property
    def item_counts(self) -> dict:
        counts = {}
        for item in self.items:
            counts[item.status] = counts.get(item.status, 0) + 1
        return counts


class OrderService:
    """Service for order status and order line changes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_order(self, order_id: uuid.UUID) -> Order:
        order = await self.db.get(Order, order_id)
        if order is None:
            raise UnknownReference("Order not found", {"order_id": str(order_id)})
        return order

    async def _get_items(self, order_id: uuid.UUID, for_update: bool = False) -> List[OrderItem]:
        stmt = select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.created_at)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_order_status(self, order_id: uuid.UUID) -> OrderStatusSummary:
        """Order status derived from its items on every read."""
        order = await self._get_order(order_id)
        items = await self._get_items(order_id)
        return OrderStatusSummary(
            order=order,
            status=derive_order_status(i.status for i in items),
            items=items,
        )

    async def cancel_item(self, item_id: uuid.UUID, reason: str) -> OrderItem:
        """
        Cancel a pending order line.

        Lines already consolidated into a run must be reverted by cancelling
        the run first.
        """
        try:
            result = await self.db.execute(
                select(OrderItem)
                .where(OrderItem.id == item_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            item = result.scalar_one_or_none()
            if item is None:
                raise UnknownReference("Order item not found", {"order_item_id": str(item_id)})
            if item.status != OrderItemStatus.PENDING.value:
                raise ConflictingAssignment(
                    f"Only pending order items can be cancelled (item is {item.status})",
                    {"order_item_id": str(item_id), "status": item.status},
                )

            item.status = OrderItemStatus.CANCELLED.value
            item.notes = f"Cancelled: {reason}"
            await self.db.commit()
        except FulfillmentError:
            await self.db.rollback()
            raise

        logger.info(f"Order item {item.barcode} ({item_id}) cancelled: {reason}")
        return item

    async def ship_items(self, order_id: uuid.UUID) -> OrderStatusSummary:
        """Hand every picked line of an order over to the marketplace."""
        try:
            order = await self._get_order(order_id)
            items = await self._get_items(order_id, for_update=True)
            picked = [i for i in items if i.status == OrderItemStatus.PICKED.value]
            if not picked:
                raise ConflictingAssignment(
                    "Order has no picked items to ship",
                    {"order_id": str(order_id)},
                )
            for item in picked:
                item.status = OrderItemStatus.SHIPPED.value
            await self.db.commit()
        except FulfillmentError:
            await self.db.rollback()
            raise

        status = derive_order_status(i.status for i in items)
        logger.info(
            f"Order {order.platform_order_id}: {len(picked)} item(s) shipped, order now {status.value}"
        )
        return OrderStatusSummary(order=order, status=status, items=items)
