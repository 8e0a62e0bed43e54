"""Order API endpoints."""
import uuid

from fastapi import APIRouter, Depends

from app.api.deps import DB, require_permissions
from app.schemas.order import (
    OrderItemResponse,
    OrderStatusResponse,
    OrderItemCancelRequest,
)
from app.services.order_service import OrderService, OrderStatusSummary


router = APIRouter()


def _status_response(summary: OrderStatusSummary) -> OrderStatusResponse:
    return OrderStatusResponse(
        order_id=summary.order.id,
        platform=summary.order.platform,
        platform_order_id=summary.order.platform_order_id,
        status=summary.status.value,
        item_counts=summary.item_counts,
        items=[OrderItemResponse.model_validate(i) for i in summary.items],
    )


@router.get(
    "/{order_id}/status",
    response_model=OrderStatusResponse,
    dependencies=[Depends(require_permissions("orders:manage"))]
)
async def get_order_status(
    order_id: uuid.UUID,
    db: DB,
):
    """Order status, derived from its items."""
    summary = await OrderService(db).get_order_status(order_id)
    return _status_response(summary)


@router.post(
    "/items/{item_id}/cancel",
    response_model=OrderItemResponse,
    dependencies=[Depends(require_permissions("orders:manage"))]
)
async def cancel_order_item(
    item_id: uuid.UUID,
    data: OrderItemCancelRequest,
    db: DB,
):
    """Cancel a pending order line."""
    item = await OrderService(db).cancel_item(item_id, data.reason)
    return OrderItemResponse.model_validate(item)


@router.post(
    "/{order_id}/ship",
    response_model=OrderStatusResponse,
    dependencies=[Depends(require_permissions("orders:manage"))]
)
async def ship_order(
    order_id: uuid.UUID,
    db: DB,
):
    """Mark every picked line of the order as shipped."""
    summary = await OrderService(db).ship_items(order_id)
    return _status_response(summary)
