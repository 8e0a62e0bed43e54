"""Helpers that insert reference data and demand for tests (flush, no commit)."""
from decimal import Decimal
from typing import Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.models import (
    Store, Product, Order, OrderItem, ReturnRequest, Run, RunStatus,
)
from app.services.consolidation_service import ConsolidationService
from app.services.run_lifecycle_service import RunLifecycleService


async def create_store(session: AsyncSession, name: str = "North Street Boutique") -> Store:
    store = Store(id=uuid.uuid4(), name=name)
    session.add(store)
    await session.flush()
    return store


async def create_product(
    session: AsyncSession,
    store: Store,
    barcode: str,
    style_name: str = "Linen Shirt",
    cost_price: str = "20.00",
    inventory: int = 10,
    size: Optional[str] = None,
) -> Product:
    product = Product(
        id=uuid.uuid4(),
        barcode=barcode,
        store_id=store.id,
        style_name=style_name,
        size=size,
        cost_price=Decimal(cost_price),
        inventory=inventory,
    )
    session.add(product)
    await session.flush()
    return product


async def create_order_item(
    session: AsyncSession,
    barcode: str,
    quantity: int = 1,
    order: Optional[Order] = None,
) -> OrderItem:
    if order is None:
        order = Order(
            id=uuid.uuid4(),
            platform="marketplace",
            platform_order_id=f"MP-{uuid.uuid4().hex[:10]}",
        )
        session.add(order)
        await session.flush()
    item = OrderItem(id=uuid.uuid4(), order_id=order.id, barcode=barcode, quantity=quantity)
    session.add(item)
    await session.flush()
    return item


async def create_order(session: AsyncSession, platform_order_id: str = "MP-1001") -> Order:
    order = Order(id=uuid.uuid4(), platform="marketplace", platform_order_id=platform_order_id)
    session.add(order)
    await session.flush()
    return order


async def create_return(
    session: AsyncSession,
    store: Store,
    barcode: str,
    quantity: int = 1,
    return_amount: str = "0",
    style_name: str = "Linen Shirt",
) -> ReturnRequest:
    ret = ReturnRequest(
        id=uuid.uuid4(),
        store_id=store.id,
        store_name=store.name,
        barcode=barcode,
        style_name=style_name,
        quantity=quantity,
        return_amount=Decimal(return_amount),
    )
    session.add(ret)
    await session.flush()
    return ret


async def create_run(session: AsyncSession, run_number: int, status: str = RunStatus.DRAFT.value) -> Run:
    """A bare run row, bypassing consolidation."""
    run = Run(id=uuid.uuid4(), run_number=run_number, status=status)
    session.add(run)
    await session.flush()
    return run


async def generate_active_run(
    session: AsyncSession,
    runner_id: Optional[uuid.UUID] = None,
) -> Run:
    """Consolidate everything pending into one run and hand it to a courier."""
    await session.commit()
    result = await ConsolidationService(session).generate_runs()
    run_id = result.runs[0].run_id
    await RunLifecycleService(session).activate_run(run_id, runner_id=runner_id, runner_name="Courier")
    return await RunLifecycleService(session).get_run(run_id, with_items=True)
