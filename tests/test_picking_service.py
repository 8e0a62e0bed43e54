from decimal import Decimal
import uuid

import pytest
from sqlalchemy import select, func

from app.config import settings
from app.core.exceptions import (
    InvalidQuantity, InvalidRunState, ReceiptRequired, UnconfirmedAction, UnknownReference,
)
from app.models import (
    LedgerEntry, OrderItemStatus, Product, ReturnStatus,
    RunItem, RunItemStatus, RunItemType, TransactionType,
)
from app.services.picking_service import (
    PickingService, clamp_picked_qty, compute_visit_totals, final_item_status,
)
from app.services.run_lifecycle_service import RunLifecycleService
from tests.factories import (
    create_store, create_product, create_order_item, create_return, generate_active_run,
)


RECEIPT = "https://receipts.example.com/visit-1.jpg"


def _item(run, type_, barcode=None):
    return next(
        i for i in run.items
        if i.type == type_ and (barcode is None or i.barcode == barcode)
    )


async def _single_pickup_run(session, quantity=2, cost="20.00", inventory=10):
    store = await create_store(session)
    product = await create_product(session, store, "B-SHIRT", cost_price=cost, inventory=inventory)
    order_item = await create_order_item(session, "B-SHIRT", quantity=quantity)
    run = await generate_active_run(session)
    return store, product, order_item, run


# ==================== PURE HELPERS ====================

def test_clamp_picked_qty_bounds():
    assert clamp_picked_qty(0, 5, target_qty=2, slack=10) == 5
    assert clamp_picked_qty(5, 100, target_qty=2, slack=10) == 12
    assert clamp_picked_qty(5, -50, target_qty=2, slack=10) == 0


# ==================== PICK PROGRESS ====================

async def test_adjust_clamps_to_target_plus_slack(session):
    _, _, _, run = await _single_pickup_run(session, quantity=2)
    item = run.items[0]
    service = PickingService(session)

    item = await service.adjust(item.id, 1)
    assert item.picked_qty == 1

    item = await service.adjust(item.id, 500)
    assert item.picked_qty == 2 + settings.OVER_PICK_SLACK

    item = await service.adjust(item.id, -500)
    assert item.picked_qty == 0


async def test_set_picked_quantity_rejects_out_of_range(session):
    _, _, _, run = await _single_pickup_run(session, quantity=2)
    item_id = run.items[0].id
    service = PickingService(session)

    with pytest.raises(InvalidQuantity):
        await service.set_picked_quantity(item_id, -1)
    with pytest.raises(InvalidQuantity):
        await service.set_picked_quantity(item_id, 2 + settings.OVER_PICK_SLACK + 1)

    item = await service.set_picked_quantity(item_id, 2)
    assert item.picked_qty == 2


async def test_picking_requires_active_run(session):
    _, _, _, run = await _single_pickup_run(session)
    item_id = run.items[0].id
    await RunLifecycleService(session).cancel_run(run.id)

    with pytest.raises(InvalidRunState):
        await PickingService(session).adjust(item_id, 1)


async def test_unknown_item(session):
    with pytest.raises(UnknownReference):
        await PickingService(session).adjust(uuid.uuid4(), 1)


async def test_confirm_unavailable_requires_sustained_hold(session):
    _, _, _, run = await _single_pickup_run(session, quantity=2)
    item = run.items[0]
    service = PickingService(session)
    await service.set_picked_quantity(item.id, 2)

    with pytest.raises(UnconfirmedAction):
        await service.confirm_unavailable(item.id, hold_duration_ms=300)

    item = await service.confirm_unavailable(
        item.id, hold_duration_ms=settings.CONFIRM_UNAVAILABLE_HOLD_MS
    )
    assert item.picked_qty == 0
    assert item.status == RunItemStatus.NOT_FOUND.value

    # Finding it after all puts the line back in play
    item = await service.adjust(item.id, 1)
    assert item.status == RunItemStatus.PENDING.value


# ==================== STORE VISIT ====================

async def test_store_visit_nets_pickups_against_returns(session):
    store = await create_store(session, "Harbor Outlet")
    await create_product(session, store, "B-PICK", cost_price="5.00", inventory=20)
    await create_product(session, store, "B-RET", cost_price="5.00", inventory=3)
    first = await create_order_item(session, "B-PICK", quantity=6)
    second = await create_order_item(session, "B-PICK", quantity=4)
    ret = await create_return(session, store, "B-RET", quantity=2)
    run = await generate_active_run(session)

    service = PickingService(session)
    pickup = _item(run, RunItemType.PICKUP.value)
    returned = _item(run, RunItemType.RETURN.value)
    await service.set_picked_quantity(pickup.id, 10)
    await service.set_picked_quantity(returned.id, 2)

    visit = await service.complete_store_visit(run.id, store.id, RECEIPT, notes="All good")

    assert visit.created is True
    assert visit.items_finalized == 2
    assert visit.confirmation.pickup_amount == Decimal("50.00")
    assert visit.confirmation.return_amount == Decimal("10.00")
    assert visit.confirmation.total_amount == Decimal("40.00")

    entry = visit.ledger_entry
    assert entry.transaction_type == TransactionType.DEBIT.value
    assert entry.amount == Decimal("40.00")
    assert entry.run_number == run.run_number
    assert entry.notes == f"Run #{run.run_number} - pickups & returns"

    assert pickup.status == RunItemStatus.PICKED.value
    assert returned.status == RunItemStatus.RETURNED.value

    for source in (first, second):
        await session.refresh(source)
        assert source.status == OrderItemStatus.PICKED.value
    await session.refresh(ret)
    assert ret.status == ReturnStatus.PROCESSED.value
    assert ret.processed_at is not None

    inventory = dict((await session.execute(select(Product.barcode, Product.inventory))).all())
    assert inventory == {"B-PICK": 10, "B-RET": 5}


async def test_pickup_and_return_of_same_barcode_both_reach_inventory(session):
    store = await create_store(session)
    product = await create_product(session, store, "B-SHIRT", cost_price="5.00", inventory=10)
    await create_order_item(session, "B-SHIRT", quantity=3)
    await create_return(session, store, "B-SHIRT", quantity=1)
    run = await generate_active_run(session)

    service = PickingService(session)
    await service.set_picked_quantity(_item(run, RunItemType.PICKUP.value).id, 3)
    await service.set_picked_quantity(_item(run, RunItemType.RETURN.value).id, 1)
    await service.complete_store_visit(run.id, store.id, RECEIPT)

    await session.refresh(product)
    assert product.inventory == 8


async def test_store_visit_with_only_returns_credits_the_store(session):
    store = await create_store(session)
    await create_return(session, store, "R-UNLISTED", quantity=1, return_amount="15.00")
    run = await generate_active_run(session)
    item = run.items[0]

    service = PickingService(session)
    await service.adjust(item.id, 1)
    visit = await service.complete_store_visit(run.id, store.id, RECEIPT)

    assert visit.confirmation.total_amount == Decimal("-15.00")
    assert visit.ledger_entry.transaction_type == TransactionType.CREDIT.value
    assert visit.ledger_entry.amount == Decimal("15.00")


async def test_zero_net_visit_writes_no_ledger_entry(session):
    store = await create_store(session)
    await create_product(session, store, "B-SHIRT", cost_price="20.00")
    await create_order_item(session, "B-SHIRT", quantity=1)
    await create_return(session, store, "B-SHIRT", quantity=1)
    run = await generate_active_run(session)

    service = PickingService(session)
    for item in run.items:
        await service.adjust(item.id, 1)
    visit = await service.complete_store_visit(run.id, store.id, RECEIPT)

    assert visit.confirmation.total_amount == Decimal("0.00")
    assert visit.ledger_entry is None
    assert await session.scalar(select(func.count(LedgerEntry.id))) == 0


async def test_unpicked_lines_return_to_pending_pool(session):
    store, product, order_item, run = await _single_pickup_run(session, quantity=2, inventory=10)
    run_id = run.id

    visit = await PickingService(session).complete_store_visit(run_id, store.id, RECEIPT)

    assert visit.ledger_entry is None
    item = (await session.execute(select(RunItem).where(RunItem.run_id == run_id))).scalar_one()
    assert item.status == RunItemStatus.NOT_FOUND.value
    await session.refresh(order_item)
    await session.refresh(product)
    assert order_item.status == OrderItemStatus.PENDING.value
    assert order_item.run_id is None
    assert product.inventory == 10


async def test_receipt_is_required(session):
    store, _, _, run = await _single_pickup_run(session)

    with pytest.raises(ReceiptRequired):
        await PickingService(session).complete_store_visit(run.id, store.id, "   ")


async def test_completing_a_visit_twice_returns_existing_confirmation(session):
    store, _, _, run = await _single_pickup_run(session, quantity=2)
    service = PickingService(session)
    await service.set_picked_quantity(run.items[0].id, 2)

    first = await service.complete_store_visit(run.id, store.id, RECEIPT)
    second = await service.complete_store_visit(run.id, store.id, RECEIPT)

    assert first.created is True
    assert second.created is False
    assert second.confirmation.id == first.confirmation.id
    assert second.ledger_entry.id == first.ledger_entry.id
    assert await session.scalar(select(func.count(LedgerEntry.id))) == 1


async def test_confirmed_store_is_locked_for_picking(session):
    store, _, _, run = await _single_pickup_run(session, quantity=2)
    service = PickingService(session)
    item_id = run.items[0].id
    await service.adjust(item_id, 2)
    await service.complete_store_visit(run.id, store.id, RECEIPT)

    with pytest.raises(InvalidRunState):
        await service.adjust(item_id, -1)


async def test_store_without_items_in_run(session):
    _, _, _, run = await _single_pickup_run(session)
    other = await create_store(session, "Elsewhere")
    await session.commit()

    with pytest.raises(UnknownReference):
        await PickingService(session).complete_store_visit(run.id, other.id, RECEIPT)


def test_visit_totals_and_final_status():
    pickup = RunItem(type="pickup", target_qty=3, picked_qty=3, cost_price=Decimal("2.50"))
    missing = RunItem(type="pickup", target_qty=1, picked_qty=0, cost_price=Decimal("9.00"))
    back = RunItem(type="return", target_qty=1, picked_qty=1, cost_price=Decimal("4.00"))

    totals = compute_visit_totals([pickup, missing, back])

    assert totals.pickup_amount == Decimal("7.50")
    assert totals.return_amount == Decimal("4.00")
    assert totals.net_amount == Decimal("3.50")
    assert final_item_status(pickup) == RunItemStatus.PICKED.value
    assert final_item_status(missing) == RunItemStatus.NOT_FOUND.value
    assert final_item_status(back) == RunItemStatus.RETURNED.value
