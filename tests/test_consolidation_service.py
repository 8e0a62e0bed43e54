from decimal import Decimal
import uuid

import pytest
from sqlalchemy import select, func

from app.core.exceptions import (
    ConflictingAssignment, NoEligibleDemand, PartialFailure, UnknownReference,
)
from app.models import (
    OrderItem, OrderItemStatus, ReturnRequest, ReturnStatus,
    Run, RunItem, RunItemType, RunStatus,
)
from app.services.consolidation_service import ConsolidationService, DemandLine, chunk_lines
from app.services.run_sequence_service import RunSequenceService
from tests.factories import (
    create_store, create_product, create_order_item, create_return, create_run,
)


async def _run_items(session, run_id):
    result = await session.execute(select(RunItem).where(RunItem.run_id == run_id))
    return list(result.scalars().all())


async def test_generate_runs_consolidates_whole_pending_pool(session):
    north = await create_store(session, "North Street Boutique")
    harbor = await create_store(session, "Harbor Outlet")
    await create_product(session, north, "B-SHIRT", style_name="Linen Shirt", cost_price="20.00")
    await create_product(session, harbor, "B-TOTE", style_name="Canvas Tote", cost_price="12.50")
    first = await create_order_item(session, "B-SHIRT", quantity=2)
    second = await create_order_item(session, "B-SHIRT", quantity=1)
    tote = await create_order_item(session, "B-TOTE", quantity=1)
    ret = await create_return(session, north, "B-SHIRT", quantity=1, style_name="Linen Shirt")
    await session.commit()

    result = await ConsolidationService(session).generate_runs()

    assert len(result.runs) == 1
    generated = result.runs[0]
    assert generated.run_number == 1
    assert generated.pickup_count == 2
    assert generated.return_count == 1
    assert generated.total_items == 5
    assert generated.total_stores == 2
    assert generated.total_styles == 2
    assert generated.has_returns is True
    assert result.order_items_assigned == 3
    assert result.returns_assigned == 1

    run = await session.get(Run, generated.run_id)
    assert run.status == RunStatus.DRAFT.value

    items = await _run_items(session, generated.run_id)
    shirt = next(i for i in items if i.type == RunItemType.PICKUP.value and i.barcode == "B-SHIRT")
    assert shirt.target_qty == 3
    assert shirt.picked_qty == 0
    assert shirt.store_name == "North Street Boutique"
    assert shirt.cost_price == Decimal("20.00")

    for source in (first, second, tote):
        await session.refresh(source)
        assert source.status == OrderItemStatus.ASSIGNED_TO_RUN.value
        assert source.run_id == generated.run_id

    await session.refresh(ret)
    assert ret.status == ReturnStatus.ASSIGNED_TO_RUN.value
    assert ret.run_number == 1


async def test_pickup_quantities_are_conserved(session):
    store = await create_store(session)
    await create_product(session, store, "B-1")
    await create_product(session, store, "B-2")
    quantities = {"B-1": [3, 4], "B-2": [1]}
    for barcode, qtys in quantities.items():
        for qty in qtys:
            await create_order_item(session, barcode, quantity=qty)
    await session.commit()

    result = await ConsolidationService(session).generate_runs()
    items = await _run_items(session, result.runs[0].run_id)

    assert sum(i.target_qty for i in items) == 8
    assert {i.barcode: i.target_qty for i in items} == {"B-1": 7, "B-2": 1}


async def test_lines_are_split_into_bounded_runs(session):
    store = await create_store(session)
    for n in range(5):
        await create_product(session, store, f"B-{n}", style_name=f"Style {n}")
        await create_order_item(session, f"B-{n}")
    await session.commit()

    result = await ConsolidationService(session, chunk_size=2).generate_runs()

    assert [r.run_number for r in result.runs] == [1, 2, 3]
    assert [r.pickup_count for r in result.runs] == [2, 2, 1]
    pending = await session.scalar(
        select(func.count(OrderItem.id)).where(OrderItem.status == OrderItemStatus.PENDING.value)
    )
    assert pending == 0


async def test_failed_later_chunk_keeps_earlier_runs(session):
    store = await create_store(session)
    await create_product(session, store, "B-0", style_name="Style 0")
    await create_product(session, store, "B-1", style_name="Style 1")
    await create_order_item(session, "B-0")
    late = await create_order_item(session, "B-1")
    await session.commit()
    late_id = late.id

    service = ConsolidationService(session, chunk_size=1)
    create_run = service._create_run
    calls = []

    async def claimed_elsewhere(lines):
        calls.append(lines)
        if len(calls) == 2:
            raise ConflictingAssignment("order item(s) were assigned by another request")
        return await create_run(lines)

    service._create_run = claimed_elsewhere

    with pytest.raises(PartialFailure) as exc_info:
        await service.generate_runs()

    assert exc_info.value.details["created_run_numbers"] == [1]
    assert exc_info.value.details["failed_chunk"] == 2
    assert exc_info.value.details["cause"] == "conflicting_assignment"
    assert await session.scalar(select(func.count(Run.id))) == 1
    status = await session.scalar(select(OrderItem.status).where(OrderItem.id == late_id))
    assert status == OrderItemStatus.PENDING.value


async def test_pickups_come_before_returns(session):
    store = await create_store(session, "Alpha Store")
    await create_product(session, store, "B-A", style_name="Zebra Tee")
    await create_order_item(session, "B-A")
    await create_return(session, store, "R-UNLISTED", style_name="Apron", return_amount="5.00")
    await session.commit()

    service = ConsolidationService(session)
    items = list((await session.execute(select(OrderItem))).scalars().all())
    returns = list((await session.execute(select(ReturnRequest))).scalars().all())
    lines = await service.build_lines(items, returns)

    assert [ln.type for ln in lines] == [RunItemType.PICKUP.value, RunItemType.RETURN.value]


async def test_no_pending_demand_raises(session):
    with pytest.raises(NoEligibleDemand):
        await ConsolidationService(session).generate_runs()


async def test_explicit_selection_ignores_rest_of_pool(session):
    store = await create_store(session)
    await create_product(session, store, "B-1")
    chosen = await create_order_item(session, "B-1", quantity=2)
    other = await create_order_item(session, "B-1", quantity=5)
    ret = await create_return(session, store, "B-1")
    await session.commit()

    result = await ConsolidationService(session).generate_runs(order_item_ids=[chosen.id])

    assert result.order_items_assigned == 1
    assert result.returns_assigned == 0
    await session.refresh(other)
    await session.refresh(ret)
    assert other.status == OrderItemStatus.PENDING.value
    assert ret.status == ReturnStatus.PENDING.value


async def test_already_assigned_item_conflicts(session):
    store = await create_store(session)
    await create_product(session, store, "B-1")
    item = await create_order_item(session, "B-1")
    await session.commit()

    await ConsolidationService(session).generate_runs(order_item_ids=[item.id])

    with pytest.raises(ConflictingAssignment):
        await ConsolidationService(session).generate_runs(order_item_ids=[item.id])


async def test_unknown_order_item_id(session):
    with pytest.raises(UnknownReference):
        await ConsolidationService(session).generate_runs(order_item_ids=[uuid.uuid4()])


async def test_uncatalogued_pickup_barcode_writes_nothing(session):
    store = await create_store(session)
    await create_product(session, store, "B-1")
    await create_order_item(session, "B-1")
    missing = await create_order_item(session, "B-MISSING")
    await session.commit()

    with pytest.raises(UnknownReference) as exc_info:
        await ConsolidationService(session).generate_runs()

    assert exc_info.value.details["barcodes"] == ["B-MISSING"]
    assert await session.scalar(select(func.count(Run.id))) == 0
    await session.refresh(missing)
    assert missing.status == OrderItemStatus.PENDING.value


async def test_grouped_returns_average_their_amounts(session):
    store = await create_store(session)
    await create_return(session, store, "R-1", return_amount="10.00")
    await create_return(session, store, "R-1", return_amount="20.00")
    single = await create_return(session, store, "R-2", return_amount="7.00")
    await session.commit()

    result = await ConsolidationService(session).generate_runs()
    items = {i.barcode: i for i in await _run_items(session, result.runs[0].run_id)}

    assert items["R-1"].target_qty == 2
    assert items["R-1"].cost_price == Decimal("15.00")
    assert items["R-1"].original_return_id is None
    assert items["R-2"].original_return_id == single.id


async def test_run_numbers_continue_from_existing_runs(session):
    await create_run(session, run_number=41)
    await session.commit()

    assert await RunSequenceService(session).preview_next_number() == 42
    assert await RunSequenceService(session).get_next_number() == 42
    assert await RunSequenceService(session).get_next_number() == 43


def test_chunk_lines_rejects_empty_chunks():
    with pytest.raises(ValueError):
        chunk_lines([], 0)


def test_demand_lines_sort_by_store_then_style():
    store_id = uuid.uuid4()
    lines = [
        DemandLine(type="pickup", store_id=store_id, barcode="2", store_name="beta", style_name="A"),
        DemandLine(type="pickup", store_id=store_id, barcode="1", store_name="Alpha", style_name="b"),
        DemandLine(type="pickup", store_id=store_id, barcode="3", store_name="alpha", style_name="A"),
    ]
    ordered = sorted(lines, key=lambda ln: ln.sort_key)
    assert [ln.barcode for ln in ordered] == ["3", "1", "2"]
