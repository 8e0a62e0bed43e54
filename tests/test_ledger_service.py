from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
import uuid

import pytest
from sqlalchemy import select, func

from app.core.exceptions import InvalidQuantity, ReceiptRequired, UnknownReference
from app.models import LedgerEntry, TransactionType
from app.services.ledger_service import (
    LedgerService,
    build_run_note,
    select_duplicate_entries,
    transaction_type_for,
)
from app.services.picking_service import PickingService
from tests.factories import create_store, create_product, create_order_item, generate_active_run


RECEIPT = "https://receipts.example.com/visit.jpg"


async def _confirmed_visit(session, quantity=3, cost="10.00", picked=None):
    store = await create_store(session)
    await create_product(session, store, "B-1", cost_price=cost)
    await create_order_item(session, "B-1", quantity=quantity)
    run = await generate_active_run(session)
    picking = PickingService(session)
    await picking.adjust(run.items[0].id, quantity if picked is None else picked)
    visit = await picking.complete_store_visit(run.id, store.id, RECEIPT)
    return store, run, visit


async def _entry_count(session) -> int:
    return await session.scalar(select(func.count(LedgerEntry.id)))


# ==================== PURE HELPERS ====================

def test_transaction_type_follows_sign():
    assert transaction_type_for(Decimal("40")) == TransactionType.DEBIT.value
    assert transaction_type_for(Decimal("-0.01")) == TransactionType.CREDIT.value
    assert transaction_type_for(Decimal("0")) is None


def test_build_run_note():
    assert build_run_note(7, Decimal("10"), Decimal("0")) == "Run #7 - pickups"
    assert build_run_note(7, Decimal("0"), Decimal("4")) == "Run #7 - returns"
    assert build_run_note(7, Decimal("10"), Decimal("4")) == "Run #7 - pickups & returns"


def test_select_duplicate_entries_keeps_most_recent():
    store_id = uuid.uuid4()
    early = datetime(2026, 1, 1, tzinfo=timezone.utc)
    late = datetime(2026, 1, 2, tzinfo=timezone.utc)

    def entry(run_number, entry_date, created_at, store=store_id):
        return SimpleNamespace(
            id=uuid.uuid4(), run_number=run_number, store_id=store,
            entry_date=entry_date, created_at=created_at,
        )

    old = entry(5, date(2026, 1, 1), late)
    newest = entry(5, date(2026, 1, 2), early)
    tie_loser = entry(6, date(2026, 1, 3), early)
    tie_winner = entry(6, date(2026, 1, 3), late)
    manual_a = entry(None, date(2026, 1, 1), early)
    manual_b = entry(None, date(2026, 1, 1), early)
    other_store = entry(5, date(2026, 1, 1), early, store=uuid.uuid4())

    doomed = select_duplicate_entries(
        [old, newest, tie_loser, tie_winner, manual_a, manual_b, other_store]
    )

    assert sorted(doomed) == sorted([old.id, tie_loser.id])


# ==================== RUN ENTRIES ====================

async def test_upsert_keeps_one_entry_per_run_and_store(session):
    store = await create_store(session)
    await session.commit()
    ledger = LedgerService(session)

    entry = await ledger.upsert_run_entry(store.id, store.name, 9, Decimal("40"), "Run #9 - pickups")
    again = await ledger.upsert_run_entry(store.id, store.name, 9, Decimal("-15"), "Run #9 - returns")
    await session.commit()

    assert again.id == entry.id
    assert again.transaction_type == TransactionType.CREDIT.value
    assert again.amount == Decimal("15.00")
    assert await _entry_count(session) == 1

    gone = await ledger.upsert_run_entry(store.id, store.name, 9, Decimal("0"), "Run #9")
    await session.commit()
    assert gone is None
    assert await _entry_count(session) == 0


# ==================== AMEND ====================

async def test_amend_updates_entry_in_place_with_audit_note(session):
    _, run, visit = await _confirmed_visit(session, quantity=3, cost="10.00")

    result = await LedgerService(session).amend_confirmation(
        visit.confirmation.id, total_amount=Decimal("25.00"), notes="Short one unit"
    )

    assert result.amount_changed is True
    assert result.ledger_action == "updated"
    assert result.old_amount == Decimal("30.00")
    assert result.confirmation.total_amount == Decimal("25.00")
    assert result.confirmation.notes == "Short one unit"
    assert result.ledger_entry.id == visit.ledger_entry.id
    assert result.ledger_entry.amount == Decimal("25.00")
    assert result.ledger_entry.notes == f"Run #{run.run_number} - pickups (Updated from $30.00)"
    assert await _entry_count(session) == 1


async def test_amend_across_zero_flips_then_removes_entry(session):
    _, _, visit = await _confirmed_visit(session, quantity=3, cost="10.00")
    confirmation_id = visit.confirmation.id
    ledger = LedgerService(session)

    flipped = await ledger.amend_confirmation(confirmation_id, total_amount=Decimal("-5"))
    assert flipped.ledger_entry.transaction_type == TransactionType.CREDIT.value
    assert flipped.ledger_entry.amount == Decimal("5.00")

    zeroed = await ledger.amend_confirmation(confirmation_id, total_amount=Decimal("0"))
    assert zeroed.ledger_action == "deleted"
    assert zeroed.ledger_entry is None
    assert await _entry_count(session) == 0

    revived = await ledger.amend_confirmation(confirmation_id, total_amount=Decimal("12"))
    assert revived.ledger_action == "created"
    assert revived.ledger_entry.transaction_type == TransactionType.DEBIT.value
    assert revived.ledger_entry.notes.endswith("(Updated from $0.00)")
    assert await _entry_count(session) == 1


async def test_amend_without_amount_change_leaves_ledger_alone(session):
    _, _, visit = await _confirmed_visit(session)

    result = await LedgerService(session).amend_confirmation(
        visit.confirmation.id, receipt_image_url="https://receipts.example.com/retake.jpg"
    )

    assert result.amount_changed is False
    assert result.ledger_action == "none"
    assert result.confirmation.receipt_image_url.endswith("retake.jpg")


async def test_amend_rejects_blank_receipt_and_unknown_confirmation(session):
    _, _, visit = await _confirmed_visit(session)
    ledger = LedgerService(session)

    with pytest.raises(ReceiptRequired):
        await ledger.amend_confirmation(visit.confirmation.id, receipt_image_url="  ")
    with pytest.raises(UnknownReference):
        await ledger.amend_confirmation(uuid.uuid4(), total_amount=Decimal("1"))


# ==================== MANUAL ENTRIES & BALANCES ====================

async def test_manual_entries_and_balances(session):
    store, _, _ = await _confirmed_visit(session, quantity=4, cost="10.00")
    store_id, store_name = store.id, store.name
    ledger = LedgerService(session)

    manual = await ledger.record_manual_entry(
        store_id, TransactionType.CREDIT.value, Decimal("15"), discount=Decimal("5"),
        notes="Damaged stock refund",
    )
    assert manual.run_number is None
    assert manual.store_name == store_name
    assert manual.net_amount == Decimal("10.00")

    report = await ledger.get_store_balances()

    assert len(report.stores) == 1
    balance = report.stores[0]
    assert balance.debits == Decimal("40.00")
    assert balance.credits == Decimal("10.00")
    assert balance.balance == Decimal("-30.00")
    assert report.total_balance == Decimal("-30.00")


async def test_manual_entry_validation(session):
    store = await create_store(session)
    await session.commit()
    ledger = LedgerService(session)

    with pytest.raises(InvalidQuantity):
        await ledger.record_manual_entry(store.id, "debit", Decimal("0"))
    with pytest.raises(InvalidQuantity):
        await ledger.record_manual_entry(store.id, "debit", Decimal("5"), discount=Decimal("6"))
    with pytest.raises(InvalidQuantity):
        await ledger.record_manual_entry(store.id, "refund", Decimal("5"))
    with pytest.raises(UnknownReference):
        await ledger.record_manual_entry(uuid.uuid4(), "debit", Decimal("5"))


async def test_list_entries_filters_by_run_and_type(session):
    store, run, _ = await _confirmed_visit(session)
    store_id, run_number = store.id, run.run_number
    ledger = LedgerService(session)
    await ledger.record_manual_entry(store_id, "credit", Decimal("3"))

    run_entries, run_total = await ledger.list_entries(run_number=run_number)
    credits, credit_total = await ledger.list_entries(transaction_type="credit")
    everything, total = await ledger.list_entries(store_id=store_id)

    assert run_total == 1 and run_entries[0].transaction_type == "debit"
    assert credit_total == 1 and credits[0].run_number is None
    assert total == 2 and len(everything) == 2


async def test_deduplicate_finds_nothing_on_constrained_ledger(session):
    store, _, _ = await _confirmed_visit(session)
    await LedgerService(session).record_manual_entry(store.id, "credit", Decimal("3"))
    await LedgerService(session).record_manual_entry(store.id, "credit", Decimal("3"))

    result = await LedgerService(session).deduplicate_by_run_store()

    assert result.deleted_count == 0
    assert result.groups_affected == 0
    assert await _entry_count(session) == 3
