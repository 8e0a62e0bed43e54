"""
Ledger Reconciler

Derives debit/credit entries from confirmed store visits and keeps them in
step with later operator corrections.

Sign convention (operator's point of view):
    net > 0  -> DEBIT  (operator owes the store for pickups)
    net < 0  -> CREDIT (store owes the operator for returns), amount = |net|
    net == 0 -> no entry

Run-derived entries are unique per (run_number, store_id) at the storage
level; ``upsert_run_entry`` is the only write path for them.
"""
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    FulfillmentError,
    InvalidQuantity,
    ReceiptRequired,
    UnknownReference,
)
from app.models.ledger import LedgerEntry, TransactionType
from app.models.run import Run, RunConfirmation
from app.models.store import Store


logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(CENTS)


def transaction_type_for(net_amount: Decimal) -> Optional[str]:
    """Ledger direction for a signed net amount; None when nothing is owed."""
    if net_amount > 0:
        return TransactionType.DEBIT.value
    if net_amount < 0:
        return TransactionType.CREDIT.value
    return None


def entry_net_amount(entry: LedgerEntry) -> Decimal:
    """Signed run net an entry represents (debit positive, credit negative)."""
    amount = to_money(entry.amount)
    if entry.transaction_type == TransactionType.CREDIT.value:
        return -amount
    return amount


def build_run_note(run_number: int, pickup_amount: Decimal, return_amount: Decimal) -> str:
    """
    e.g. "Run #42 - pickups & returns"
    """
    parts = []
    if pickup_amount > 0:
        parts.append("pickups")
    if return_amount > 0:
        parts.append("returns")
    return f"Run #{run_number} - {' & '.join(parts)}"


def select_duplicate_entries(entries: Iterable) -> List[uuid.UUID]:
    """
    Ids of run-derived entries to delete so each (run_number, store_id)
    keeps only its most recent entry.

    Most recent means latest ``entry_date``; ties go to the latest
    ``created_at``. Manual entries (no run number) are never touched.
    """
    groups: Dict[Tuple[int, uuid.UUID], list] = defaultdict(list)
    for entry in entries:
        if entry.run_number is None:
            continue
        groups[(entry.run_number, entry.store_id)].append(entry)

    doomed: List[uuid.UUID] = []
    for group in groups.values():
        if len(group) < 2:
            continue
        keep = max(
            group,
            key=lambda e: (
                e.entry_date or date.min,
                e.created_at or datetime.min.replace(tzinfo=timezone.utc),
            ),
        )
        doomed.extend(e.id for e in group if e.id != keep.id)
    return doomed


@dataclass
class StoreBalance:
    store_id: uuid.UUID
    store_name: str
    debits: Decimal = ZERO
    credits: Decimal = ZERO

    @property
    def balance(self) -> Decimal:
        """Credits minus debits, each already net of discount."""
        return self.credits - self.debits


@dataclass
class BalanceReport:
    stores: List[StoreBalance] = field(default_factory=list)

    @property
    def total_debits(self) -> Decimal:
        return sum((s.debits for s in self.stores), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((s.credits for s in self.stores), ZERO)

    @property
    def total_balance(self) -> Decimal:
        return self.total_credits - self.total_debits


@dataclass
class AmendResult:
    confirmation: RunConfirmation
    ledger_entry: Optional[LedgerEntry]
    old_amount: Decimal
    new_amount: Decimal
    amount_changed: bool
    ledger_action: str  # "none", "updated", "created", "deleted"


@dataclass
class DeduplicateResult:
    groups_affected: int
    deleted_count: int
    deleted_ids: List[uuid.UUID]


class LedgerService:
    """Service for ledger entries and store balances."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== RUN-DERIVED ENTRIES ====================

    async def get_run_entry(
        self,
        run_number: int,
        store_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[LedgerEntry]:
        stmt = select(LedgerEntry).where(
            LedgerEntry.run_number == run_number,
            LedgerEntry.store_id == store_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def upsert_run_entry(
        self,
        store_id: uuid.UUID,
        store_name: str,
        run_number: int,
        net_amount: Decimal,
        notes: str,
        run_confirmation_id: Optional[uuid.UUID] = None,
    ) -> Optional[LedgerEntry]:
        """
        Write the single entry for (run_number, store_id).

        A zero net removes any existing entry. Does NOT commit; the caller's
        unit of work owns the transaction.
        """
        net_amount = to_money(net_amount)
        entry = await self.get_run_entry(run_number, store_id, for_update=True)
        txn_type = transaction_type_for(net_amount)

        if txn_type is None:
            if entry is not None:
                await self.db.delete(entry)
                await self.db.flush()
                logger.info(f"Ledger entry for run #{run_number} store {store_id} removed (net 0)")
            return None

        if entry is None:
            entry = LedgerEntry(
                store_id=store_id,
                store_name=store_name,
                transaction_type=txn_type,
                amount=abs(net_amount),
                discount=ZERO,
                entry_date=datetime.now(timezone.utc).date(),
                run_number=run_number,
                run_confirmation_id=run_confirmation_id,
                notes=notes,
            )
            self.db.add(entry)
        else:
            entry.transaction_type = txn_type
            entry.amount = abs(net_amount)
            entry.store_name = store_name or entry.store_name
            if run_confirmation_id is not None:
                entry.run_confirmation_id = run_confirmation_id
            entry.notes = notes

        await self.db.flush()
        return entry

    async def sync_run_entries(self, run: Run) -> int:
        """
        Re-derive every ledger entry of a run from its confirmations.

        Entries whose signed amount already matches their confirmation are
        left alone so audit notes from earlier amendments survive.

        Returns:
            Number of entries written or removed
        """
        result = await self.db.execute(
            select(RunConfirmation).where(RunConfirmation.run_id == run.id)
        )
        confirmations = result.scalars().all()

        changed = 0
        for confirmation in confirmations:
            net = to_money(confirmation.total_amount)
            entry = await self.get_run_entry(run.run_number, confirmation.store_id, for_update=True)
            if entry is not None and entry_net_amount(entry) == net:
                continue
            if entry is None and net == 0:
                continue
            await self.upsert_run_entry(
                store_id=confirmation.store_id,
                store_name=confirmation.store_name,
                run_number=run.run_number,
                net_amount=net,
                notes=build_run_note(
                    run.run_number,
                    to_money(confirmation.pickup_amount),
                    to_money(confirmation.return_amount),
                ),
                run_confirmation_id=confirmation.id,
            )
            changed += 1

        if changed:
            logger.info(f"Run #{run.run_number}: {changed} ledger entries re-synchronized")
        return changed

    # ==================== AMEND ====================

    async def amend_confirmation(
        self,
        confirmation_id: uuid.UUID,
        total_amount: Optional[Decimal] = None,
        notes: Optional[str] = None,
        receipt_image_url: Optional[str] = None,
    ) -> AmendResult:
        """
        Apply an operator correction to a finalized store visit.

        The matching ledger entry is updated in place with an audit note
        recording the prior amount; no second entry is ever created for the
        same visit.
        """
        try:
            result = await self.db.execute(
                select(RunConfirmation)
                .where(RunConfirmation.id == confirmation_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            confirmation = result.scalar_one_or_none()
            if confirmation is None:
                raise UnknownReference(
                    "Run confirmation not found",
                    {"confirmation_id": str(confirmation_id)},
                )

            if receipt_image_url is not None:
                if not receipt_image_url.strip():
                    raise ReceiptRequired("Receipt image URL cannot be blank")
                confirmation.receipt_image_url = receipt_image_url.strip()
            if notes is not None:
                confirmation.notes = notes

            old_amount = to_money(confirmation.total_amount)
            new_amount = old_amount if total_amount is None else to_money(total_amount)
            entry = await self._find_confirmation_entry(confirmation)
            action = "none"

            if new_amount != old_amount:
                confirmation.total_amount = new_amount
                audit = f" (Updated from {settings.CURRENCY_SYMBOL}{old_amount:.2f})"
                txn_type = transaction_type_for(new_amount)

                if entry is not None and txn_type is None:
                    await self.db.delete(entry)
                    entry = None
                    action = "deleted"
                elif entry is not None:
                    entry.transaction_type = txn_type
                    entry.amount = abs(new_amount)
                    entry.notes = f"{entry.notes or ''}{audit}"
                    action = "updated"
                elif txn_type is not None:
                    run_number = await self.db.scalar(
                        select(Run.run_number).where(Run.id == confirmation.run_id)
                    )
                    entry = LedgerEntry(
                        store_id=confirmation.store_id,
                        store_name=confirmation.store_name,
                        transaction_type=txn_type,
                        amount=abs(new_amount),
                        discount=ZERO,
                        entry_date=datetime.now(timezone.utc).date(),
                        run_number=run_number,
                        run_confirmation_id=confirmation.id,
                        notes=f"Run #{run_number} - adjusted{audit}",
                    )
                    self.db.add(entry)
                    action = "created"

            await self.db.commit()
        except FulfillmentError:
            await self.db.rollback()
            raise
        except Exception:
            await self.db.rollback()
            logger.exception(f"Amending confirmation {confirmation_id} failed, rolled back")
            raise

        logger.info(
            f"Confirmation {confirmation_id} amended: {old_amount} -> {new_amount}, ledger {action}"
        )
        return AmendResult(
            confirmation=confirmation,
            ledger_entry=entry,
            old_amount=old_amount,
            new_amount=new_amount,
            amount_changed=new_amount != old_amount,
            ledger_action=action,
        )

    async def _find_confirmation_entry(self, confirmation: RunConfirmation) -> Optional[LedgerEntry]:
        """Entry keyed by run_confirmation_id, falling back to (run_number, store_id)."""
        result = await self.db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.run_confirmation_id == confirmation.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        entry = result.scalars().first()
        if entry is not None:
            return entry

        run_number = await self.db.scalar(
            select(Run.run_number).where(Run.id == confirmation.run_id)
        )
        if run_number is None:
            return None
        entry = await self.get_run_entry(run_number, confirmation.store_id, for_update=True)
        if entry is not None:
            entry.run_confirmation_id = confirmation.id
        return entry

    # ==================== MANUAL ENTRIES ====================

    async def record_manual_entry(
        self,
        store_id: uuid.UUID,
        transaction_type: str,
        amount: Decimal,
        discount: Decimal = ZERO,
        entry_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> LedgerEntry:
        """Operator debit/credit not tied to any run."""
        amount = to_money(amount)
        discount = to_money(discount)
        if amount <= 0:
            raise InvalidQuantity("Amount must be greater than zero", {"amount": str(amount)})
        if discount < 0 or discount > amount:
            raise InvalidQuantity(
                "Discount must be between zero and the amount",
                {"amount": str(amount), "discount": str(discount)},
            )
        if transaction_type not in (TransactionType.DEBIT.value, TransactionType.CREDIT.value):
            raise InvalidQuantity(
                f"Unknown transaction type '{transaction_type}'",
                {"transaction_type": transaction_type},
            )

        store = await self.db.get(Store, store_id)
        if store is None:
            raise UnknownReference("Store not found", {"store_id": str(store_id)})

        entry = LedgerEntry(
            store_id=store.id,
            store_name=store.name,
            transaction_type=transaction_type,
            amount=amount,
            discount=discount,
            entry_date=entry_date or datetime.now(timezone.utc).date(),
            notes=notes,
        )
        self.db.add(entry)
        await self.db.commit()

        logger.info(f"Manual {transaction_type} of {amount} recorded for store {store.name}")
        return entry

    # ==================== QUERIES ====================

    async def list_entries(
        self,
        store_id: Optional[uuid.UUID] = None,
        run_number: Optional[int] = None,
        transaction_type: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[LedgerEntry], int]:
        """Get paginated ledger entries, newest first."""
        stmt = select(LedgerEntry)
        count_stmt = select(func.count(LedgerEntry.id))

        filters = []
        if store_id:
            filters.append(LedgerEntry.store_id == store_id)
        if run_number is not None:
            filters.append(LedgerEntry.run_number == run_number)
        if transaction_type:
            filters.append(LedgerEntry.transaction_type == transaction_type)

        if filters:
            stmt = stmt.where(*filters)
            count_stmt = count_stmt.where(*filters)

        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = stmt.order_by(
            LedgerEntry.entry_date.desc(), LedgerEntry.created_at.desc()
        ).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def get_store_balances(self) -> BalanceReport:
        """Per-store debits, credits and balance (credits minus debits)."""
        stmt = (
            select(
                LedgerEntry.store_id,
                LedgerEntry.store_name,
                LedgerEntry.transaction_type,
                func.sum(LedgerEntry.amount - LedgerEntry.discount),
            )
            .group_by(
                LedgerEntry.store_id,
                LedgerEntry.store_name,
                LedgerEntry.transaction_type,
            )
        )
        result = await self.db.execute(stmt)

        balances: Dict[uuid.UUID, StoreBalance] = {}
        for store_id, store_name, txn_type, total in result.all():
            balance = balances.get(store_id)
            if balance is None:
                balance = StoreBalance(store_id=store_id, store_name=store_name or "")
                balances[store_id] = balance
            elif store_name and not balance.store_name:
                balance.store_name = store_name
            if txn_type == TransactionType.CREDIT.value:
                balance.credits += to_money(total)
            else:
                balance.debits += to_money(total)

        return BalanceReport(
            stores=sorted(balances.values(), key=lambda b: (b.store_name, str(b.store_id)))
        )

    # ==================== MAINTENANCE ====================

    async def deduplicate_by_run_store(self) -> DeduplicateResult:
        """
        Delete all but the most recent entry of each (run_number, store_id).

        Only legacy data loaded before the uniqueness constraint existed can
        produce duplicates; on a constrained database this finds nothing.
        """
        result = await self.db.execute(
            select(LedgerEntry).where(LedgerEntry.run_number.is_not(None))
        )
        entries = result.scalars().all()
        doomed = select_duplicate_entries(entries)

        if doomed:
            doomed_ids = set(doomed)
            groups = {
                (e.run_number, e.store_id) for e in entries if e.id in doomed_ids
            }
            await self.db.execute(delete(LedgerEntry).where(LedgerEntry.id.in_(doomed)))
            await self.db.commit()
        else:
            groups = set()

        logger.info(
            f"Ledger dedupe: {len(doomed)} duplicate entries removed across {len(groups)} run/store groups"
        )
        return DeduplicateResult(
            groups_affected=len(groups),
            deleted_count=len(doomed),
            deleted_ids=doomed,
        )
