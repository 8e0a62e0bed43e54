"""Store ledger: debits/credits between the operator and each store."""
import uuid
from datetime import datetime, timezone, date
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, Date, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, MoneyType


class TransactionType(str, Enum):
    """
    DEBIT: the operator owes the store (net pickups).
    CREDIT: the store owes the operator (net returns, refunds).
    """
    DEBIT = "debit"
    CREDIT = "credit"


class LedgerEntry(Base):
    """
    Signed financial record for one store.

    Run-derived entries are unique per (run_number, store_id); manual
    entries carry no run number and are not constrained.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("run_number", "store_id", name="uq_ledger_entries_run_store"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("stores.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    store_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    transaction_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="debit, credit"
    )
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    discount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    entry_date: Mapped[date] = mapped_column(
        "date",
        Date,
        default=lambda: datetime.now(timezone.utc).date(),
        nullable=False,
        index=True
    )

    run_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    run_confirmation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("run_confirmations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def net_amount(self) -> Decimal:
        """Amount after discount."""
        return Decimal(self.amount or 0) - Decimal(self.discount or 0)

    def __repr__(self) -> str:
        return f"<LedgerEntry(store_id='{self.store_id}', {self.transaction_type} {self.amount})>"
