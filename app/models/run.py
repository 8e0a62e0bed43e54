"""Run models for courier pickup/return batches."""
import uuid
from datetime import datetime, timezone, date
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    String, Boolean, Date, DateTime, ForeignKey, Integer, Text,
    CheckConstraint, UniqueConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, MoneyType


class RunStatus(str, Enum):
    """Run status enumeration."""
    DRAFT = "draft"              # Generated, not yet handed to a courier
    ACTIVE = "active"            # Courier is visiting stores
    COMPLETED = "completed"      # Closed, fully or partially fulfilled
    CANCELLED = "cancelled"      # Closed with nothing picked


class RunItemType(str, Enum):
    """What the courier does with a run item at the store."""
    PICKUP = "pickup"
    RETURN = "return"


class RunItemStatus(str, Enum):
    """Run item status enumeration."""
    PENDING = "pending"
    PICKED = "picked"
    RETURNED = "returned"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"


TERMINAL_ITEM_STATUSES = frozenset({
    RunItemStatus.PICKED.value,
    RunItemStatus.RETURNED.value,
    RunItemStatus.NOT_FOUND.value,
    RunItemStatus.CANCELLED.value,
})


class Run(Base):
    """
    A bounded batch of pickup/return work for one courier.
    Totals are snapshots taken when the run is generated.
    """
    __tablename__ = "runs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    run_number: Mapped[int] = mapped_column(
        Integer,
        unique=True,
        nullable=False,
        index=True
    )
    run_date: Mapped[date] = mapped_column(
        "date",
        Date,
        default=lambda: datetime.now(timezone.utc).date(),
        nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=RunStatus.DRAFT.value,
        nullable=False,
        index=True,
        comment="draft, active, completed, cancelled"
    )

    # Counts
    total_items: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Total units across all run items"
    )
    total_stores: Mapped[int] = mapped_column(Integer, default=0)
    total_styles: Mapped[int] = mapped_column(Integer, default=0)
    has_returns: Mapped[bool] = mapped_column(Boolean, default=False)

    # Assignment (users live in the auth provider)
    runner_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    runner_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    items: Mapped[List["RunItem"]] = relationship(
        "RunItem",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="RunItem.store_name",
    )

    def __repr__(self) -> str:
        return f"<Run(number={self.run_number}, status='{self.status}')>"


class RunItem(Base):
    """
    One aggregated line (barcode x store x type) within a run.
    """
    __tablename__ = "run_items"
    __table_args__ = (
        CheckConstraint("picked_qty >= 0", name="ck_run_items_picked_qty_non_negative"),
        Index("ix_run_items_run_store", "run_id", "store_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    run_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    type: Mapped[str] = mapped_column(
        String(20),
        default=RunItemType.PICKUP.value,
        nullable=False,
        comment="pickup, return"
    )

    barcode: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    store_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("stores.id", ondelete="RESTRICT"),
        nullable=False
    )

    # Snapshot
    store_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    style_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    size: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    cost_price: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)

    # Quantities
    target_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    picked_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=RunItemStatus.PENDING.value,
        nullable=False,
        comment="pending, picked, returned, not_found, cancelled"
    )

    # Set only when a single return request produced this line
    original_return_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("return_requests.id", ondelete="SET NULL"),
        nullable=True
    )

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

    run: Mapped["Run"] = relationship("Run", back_populates="items")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ITEM_STATUSES

    @property
    def line_amount(self) -> Decimal:
        """Value of what was actually handled."""
        return Decimal(self.picked_qty or 0) * Decimal(self.cost_price or 0)

    def __repr__(self) -> str:
        return f"<RunItem(barcode='{self.barcode}', type='{self.type}', target={self.target_qty}, picked={self.picked_qty})>"


class RunConfirmation(Base):
    """
    Closes out one store visit within a run.
    At most one per (run, store); a retry returns the existing row.
    """
    __tablename__ = "run_confirmations"
    __table_args__ = (
        UniqueConstraint("run_id", "store_id", name="uq_run_confirmations_run_store"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    run_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("stores.id", ondelete="RESTRICT"),
        nullable=False
    )
    store_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    receipt_image_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    pickup_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    return_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Signed net: pickups minus returns"
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    confirmed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    confirmed_at: Mapped[datetime] = mapped_column(
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

    def __repr__(self) -> str:
        return f"<RunConfirmation(run_id='{self.run_id}', store_id='{self.store_id}', total={self.total_amount})>"
