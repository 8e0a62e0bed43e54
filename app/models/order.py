import uuid
from datetime import datetime, timezone, date
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy import String, Date, DateTime, ForeignKey, Integer, Text, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType


class OrderItemStatus(str, Enum):
    """Order line status - the only status stored for marketplace demand."""
    PENDING = "pending"                    # Waiting to be consolidated into a run
    ASSIGNED_TO_RUN = "assigned_to_run"    # Aggregated into a run item
    PICKED = "picked"                      # Courier collected it at the store
    SHIPPED = "shipped"                    # Handed over to the marketplace
    CANCELLED = "cancelled"                # Removed from demand


class OrderStatus(str, Enum):
    """Order status - always derived from the order's items, never stored."""
    PENDING = "pending"
    ASSIGNED_TO_RUN = "assigned_to_run"
    PICKED = "picked"
    PARTIALLY_SHIPPED = "partially_shipped"
    SHIPPED = "shipped"
    CANCELLED = "cancelled"


def derive_order_status(item_statuses: Iterable[str]) -> OrderStatus:
    """
    Compute an order's status from its items' statuses.

    - cancelled: every item cancelled
    - shipped: every non-cancelled item shipped
    - partially_shipped: some but not all non-cancelled items shipped
    - picked: every non-cancelled item picked
    - pending: any non-cancelled item still pending (or no items at all)
    - assigned_to_run: otherwise
    """
    statuses = [str(getattr(s, "value", s)) for s in item_statuses]
    if not statuses:
        return OrderStatus.PENDING

    live = [s for s in statuses if s != OrderItemStatus.CANCELLED.value]
    if not live:
        return OrderStatus.CANCELLED

    shipped = sum(1 for s in live if s == OrderItemStatus.SHIPPED.value)
    if shipped == len(live):
        return OrderStatus.SHIPPED
    if shipped > 0:
        return OrderStatus.PARTIALLY_SHIPPED

    if all(s == OrderItemStatus.PICKED.value for s in live):
        return OrderStatus.PICKED
    if any(s == OrderItemStatus.PENDING.value for s in live):
        return OrderStatus.PENDING
    return OrderStatus.ASSIGNED_TO_RUN


class Order(Base):
    """Marketplace order header."""
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("platform", "platform_order_id", name="uq_orders_platform_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    platform_order_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Order id on the external marketplace"
    )
    order_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Order(platform='{self.platform}', id='{self.platform_order_id}')>"


class OrderItem(Base):
    """Order line item model."""
    __tablename__ = "order_items"
    __table_args__ = (
        Index("ix_order_items_run_barcode", "run_id", "barcode"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    barcode: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    status: Mapped[str] = mapped_column(
        String(30),
        default=OrderItemStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="pending, assigned_to_run, picked, shipped, cancelled"
    )
    run_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("runs.id", ondelete="SET NULL"),
        nullable=True
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

    def __repr__(self) -> str:
        return f"<OrderItem(barcode='{self.barcode}', qty={self.quantity}, status='{self.status}')>"
