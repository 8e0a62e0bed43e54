"""Store-initiated return requests."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, MoneyType


class ReturnStatus(str, Enum):
    """Return request status enumeration."""
    PENDING = "pending"
    ASSIGNED_TO_RUN = "assigned_to_run"
    PROCESSED = "processed"
    REJECTED = "rejected"


class ReturnReason(str, Enum):
    """Why the store is sending stock back."""
    DAMAGED = "damaged"
    WRONG_ITEM = "wrong_item"
    CUSTOMER_RETURN = "customer_return"
    QUALITY_ISSUE = "quality_issue"
    OTHER = "other"


class ReturnRequest(Base):
    """
    A return the courier carries back to a store.

    Store name and style are carried on the request itself because
    returned barcodes are not guaranteed to exist in the catalog.
    """
    __tablename__ = "return_requests"
    __table_args__ = (
        Index("ix_return_requests_run_barcode", "run_id", "barcode"),
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

    barcode: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    style_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    size: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    reason: Mapped[str] = mapped_column(
        String(30),
        default=ReturnReason.OTHER.value,
        nullable=False,
        comment="damaged, wrong_item, customer_return, quality_issue, other"
    )
    return_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)

    status: Mapped[str] = mapped_column(
        String(30),
        default=ReturnStatus.PENDING.value,
        nullable=False,
        index=True
    )
    run_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("runs.id", ondelete="SET NULL"),
        nullable=True
    )
    run_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
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
        return f"<ReturnRequest(barcode='{self.barcode}', qty={self.quantity}, status='{self.status}')>"
