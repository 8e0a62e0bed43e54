"""Product catalog model.

The engine reads catalog metadata and only ever mutates ``inventory``.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Integer, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, MoneyType


class Product(Base):
    """Catalog entry keyed by barcode, stocked at exactly one store."""
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    barcode: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("stores.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Descriptive snapshot fields copied onto run items
    style_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    size: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    inventory: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cost_price: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)

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
        return f"<Product(barcode='{self.barcode}', inventory={self.inventory})>"
