"""
Run Sequence Model for Atomic Run Numbering

Run numbers are a single global, strictly increasing integer sequence.
The counter row is locked with SELECT FOR UPDATE by RunSequenceService so
two concurrent consolidations can never hand out the same number.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType


RUN_SEQUENCE_NAME = "run"


class RunSequence(Base):
    """
    Monotonic counter backing run numbers.

    Example:
        name = "run"
        current_number = 41
        -> next run is #42
    """
    __tablename__ = "run_sequences"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        default=RUN_SEQUENCE_NAME
    )
    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last used run number"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def get_next_number(self) -> int:
        """
        Increment and return the next run number.

        NOTE: Does NOT commit. The caller owns the transaction, so the
        increment rolls back together with the run that consumed it.
        """
        self.current_number += 1
        return self.current_number

    def preview_next_number(self) -> int:
        return self.current_number + 1
