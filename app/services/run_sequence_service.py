"""
Run Sequence Service for Atomic Run Numbering

Run numbers are plain integers, strictly increasing across every run ever
generated. The counter lives in one ``run_sequences`` row that is locked
with SELECT FOR UPDATE, so concurrent consolidations serialize on it instead
of racing a max-plus-one scan.

USAGE:
    from app.services.run_sequence_service import RunSequenceService

    async def create_run(db: AsyncSession):
        run_number = await RunSequenceService(db).get_next_number()
"""

import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.run import Run
from app.models.run_sequence import RunSequence, RUN_SEQUENCE_NAME


logger = logging.getLogger(__name__)


class RunSequenceService:
    """
    Service for generating atomic run numbers.

    The increment is flushed but never committed here: the caller's
    transaction owns it, so a rolled-back run gives its number back.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_or_create_sequence(self) -> RunSequence:
        """
        Lock the counter row, creating it on first use.

        A new counter is seeded from the highest existing run number so
        databases that already hold runs keep numbering upward.
        """
        result = await self.db.execute(
            select(RunSequence)
            .where(RunSequence.name == RUN_SEQUENCE_NAME)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        sequence = result.scalar_one_or_none()

        if sequence is None:
            max_existing = await self.db.scalar(
                select(func.coalesce(func.max(Run.run_number), 0))
            )
            sequence = RunSequence(
                name=RUN_SEQUENCE_NAME,
                current_number=int(max_existing or 0),
            )
            self.db.add(sequence)
            await self.db.flush()
            logger.info(f"Run sequence created, seeded at {sequence.current_number}")

        return sequence

    async def get_next_number(self) -> int:
        """
        Get next run number with atomic increment.

        Returns:
            The allocated run number
        """
        sequence = await self._get_or_create_sequence()
        run_number = sequence.get_next_number()
        await self.db.flush()
        return run_number

    async def preview_next_number(self) -> int:
        """What the next run number would be, without locking or incrementing."""
        result = await self.db.execute(
            select(RunSequence).where(RunSequence.name == RUN_SEQUENCE_NAME)
        )
        sequence = result.scalar_one_or_none()
        if sequence:
            return sequence.preview_next_number()

        max_existing = await self.db.scalar(
            select(func.coalesce(func.max(Run.run_number), 0))
        )
        return int(max_existing or 0) + 1
