"""Deduplicate run ledger entries and enforce one entry per (run, store).

Revision ID: 002_unique_ledger_run_store
Revises: 001_fulfillment_schema
Create Date: 2026-10-19

Keeps the most recent entry (by date, then created_at) for every
(run_number, store_id) pair before the unique constraint is created.
Manual entries have no run_number and are left alone.
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '002_unique_ledger_run_store'
down_revision: Union[str, None] = '001_fulfillment_schema'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Delete duplicate run entries, then add the constraint."""
    conn = op.get_bind()

    result = conn.execute(
        sa.text("""
            DELETE FROM ledger_entries
            WHERE id IN (
                SELECT id FROM (
                    SELECT id,
                           ROW_NUMBER() OVER (
                               PARTITION BY run_number, store_id
                               ORDER BY date DESC, created_at DESC
                           ) AS rn
                    FROM ledger_entries
                    WHERE run_number IS NOT NULL
                ) ranked
                WHERE ranked.rn > 1
            )
        """)
    )
    print(f"Removed {result.rowcount} duplicate ledger entries")

    with op.batch_alter_table('ledger_entries') as batch_op:
        batch_op.create_unique_constraint('uq_ledger_entries_run_store', ['run_number', 'store_id'])


def downgrade() -> None:
    """Drop the constraint. Deleted duplicates are not restored."""
    with op.batch_alter_table('ledger_entries') as batch_op:
        batch_op.drop_constraint('uq_ledger_entries_run_store', type_='unique')
