"""Exclusion constraint: no two active rentals of a book may overlap

Revision ID: 002_no_overlap
Revises: 001_initial
Create Date: 2026-10-19

Storage-level guard for the rental check-then-insert sequence. Two requests
that both pass the application availability check cannot both commit:
the second insert fails with an IntegrityError naming
no_overlapping_active_rentals, which the rental service maps to a 409.

daterange(start_date, expected_return_date, '[]') includes both endpoints,
matching the application rule that a rental's return day is still blocked.

PostgreSQL only; SQLite deployments rely on the per-book process lock.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '002_no_overlap'
down_revision: Union[str, None] = '001_initial'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name != 'postgresql':
        return

    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
    op.execute("""
        ALTER TABLE rentals
        ADD CONSTRAINT no_overlapping_active_rentals
        EXCLUDE USING gist (
            book_id WITH =,
            daterange(start_date, expected_return_date, '[]') WITH &&
        )
        WHERE (status = 'active')
    """)


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name != 'postgresql':
        return

    op.execute("ALTER TABLE rentals DROP CONSTRAINT IF EXISTS no_overlapping_active_rentals")
    # btree_gist is kept: other indexes may depend on it
