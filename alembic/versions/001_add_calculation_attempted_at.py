"""Add calculation_attempted_at column to sales_transactions

Revision ID: 001_add_calculation_attempted_at
Revises: 000_initial_schema
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_add_calculation_attempted_at"
down_revision: Union[str, None] = "000_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add calculation_attempted_at column to sales_transactions table."""
    op.add_column(
        "sales_transactions",
        sa.Column("calculation_attempted_at", sa.DateTime(timezone=True), nullable=True)
    )


def downgrade() -> None:
    """Remove calculation_attempted_at column from sales_transactions table."""
    op.drop_column("sales_transactions", "calculation_attempted_at")
