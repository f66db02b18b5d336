"""Track domain permissions that still need to be granted.

Revision ID: 002_permission_pending
Revises: 001_deal_files
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002_permission_pending"
down_revision: Union[str, None] = "001_deal_files"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "deal_files",
        sa.Column(
            "permission_pending",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
    )


def downgrade() -> None:
    op.drop_column("deal_files", "permission_pending")
