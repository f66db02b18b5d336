"""Deal files ledger table.

Revision ID: 001_deal_files
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_deal_files"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "deal_files",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("deal_id", sa.String(100), nullable=False),
        sa.Column("source_file_id", sa.String(100), nullable=False),
        sa.Column("file_name", sa.Text(), nullable=True),
        sa.Column("file_type", sa.String(255), nullable=True),
        sa.Column("file_url", sa.Text(), nullable=True),
        sa.Column("web_view_link", sa.Text(), nullable=True),
        sa.Column("remote_file_id", sa.String(200), nullable=True),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.UniqueConstraint("deal_id", "source_file_id", name="uq_deal_files_deal_source"),
    )
    op.create_index("ix_deal_files_deal_id", "deal_files", ["deal_id"])


def downgrade() -> None:
    op.drop_index("ix_deal_files_deal_id", table_name="deal_files")
    op.drop_table("deal_files")
