"""initial content schema

Revision ID: 0001_content
Revises:
Create Date: 2026-10-12
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_content"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "magazine",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("image_url", sa.String(), nullable=False, server_default=""),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("tags", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_magazine_category", "magazine", ["category"])
    op.create_index("ix_magazine_user_id", "magazine", ["user_id"])
    op.create_index("ix_magazine_created_at", "magazine", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_magazine_created_at", table_name="magazine")
    op.drop_index("ix_magazine_user_id", table_name="magazine")
    op.drop_index("ix_magazine_category", table_name="magazine")
    op.drop_table("magazine")
