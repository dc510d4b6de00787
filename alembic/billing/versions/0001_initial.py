"""initial billing schema

Revision ID: 0001_billing
Revises:
Create Date: 2026-10-12
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_billing"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "payment",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("transaction_key", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_grace_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_schedule_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_schedule_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payment_transaction_key", "payment", ["transaction_key"])
    op.create_index("ix_payment_status", "payment", ["status"])
    op.create_index("ix_payment_created_at", "payment", ["created_at"])
    op.create_index("ix_payment_user_id", "payment", ["user_id"])

    op.create_table(
        "webhook_inbox",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("payment_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("received_on", sa.Date(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_id", "status", "received_on", name="uq_webhook_delivery"),
    )
    op.create_index("ix_webhook_inbox_payment_id", "webhook_inbox", ["payment_id"])


def downgrade() -> None:
    op.drop_index("ix_webhook_inbox_payment_id", table_name="webhook_inbox")
    op.drop_table("webhook_inbox")
    op.drop_index("ix_payment_user_id", table_name="payment")
    op.drop_index("ix_payment_created_at", table_name="payment")
    op.drop_index("ix_payment_status", table_name="payment")
    op.drop_index("ix_payment_transaction_key", table_name="payment")
    op.drop_table("payment")
