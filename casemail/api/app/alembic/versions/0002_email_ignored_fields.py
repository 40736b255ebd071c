"""Add soft-ignore fields to email_messages.

Revision ID: 0002_email_ignored_fields
Revises: 0001_email_classification_baseline
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision: str = "0002_email_ignored_fields"
down_revision: str = "0001_email_classification_baseline"
branch_labels = None
depends_on = None


def column_exists(table: str, column: str) -> bool:
    """Check if a column exists in a table."""
    inspector = sa.inspect(op.get_bind())
    return any(c["name"] == column for c in inspector.get_columns(table))


def upgrade() -> None:
    if not column_exists("email_messages", "is_ignored"):
        op.add_column(
            "email_messages",
            sa.Column(
                "is_ignored", sa.Boolean(), nullable=False, server_default=sa.false()
            ),
        )

    if not column_exists("email_messages", "ignored_at"):
        op.add_column(
            "email_messages",
            sa.Column("ignored_at", sa.DateTime(timezone=True), nullable=True),
        )


def downgrade() -> None:
    with op.batch_alter_table("email_messages") as batch_op:
        batch_op.drop_column("ignored_at")
        batch_op.drop_column("is_ignored")
