"""Create ledger tables.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # One JSON document per user holding the full ledger
    op.create_table(
        "user_ledgers",
        sa.Column("user_id", sa.String(100), primary_key=True),
        sa.Column(
            "transactions",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "linked_accounts",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("external_account_id", sa.String(100), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("credential_ref", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_linked_accounts_user", "linked_accounts", ["user_id"])
    op.create_index(
        "idx_linked_accounts_external",
        "linked_accounts",
        ["user_id", "external_account_id"],
        unique=True,
    )

    op.create_table(
        "sync_metadata",
        sa.Column("user_id", sa.String(100), primary_key=True),
        sa.Column("sync_status", sa.String(20), server_default="idle"),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_start_date", sa.Date(), nullable=True),
        sa.Column("last_added", sa.Integer(), server_default="0"),
        sa.Column("last_modified", sa.Integer(), server_default="0"),
        sa.Column("last_removed", sa.Integer(), server_default="0"),
        sa.Column("last_warning", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("sync_metadata")
    op.drop_table("linked_accounts")
    op.drop_table("user_ledgers")
