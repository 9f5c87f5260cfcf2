"""Initial schema — invoice backups, backup summary, audit logs.

Applied to every tenant database.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _actor_columns() -> list[sa.Column]:
    return [
        sa.Column("user_id", sa.BigInteger(), index=True),
        sa.Column("user_email", sa.String(255)),
        sa.Column("user_name", sa.String(255)),
        sa.Column("user_role", sa.String(50)),
        sa.Column("tenant_id", sa.BigInteger()),
        sa.Column("tenant_name", sa.String(255)),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("user_agent", sa.Text()),
        sa.Column("request_id", sa.String(100)),
        sa.Column("additional_info", postgresql.JSONB(astext_type=sa.Text())),
    ]


def upgrade() -> None:
    # ── Append-only history ────────────────────────────────────────────

    op.create_table(
        "invoice_backups",
        sa.Column("original_invoice_id", sa.BigInteger(), nullable=False, index=True),
        sa.Column("system_invoice_id", sa.String(20)),
        sa.Column("invoice_number", sa.String(100)),
        sa.Column("backup_type", sa.String(20), nullable=False, index=True, comment="BackupType enum value"),
        sa.Column("backup_reason", sa.String(255)),
        sa.Column("status_before", sa.String(50)),
        sa.Column("status_after", sa.String(50)),
        sa.Column("invoice_data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("invoice_items_data", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("fbr_request_data", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("fbr_response_data", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("fbr_invoice_number", sa.String(100)),
        *_actor_columns(),
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_invoice_backups_invoice_created",
        "invoice_backups",
        ["original_invoice_id", "created_at"],
    )
    op.create_index("ix_invoice_backups_created_at", "invoice_backups", ["created_at"])

    op.create_table(
        "audit_logs",
        sa.Column("entity_type", sa.String(50), nullable=False, comment="invoice, buyer, product, user"),
        sa.Column("entity_id", sa.BigInteger(), nullable=False),
        sa.Column("operation", sa.String(30), nullable=False, index=True, comment="AuditOperation enum value"),
        sa.Column("old_values", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("new_values", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("changed_fields", postgresql.JSONB(astext_type=sa.Text())),
        *_actor_columns(),
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_audit_logs_entity_created",
        "audit_logs",
        ["entity_type", "entity_id", "created_at"],
    )

    # ── Projection ─────────────────────────────────────────────────────

    op.create_table(
        "invoice_backup_summary",
        sa.Column("original_invoice_id", sa.BigInteger(), nullable=False),
        sa.Column("latest_backup_id", sa.BigInteger(), comment="Most recent invoice_backups.id"),
        sa.Column("last_backup_type", sa.String(20)),
        sa.Column("total_backups", sa.Integer(), server_default="0", nullable=False),
        sa.Column("draft_backups", sa.Integer(), server_default="0", nullable=False),
        sa.Column("saved_backups", sa.Integer(), server_default="0", nullable=False),
        sa.Column("edit_backups", sa.Integer(), server_default="0", nullable=False),
        sa.Column("post_backups", sa.Integer(), server_default="0", nullable=False),
        sa.Column("fbr_request_backups", sa.Integer(), server_default="0", nullable=False),
        sa.Column("fbr_response_backups", sa.Integer(), server_default="0", nullable=False),
        sa.Column("first_backup_at", sa.DateTime(timezone=True)),
        sa.Column("last_backup_at", sa.DateTime(timezone=True)),
        sa.Column("created_by_user_id", sa.BigInteger()),
        sa.Column("created_by_email", sa.String(255)),
        sa.Column("created_by_name", sa.String(255)),
        sa.Column("last_modified_by_user_id", sa.BigInteger()),
        sa.Column("last_modified_by_email", sa.String(255)),
        sa.Column("last_modified_by_name", sa.String(255)),
        sa.Column("current_invoice_number", sa.String(100)),
        sa.Column("current_status", sa.String(50)),
        sa.Column("system_invoice_id", sa.String(20)),
        sa.Column("fbr_invoice_number", sa.String(100)),
        sa.Column("tenant_id", sa.BigInteger()),
        sa.Column("tenant_name", sa.String(255)),
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("original_invoice_id"),
    )


def downgrade() -> None:
    op.drop_table("invoice_backup_summary")
    op.drop_index("idx_audit_logs_entity_created", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_invoice_backups_created_at", table_name="invoice_backups")
    op.drop_index("idx_invoice_backups_invoice_created", table_name="invoice_backups")
    op.drop_table("invoice_backups")
