"""Audit summary — one aggregate row per audited entity.

Revision ID: 002
Revises: 001
Create Date: 2026-10-17
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def upgrade() -> None:
    op.create_table(
        "audit_summary",
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.BigInteger(), nullable=False),
        sa.Column("entity_name", sa.String(255), comment="Human-readable name of the entity"),
        sa.Column("latest_audit_log_id", sa.BigInteger(), comment="Most recent audit_logs.id"),
        sa.Column("total_operations", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_by_user_id", sa.BigInteger(), index=True),
        sa.Column("created_by_email", sa.String(255)),
        sa.Column("created_by_name", sa.String(255)),
        sa.Column("last_modified_by_user_id", sa.BigInteger()),
        sa.Column("last_modified_by_email", sa.String(255)),
        sa.Column("last_modified_by_name", sa.String(255)),
        sa.Column("last_modified_at", sa.DateTime(timezone=True)),
        sa.Column("tenant_id", sa.BigInteger()),
        sa.Column("tenant_name", sa.String(255)),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("deleted_by_user_id", sa.BigInteger()),
        sa.Column("deleted_by_email", sa.String(255)),
        sa.Column("deleted_by_name", sa.String(255)),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entity_type", "entity_id", name="uq_audit_summary_entity"),
    )
    op.create_index(
        "idx_audit_summary_entity_tenant",
        "audit_summary",
        ["entity_type", "tenant_id", "last_modified_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_audit_summary_entity_tenant", table_name="audit_summary")
    op.drop_table("audit_summary")
