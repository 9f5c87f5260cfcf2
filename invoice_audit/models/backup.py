"""InvoiceBackup model — append-only point-in-time invoice snapshots.

One row per tracked lifecycle event. Rows are never updated or deleted, and
they outlive the invoice they describe: original_invoice_id is a soft
reference, not a foreign key.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import BigInteger, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from invoice_audit.models.base import Base, CreatedAtMixin, JSONType


class InvoiceBackup(CreatedAtMixin, Base):
    """Immutable snapshot of an invoice and its line items."""

    __tablename__ = "invoice_backups"
    __table_args__ = (
        Index("idx_invoice_backups_invoice_created", "original_invoice_id", "created_at"),
        Index("ix_invoice_backups_created_at", "created_at"),
    )

    # Owning invoice and identifiers valid at snapshot time
    original_invoice_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    system_invoice_id: Mapped[str | None] = mapped_column(String(20))
    invoice_number: Mapped[str | None] = mapped_column(String(100))

    # Lifecycle event
    backup_type: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True, comment="BackupType enum value"
    )
    backup_reason: Mapped[str | None] = mapped_column(String(255))
    status_before: Mapped[str | None] = mapped_column(String(50))
    status_after: Mapped[str | None] = mapped_column(String(50))

    # Snapshot payloads
    invoice_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    invoice_items_data: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType)
    fbr_request_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    fbr_response_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    fbr_invoice_number: Mapped[str | None] = mapped_column(String(100))

    # Actor (all nullable; system-initiated snapshots have no user)
    user_id: Mapped[int | None] = mapped_column(BigInteger, index=True)
    user_email: Mapped[str | None] = mapped_column(String(255))
    user_name: Mapped[str | None] = mapped_column(String(255))
    user_role: Mapped[str | None] = mapped_column(String(50))

    # Tenant
    tenant_id: Mapped[int | None] = mapped_column(BigInteger)
    tenant_name: Mapped[str | None] = mapped_column(String(255))

    # Request context
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)
    request_id: Mapped[str | None] = mapped_column(String(100))

    additional_info: Mapped[dict[str, Any] | None] = mapped_column(JSONType)

    def __repr__(self) -> str:
        return f"<InvoiceBackup id={self.id} invoice={self.original_invoice_id} type={self.backup_type}>"
