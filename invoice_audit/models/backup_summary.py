"""InvoiceBackupSummary model — one aggregate row per invoice.

Kept in step with invoice_backups inside the same transaction; see
invoice_audit.backup.reconcile for the repair path.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from invoice_audit.models.base import Base, CreatedAtMixin, UpdatedAtMixin


class InvoiceBackupSummary(CreatedAtMixin, UpdatedAtMixin, Base):
    """Denormalized backup counters and current invoice state."""

    __tablename__ = "invoice_backup_summary"

    original_invoice_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    latest_backup_id: Mapped[int | None] = mapped_column(BigInteger, comment="Most recent invoice_backups.id")
    last_backup_type: Mapped[str | None] = mapped_column(String(20))

    # Counters: only ever changed with column arithmetic in SQL
    total_backups: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    draft_backups: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    saved_backups: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    edit_backups: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    post_backups: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    fbr_request_backups: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    fbr_response_backups: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    first_backup_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_backup_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Set once from the first backup
    created_by_user_id: Mapped[int | None] = mapped_column(BigInteger)
    created_by_email: Mapped[str | None] = mapped_column(String(255))
    created_by_name: Mapped[str | None] = mapped_column(String(255))

    # Overwritten by every backup that carries a value
    last_modified_by_user_id: Mapped[int | None] = mapped_column(BigInteger)
    last_modified_by_email: Mapped[str | None] = mapped_column(String(255))
    last_modified_by_name: Mapped[str | None] = mapped_column(String(255))

    # Current invoice state
    current_invoice_number: Mapped[str | None] = mapped_column(String(100))
    current_status: Mapped[str | None] = mapped_column(String(50))
    system_invoice_id: Mapped[str | None] = mapped_column(String(20))
    fbr_invoice_number: Mapped[str | None] = mapped_column(String(100))
    tenant_id: Mapped[int | None] = mapped_column(BigInteger)
    tenant_name: Mapped[str | None] = mapped_column(String(255))

    def __repr__(self) -> str:
        return f"<InvoiceBackupSummary invoice={self.original_invoice_id} total={self.total_backups}>"
