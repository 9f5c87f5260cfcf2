"""Read-side queries for the backup audit viewer.

Shared by the FastAPI router and any operator tooling.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_audit.export import rows_to_csv
from invoice_audit.models.backup import InvoiceBackup
from invoice_audit.models.backup_summary import InvoiceBackupSummary
from invoice_audit.models.enums import BackupType

logger = logging.getLogger(__name__)


@dataclass
class BackupFilters:
    """Optional filters for tenant-wide backup listings."""

    backup_type: BackupType | None = None
    invoice_id: int | None = None
    user_id: int | None = None
    start: datetime | None = None
    end: datetime | None = None

    def apply(self, query: Select[Any]) -> Select[Any]:
        if self.backup_type is not None:
            query = query.where(InvoiceBackup.backup_type == self.backup_type.value)
        if self.invoice_id is not None:
            query = query.where(InvoiceBackup.original_invoice_id == self.invoice_id)
        if self.user_id is not None:
            query = query.where(InvoiceBackup.user_id == self.user_id)
        if self.start is not None:
            query = query.where(InvoiceBackup.created_at >= self.start)
        if self.end is not None:
            query = query.where(InvoiceBackup.created_at <= self.end)
        return query


async def get_backup_history(
    db: AsyncSession,
    invoice_id: int,
    backup_type: BackupType | None = None,
    limit: int = 50,
    offset: int = 0,
    descending: bool = False,
) -> list[InvoiceBackup]:
    """Backups for one invoice ordered by created_at (oldest first by default)."""
    order = (
        (InvoiceBackup.created_at.desc(), InvoiceBackup.id.desc())
        if descending
        else (InvoiceBackup.created_at.asc(), InvoiceBackup.id.asc())
    )
    query = select(InvoiceBackup).where(InvoiceBackup.original_invoice_id == invoice_id)
    if backup_type is not None:
        query = query.where(InvoiceBackup.backup_type == backup_type.value)
    result = await db.execute(query.order_by(*order).limit(limit).offset(offset))
    return list(result.scalars().all())


async def get_backup_summary(db: AsyncSession, invoice_id: int) -> InvoiceBackupSummary | None:
    """The summary row for one invoice, freshly loaded."""
    result = await db.execute(
        select(InvoiceBackupSummary)
        .where(InvoiceBackupSummary.original_invoice_id == invoice_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_backups(
    db: AsyncSession,
    filters: BackupFilters | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[InvoiceBackup], int]:
    """Tenant-wide backups, newest first. Returns (backups, total_count)."""
    filters = filters or BackupFilters()
    total = (await db.execute(filters.apply(select(func.count(InvoiceBackup.id))))).scalar() or 0
    result = await db.execute(
        filters.apply(select(InvoiceBackup))
        .order_by(InvoiceBackup.created_at.desc(), InvoiceBackup.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def get_backup_statistics(
    db: AsyncSession,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    """Backup counts per type, invoices covered, top users and recent activity."""
    filters = BackupFilters(start=start, end=end)

    result = await db.execute(
        filters.apply(select(InvoiceBackup.backup_type, func.count(InvoiceBackup.id)))
        .group_by(InvoiceBackup.backup_type)
    )
    by_type = {bt.value: 0 for bt in BackupType}
    for backup_type, count in result.all():
        by_type[backup_type] = count

    invoices = (await db.execute(select(func.count(InvoiceBackupSummary.id)))).scalar() or 0

    backup_count = func.count(InvoiceBackup.id).label("backup_count")
    result = await db.execute(
        filters.apply(
            select(InvoiceBackup.user_id, InvoiceBackup.user_name, InvoiceBackup.user_email, backup_count)
        )
        .group_by(InvoiceBackup.user_id, InvoiceBackup.user_name, InvoiceBackup.user_email)
        .order_by(backup_count.desc())
        .limit(10)
    )
    top_users = [
        {"user_id": uid, "user_name": name, "user_email": email, "backup_count": count}
        for uid, name, email, count in result.all()
    ]

    result = await db.execute(
        filters.apply(select(InvoiceBackup))
        .order_by(InvoiceBackup.created_at.desc(), InvoiceBackup.id.desc())
        .limit(10)
    )
    recent = list(result.scalars().all())

    return {
        "total_backups": sum(by_type.values()),
        "total_invoices_with_backups": invoices,
        "by_type": by_type,
        "top_users": top_users,
        "recent_backups": recent,
    }


# ── CSV export ───────────────────────────────────────────────────────

EXPORT_COLUMNS: tuple[tuple[str, str], ...] = (
    ("ID", "id"),
    ("Original Invoice ID", "original_invoice_id"),
    ("System Invoice ID", "system_invoice_id"),
    ("Invoice Number", "invoice_number"),
    ("Backup Type", "backup_type"),
    ("Backup Reason", "backup_reason"),
    ("Status Before", "status_before"),
    ("Status After", "status_after"),
    ("FBR Invoice Number", "fbr_invoice_number"),
    ("User Name", "user_name"),
    ("User Email", "user_email"),
    ("User Role", "user_role"),
    ("Created At", "created_at"),
)


def export_backups_csv(backups: Iterable[InvoiceBackup]) -> str:
    """Render backups as CSV text, one row per record. Missing values are empty."""
    return rows_to_csv(EXPORT_COLUMNS, backups)
