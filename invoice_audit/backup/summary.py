"""Backup summary projection — one aggregate row per invoice.

The row is created on the first backup and updated with every later one in
the same transaction as the backup insert. All counter changes are column
arithmetic evaluated by the database (total_backups = total_backups + 1),
so concurrent backups for the same invoice never lose an increment.

Rules applied per backup:
- creator attribution is written once, when the row is created
- last-modifier and current-state fields are overwritten only by non-null values
- first_backup_at / last_backup_at track min / max of the records' created_at
- latest_backup_id tracks the highest record id; a record whose id is already
  the latest is treated as a retry and skipped
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import BigInteger, DateTime, String, case, literal, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_audit.db.statements import insert_if_absent
from invoice_audit.models.backup import InvoiceBackup
from invoice_audit.models.backup_summary import InvoiceBackupSummary
from invoice_audit.models.enums import BackupType

logger = logging.getLogger(__name__)

# Summary fields that follow the newest non-null value
LAST_MODIFIER_FIELDS: tuple[str, ...] = (
    "last_modified_by_user_id",
    "last_modified_by_email",
    "last_modified_by_name",
)
CURRENT_STATE_FIELDS: tuple[str, ...] = (
    "current_invoice_number",
    "current_status",
    "system_invoice_id",
    "fbr_invoice_number",
    "tenant_id",
    "tenant_name",
)
CREATOR_FIELDS: tuple[str, ...] = (
    "created_by_user_id",
    "created_by_email",
    "created_by_name",
)


def creator_values(record: InvoiceBackup) -> dict[str, Any]:
    """Creator attribution taken from a backup record."""
    return {
        "created_by_user_id": record.user_id,
        "created_by_email": record.user_email,
        "created_by_name": record.user_name,
    }


def overwrite_values(record: InvoiceBackup) -> dict[str, Any]:
    """Last-modifier and current-state values carried by a backup record."""
    status = record.status_after
    if status is None and isinstance(record.invoice_data, dict):
        status = record.invoice_data.get("status")
    return {
        "last_modified_by_user_id": record.user_id,
        "last_modified_by_email": record.user_email,
        "last_modified_by_name": record.user_name,
        "current_invoice_number": record.invoice_number,
        "current_status": status,
        "system_invoice_id": record.system_invoice_id,
        "fbr_invoice_number": record.fbr_invoice_number,
        "tenant_id": record.tenant_id,
        "tenant_name": record.tenant_name,
    }


class SummaryProjection:
    """Stateless summary operations — AsyncSession passed per call."""

    async def upsert_summary(self, db: AsyncSession, record: InvoiceBackup) -> bool:
        """Fold one flushed backup record into its invoice's summary.

        Returns True when the summary changed, False when the record was
        already the summary's latest backup (retry of the same write).
        """
        if record.id is None or record.created_at is None:
            msg = "upsert_summary needs a flushed InvoiceBackup (id and created_at set)"
            raise ValueError(msg)

        backup_type = BackupType(record.backup_type)
        dialect = db.get_bind().dialect.name

        seed = {
            "original_invoice_id": record.original_invoice_id,
            **creator_values(record),
            **overwrite_values(record),
        }
        await db.execute(
            insert_if_absent(dialect, InvoiceBackupSummary.__table__, seed, ["original_invoice_id"])
        )

        s = InvoiceBackupSummary
        counter = getattr(s, backup_type.counter_column)
        ts = literal(record.created_at, DateTime(timezone=True))
        record_id = literal(record.id, BigInteger())
        is_newer = or_(s.latest_backup_id.is_(None), s.latest_backup_id < record_id)

        values: dict[str, Any] = {
            "total_backups": s.total_backups + 1,
            backup_type.counter_column: counter + 1,
            "first_backup_at": case(
                (or_(s.first_backup_at.is_(None), s.first_backup_at > ts), ts),
                else_=s.first_backup_at,
            ),
            "last_backup_at": case(
                (or_(s.last_backup_at.is_(None), s.last_backup_at < ts), ts),
                else_=s.last_backup_at,
            ),
            "last_backup_type": case(
                (is_newer, literal(backup_type.value, String())),
                else_=s.last_backup_type,
            ),
            "latest_backup_id": case((is_newer, record_id), else_=s.latest_backup_id),
        }
        # Never replace a known value with NULL
        values.update({k: v for k, v in overwrite_values(record).items() if v is not None})

        stmt = (
            update(s)
            .where(
                s.original_invoice_id == record.original_invoice_id,
                or_(s.latest_backup_id.is_(None), s.latest_backup_id != record_id),
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)

        if result.rowcount == 0:  # type: ignore[attr-defined]
            logger.debug(
                "Summary already includes backup %s for invoice %s — skipped",
                record.id,
                record.original_invoice_id,
            )
            return False
        return True


# Module-level singleton
summary_projection = SummaryProjection()
