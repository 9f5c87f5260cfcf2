"""Summary reconciliation — detect and repair drift from invoice_backups.

invoice_backups is the authoritative history; invoice_backup_summary is a
projection of it. Reconciliation recomputes the projection from the records:

- counters and per-type counters are recounted
- first/last backup timestamps become min/max(created_at)
- latest_backup_id / last_backup_type point at the record with the highest id,
  the same record the upsert keeps
- types outside BackupType (older releases) count towards total_backups only
- null last-modifier and current-state fields are backfilled from the most
  recent record that carries a value; null creator fields from the earliest

Records are never modified. Running it twice is the same as running it once.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select, union
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from invoice_audit.backup.summary import (
    CREATOR_FIELDS,
    CURRENT_STATE_FIELDS,
    LAST_MODIFIER_FIELDS,
    creator_values,
    overwrite_values,
)
from invoice_audit.errors import ConsistencyDrift, StorageError
from invoice_audit.models.backup import InvoiceBackup
from invoice_audit.models.backup_summary import InvoiceBackupSummary
from invoice_audit.models.enums import BackupType

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of reconciling one invoice's summary."""

    invoice_id: int
    record_count: int = 0
    created: bool = False
    corrections: dict[str, tuple[Any, Any]] = field(default_factory=dict)

    @property
    def drift(self) -> ConsistencyDrift | None:
        if not self.corrections:
            return None
        return ConsistencyDrift(self.invoice_id, self.corrections)


def _naive(value: datetime) -> datetime:
    return value.replace(tzinfo=None)


def _same_instant(a: datetime | None, b: datetime | None) -> bool:
    # SQLite hands back naive datetimes; compare wall-clock values
    if a is None or b is None:
        return a is b
    return _naive(a) == _naive(b)


def _counter_column(backup_type: str) -> str | None:
    try:
        return BackupType(backup_type).counter_column
    except ValueError:
        return None


def expected_summary(records: Sequence[InvoiceBackup]) -> dict[str, Any]:
    """Aggregate values the summary must hold, given records in id order."""
    counts = {bt.counter_column: 0 for bt in BackupType}
    for record in records:
        column = _counter_column(record.backup_type)
        if column is None:
            logger.warning(
                "Backup %s of invoice %s has unknown type %r; counted in total only",
                record.id,
                record.original_invoice_id,
                record.backup_type,
            )
            continue
        counts[column] += 1

    stamps = [r.created_at for r in records if r.created_at is not None]
    latest = records[-1] if records else None
    return {
        "total_backups": len(records),
        **counts,
        "first_backup_at": min(stamps, key=_naive) if stamps else None,
        "last_backup_at": max(stamps, key=_naive) if stamps else None,
        "latest_backup_id": latest.id if latest else None,
        "last_backup_type": latest.backup_type if latest else None,
    }


def backfill_values(records: Sequence[InvoiceBackup]) -> dict[str, Any]:
    """Best known value for each nullable summary field, given records in id order."""
    values: dict[str, Any] = {}
    for record in reversed(records):
        for key, value in overwrite_values(record).items():
            if value is not None and key not in values:
                values[key] = value
    for record in records:
        for key, value in creator_values(record).items():
            if value is not None and key not in values:
                values[key] = value
    return values


def plan_corrections(
    summary: InvoiceBackupSummary | None,
    records: Sequence[InvoiceBackup],
) -> dict[str, tuple[Any, Any]]:
    """Fields to change on `summary` as {field: (current, corrected)}."""
    corrections: dict[str, tuple[Any, Any]] = {}

    for key, want in expected_summary(records).items():
        have = getattr(summary, key) if summary is not None else None
        if key in ("first_backup_at", "last_backup_at"):
            if not _same_instant(have, want):
                corrections[key] = (have, want)
        elif have != want:
            corrections[key] = (have, want)

    fill = backfill_values(records)
    for key in (*LAST_MODIFIER_FIELDS, *CURRENT_STATE_FIELDS, *CREATOR_FIELDS):
        have = getattr(summary, key) if summary is not None else None
        if have is None and fill.get(key) is not None:
            corrections[key] = (None, fill[key])
    return corrections


async def _load(db: AsyncSession, invoice_id: int, lock: bool) -> tuple[InvoiceBackupSummary | None, list[InvoiceBackup]]:
    summary_q = (
        select(InvoiceBackupSummary)
        .where(InvoiceBackupSummary.original_invoice_id == invoice_id)
        .execution_options(populate_existing=True)
    )
    if lock:
        summary_q = summary_q.with_for_update()
    summary = (await db.execute(summary_q)).scalar_one_or_none()

    records = (
        await db.execute(
            select(InvoiceBackup)
            .where(InvoiceBackup.original_invoice_id == invoice_id)
            .order_by(InvoiceBackup.id.asc())
        )
    ).scalars().all()
    return summary, list(records)


async def detect_drift(db: AsyncSession, invoice_id: int) -> ConsistencyDrift | None:
    """Compare a summary with its records without writing anything."""
    summary, records = await _load(db, invoice_id, lock=False)
    if summary is None and not records:
        return None
    corrections = plan_corrections(summary, records)
    if summary is None:
        corrections.setdefault("original_invoice_id", (None, invoice_id))
    return ConsistencyDrift(invoice_id, corrections) if corrections else None


async def reconcile_summary(db: AsyncSession, invoice_id: int) -> ReconcileResult:
    """Recompute one invoice's summary from its backup records.

    Does not commit. Raises StorageError if the database rejects the repair.
    """
    result = ReconcileResult(invoice_id=invoice_id)
    try:
        summary, records = await _load(db, invoice_id, lock=True)
        result.record_count = len(records)
        if summary is None and not records:
            return result

        corrections = plan_corrections(summary, records)
        if summary is None:
            summary = InvoiceBackupSummary(original_invoice_id=invoice_id)
            db.add(summary)
            result.created = True

        for key, (_, corrected) in corrections.items():
            setattr(summary, key, corrected)
        result.corrections = corrections
        if corrections or result.created:
            await db.flush()
    except SQLAlchemyError as exc:
        msg = f"Could not reconcile backup summary for invoice {invoice_id}"
        raise StorageError(msg) from exc

    if result.drift is not None:
        logger.warning("%s (created=%s)", result.drift, result.created)
    return result


async def reconcile_all(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, int]:
    """Reconcile every invoice that has backups or a summary in one tenant database.

    Each invoice is repaired in its own transaction so one failure does not
    stop the sweep. Safe to run on a schedule; returns a summary dict.
    """
    stats: dict[str, int] = {"checked": 0, "corrected": 0, "created": 0, "failed": 0}

    async with session_factory() as db:
        ids_q = union(
            select(InvoiceBackup.original_invoice_id),
            select(InvoiceBackupSummary.original_invoice_id),
        )
        invoice_ids = sorted(row[0] for row in (await db.execute(ids_q)).all())

    for invoice_id in invoice_ids:
        stats["checked"] += 1
        try:
            async with session_factory() as db, db.begin():
                result = await reconcile_summary(db, invoice_id)
        except (StorageError, SQLAlchemyError):
            logger.exception("Reconciliation failed for invoice %s", invoice_id)
            stats["failed"] += 1
            continue
        if result.created:
            stats["created"] += 1
        if result.corrections:
            stats["corrected"] += 1

    logger.info(
        "Summary reconciliation complete: checked=%d corrected=%d created=%d failed=%d",
        stats["checked"],
        stats["corrected"],
        stats["created"],
        stats["failed"],
    )
    return stats
