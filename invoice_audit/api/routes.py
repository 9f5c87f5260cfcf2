"""Read-only audit viewer API — backup history, summaries, statistics, audit log.

Mounted by the host application, which owns authentication. The tenant
database is chosen per request with the X-Tenant-Database header.
"""
# ruff: noqa: B008

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_audit.api.deps import get_db
from invoice_audit.api.formatters import (
    audit_entry_to_view,
    audit_statistics_to_view,
    audit_summary_to_view,
    backup_to_view,
    statistics_to_view,
    summary_to_view,
)
from invoice_audit.audit.queries import (
    AuditFilters,
    AuditSummaryFilters,
    export_audit_logs_csv,
    get_audit_statistics,
    get_audit_summary,
    list_audit_logs,
    list_audit_summaries,
)
from invoice_audit.audit.store import audit_log_store
from invoice_audit.backup.queries import (
    BackupFilters,
    export_backups_csv,
    get_backup_history,
    get_backup_statistics,
    get_backup_summary,
    list_backups,
)
from invoice_audit.backup.reconcile import detect_drift
from invoice_audit.config import settings
from invoice_audit.models.enums import AuditOperation, BackupType

logger = logging.getLogger(__name__)

router = APIRouter(tags=["invoice-backups"])

_MAX_PAGE = settings.backup.max_page_size
_PAGE = settings.backup.history_page_size


# ── Per-invoice ──────────────────────────────────────────────────────


@router.get("/invoices/{invoice_id}/backups")
async def invoice_backup_history(
    invoice_id: int,
    backup_type: BackupType | None = Query(None),
    limit: int = Query(_PAGE, ge=1, le=_MAX_PAGE),
    offset: int = Query(0, ge=0),
    order: str = Query("asc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Backup history of one invoice, oldest first unless order=desc."""
    backups = await get_backup_history(
        db,
        invoice_id,
        backup_type=backup_type,
        limit=limit,
        offset=offset,
        descending=order == "desc",
    )
    return {
        "invoice_id": invoice_id,
        "count": len(backups),
        "backups": [backup_to_view(b) for b in backups],
    }


@router.get("/invoices/{invoice_id}/backup-summary")
async def invoice_backup_summary(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Aggregate backup summary of one invoice."""
    summary = await get_backup_summary(db, invoice_id)
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No backup summary for invoice {invoice_id}",
        )
    return summary_to_view(summary)


@router.get("/invoices/{invoice_id}/backup-summary/drift")
async def invoice_backup_drift(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Compare the summary with its backup records. Nothing is written."""
    drift = await detect_drift(db, invoice_id)
    differences = drift.differences if drift is not None else {}
    return {
        "invoice_id": invoice_id,
        "drift": drift is not None,
        "differences": {
            key: {"summary": have, "actual": want}
            for key, (have, want) in sorted(differences.items())
        },
    }


# ── Tenant-wide ──────────────────────────────────────────────────────


def _filters(
    backup_type: BackupType | None = Query(None),
    invoice_id: int | None = Query(None),
    user_id: int | None = Query(None),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
) -> BackupFilters:
    return BackupFilters(
        backup_type=backup_type,
        invoice_id=invoice_id,
        user_id=user_id,
        start=start_date,
        end=end_date,
    )


@router.get("/backups")
async def all_backups(
    filters: BackupFilters = Depends(_filters),
    limit: int = Query(_PAGE, ge=1, le=_MAX_PAGE),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Filtered backup listing across all invoices, newest first."""
    backups, total = await list_backups(db, filters, limit=limit, offset=offset)
    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "backups": [backup_to_view(b) for b in backups],
    }


@router.get("/backups/statistics")
async def backup_statistics(
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Backup counts per type, invoices covered, top users, recent activity."""
    stats = await get_backup_statistics(db, start=start_date, end=end_date)
    return statistics_to_view(stats)


@router.get("/backups/export")
async def export_backups(
    filters: BackupFilters = Depends(_filters),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """Download the filtered backups as CSV."""
    backups, total = await list_backups(db, filters, limit=settings.backup.max_export_rows, offset=0)
    if total > len(backups):
        logger.warning("Backup export truncated to %d of %d rows", len(backups), total)
    filename = f"invoice_backups_{datetime.now(UTC).date().isoformat()}.csv"
    return Response(
        content=export_backups_csv(backups),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ── Audit log ────────────────────────────────────────────────────────
# Fixed paths are registered before /audit/{entity_type}/{entity_id}.


def _audit_filters(
    entity_type: str | None = Query(None, max_length=50),
    entity_id: int | None = Query(None),
    operation: AuditOperation | None = Query(None),
    user_id: int | None = Query(None),
    user_email: str | None = Query(None),
    tenant_id: int | None = Query(None),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    search: str | None = Query(None, max_length=200),
) -> AuditFilters:
    return AuditFilters(
        entity_type=entity_type,
        entity_id=entity_id,
        operation=operation,
        user_id=user_id,
        user_email=user_email,
        tenant_id=tenant_id,
        start=start_date,
        end=end_date,
        search=search,
    )


def _audit_page(entries: list[Any], total: int, limit: int, offset: int) -> dict[str, Any]:
    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "entries": [audit_entry_to_view(e) for e in entries],
    }


@router.get("/audit/logs")
async def audit_logs(
    filters: AuditFilters = Depends(_audit_filters),
    limit: int = Query(_PAGE, ge=1, le=_MAX_PAGE),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Filtered audit entries across all entities, newest first."""
    entries, total = await list_audit_logs(db, filters, limit=limit, offset=offset)
    return _audit_page(entries, total, limit, offset)


@router.get("/audit/summaries")
async def audit_summaries(
    entity_type: str | None = Query(None, max_length=50),
    tenant_id: int | None = Query(None),
    is_deleted: bool | None = Query(None),
    created_by_user_id: int | None = Query(None),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    search: str | None = Query(None, max_length=200),
    limit: int = Query(_PAGE, ge=1, le=_MAX_PAGE),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Entity summaries, most recently modified first."""
    filters = AuditSummaryFilters(
        entity_type=entity_type,
        tenant_id=tenant_id,
        is_deleted=is_deleted,
        created_by_user_id=created_by_user_id,
        start=start_date,
        end=end_date,
        search=search,
    )
    summaries, total = await list_audit_summaries(db, filters, limit=limit, offset=offset)
    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "summaries": [audit_summary_to_view(s) for s in summaries],
    }


@router.get("/audit/statistics")
async def audit_statistics(
    tenant_id: int | None = Query(None),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Operation counts by operation and entity type, top users, recent activity."""
    stats = await get_audit_statistics(db, tenant_id=tenant_id, start=start_date, end=end_date)
    return audit_statistics_to_view(stats)


@router.get("/audit/export")
async def export_audit(
    filters: AuditFilters = Depends(_audit_filters),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """Download the filtered audit entries as CSV."""
    entries, total = await list_audit_logs(db, filters, limit=settings.backup.max_export_rows, offset=0)
    if total > len(entries):
        logger.warning("Audit export truncated to %d of %d rows", len(entries), total)
    filename = f"audit_logs_{datetime.now(UTC).date().isoformat()}.csv"
    return Response(
        content=export_audit_logs_csv(entries),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/audit/users/{user_id}")
async def user_audit_log(
    user_id: int,
    limit: int = Query(_PAGE, ge=1, le=_MAX_PAGE),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Audit entries made by one user, newest first."""
    entries, total = await list_audit_logs(db, AuditFilters(user_id=user_id), limit=limit, offset=offset)
    return {"user_id": user_id, **_audit_page(entries, total, limit, offset)}


@router.get("/audit/tenants/{tenant_id}")
async def tenant_audit_log(
    tenant_id: int,
    limit: int = Query(_PAGE, ge=1, le=_MAX_PAGE),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Audit entries within one tenant, newest first."""
    entries, total = await list_audit_logs(db, AuditFilters(tenant_id=tenant_id), limit=limit, offset=offset)
    return {"tenant_id": tenant_id, **_audit_page(entries, total, limit, offset)}


@router.get("/audit/{entity_type}/{entity_id}")
async def entity_audit_log(
    entity_type: str,
    entity_id: int,
    limit: int = Query(_PAGE, ge=1, le=_MAX_PAGE),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Audit entries for one entity, newest first."""
    entries = await audit_log_store.list_entries(db, entity_type, entity_id, limit=limit, offset=offset)
    return {
        "entity_type": entity_type,
        "entity_id": entity_id,
        "count": len(entries),
        "entries": [audit_entry_to_view(e) for e in entries],
    }


@router.get("/audit/{entity_type}/{entity_id}/summary")
async def entity_audit_summary(
    entity_type: str,
    entity_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Aggregate audit summary of one entity."""
    summary = await get_audit_summary(db, entity_type, entity_id)
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No audit summary for {entity_type} {entity_id}",
        )
    return audit_summary_to_view(summary)
