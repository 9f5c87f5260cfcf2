"""Read-side queries for the entity audit log and its summaries.

Same shape as invoice_audit.backup.queries: filter dataclasses with an
apply() method, listings that return (rows, total_count).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Select, String, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_audit.export import rows_to_csv
from invoice_audit.models.audit import AuditLog
from invoice_audit.models.audit_summary import AuditSummary
from invoice_audit.models.base import utcnow
from invoice_audit.models.enums import AuditOperation, EntityType

RECENT_ACTIVITY_WINDOW = timedelta(hours=24)


def _contains(column: Any, text: str) -> Any:
    return func.lower(column).contains(text.lower(), autoescape=True)


@dataclass
class AuditFilters:
    """Optional filters for audit log listings."""

    entity_type: str | None = None
    entity_id: int | None = None
    operation: AuditOperation | None = None
    user_id: int | None = None
    user_email: str | None = None
    tenant_id: int | None = None
    start: datetime | None = None
    end: datetime | None = None
    search: str | None = None

    def apply(self, query: Select[Any]) -> Select[Any]:
        if self.entity_type is not None:
            entity = self.entity_type.value if isinstance(self.entity_type, EntityType) else self.entity_type
            query = query.where(AuditLog.entity_type == entity)
        if self.entity_id is not None:
            query = query.where(AuditLog.entity_id == self.entity_id)
        if self.operation is not None:
            query = query.where(AuditLog.operation == self.operation.value)
        if self.user_id is not None:
            query = query.where(AuditLog.user_id == self.user_id)
        if self.user_email is not None:
            query = query.where(AuditLog.user_email == self.user_email)
        if self.tenant_id is not None:
            query = query.where(AuditLog.tenant_id == self.tenant_id)
        if self.start is not None:
            query = query.where(AuditLog.created_at >= self.start)
        if self.end is not None:
            query = query.where(AuditLog.created_at <= self.end)
        if self.search:
            query = query.where(
                or_(
                    _contains(AuditLog.user_name, self.search),
                    _contains(AuditLog.user_email, self.search),
                    _contains(cast(AuditLog.additional_info, String), self.search),
                )
            )
        return query


@dataclass
class AuditSummaryFilters:
    """Optional filters for audit summary listings. Dates apply to last_modified_at."""

    entity_type: str | None = None
    tenant_id: int | None = None
    is_deleted: bool | None = None
    created_by_user_id: int | None = None
    start: datetime | None = None
    end: datetime | None = None
    search: str | None = None

    def apply(self, query: Select[Any]) -> Select[Any]:
        if self.entity_type is not None:
            query = query.where(AuditSummary.entity_type == self.entity_type)
        if self.tenant_id is not None:
            query = query.where(AuditSummary.tenant_id == self.tenant_id)
        if self.is_deleted is not None:
            query = query.where(AuditSummary.is_deleted.is_(self.is_deleted))
        if self.created_by_user_id is not None:
            query = query.where(AuditSummary.created_by_user_id == self.created_by_user_id)
        if self.start is not None:
            query = query.where(AuditSummary.last_modified_at >= self.start)
        if self.end is not None:
            query = query.where(AuditSummary.last_modified_at <= self.end)
        if self.search:
            query = query.where(
                or_(
                    _contains(AuditSummary.entity_name, self.search),
                    _contains(AuditSummary.created_by_name, self.search),
                    _contains(AuditSummary.last_modified_by_name, self.search),
                )
            )
        return query


async def list_audit_logs(
    db: AsyncSession,
    filters: AuditFilters | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    """Audit entries across all entities, newest first. Returns (entries, total_count)."""
    filters = filters or AuditFilters()
    total = (await db.execute(filters.apply(select(func.count(AuditLog.id))))).scalar() or 0
    result = await db.execute(
        filters.apply(select(AuditLog))
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def get_audit_summary(db: AsyncSession, entity_type: str, entity_id: int) -> AuditSummary | None:
    """The summary row for one entity, freshly loaded."""
    result = await db.execute(
        select(AuditSummary)
        .where(AuditSummary.entity_type == entity_type, AuditSummary.entity_id == entity_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_audit_summaries(
    db: AsyncSession,
    filters: AuditSummaryFilters | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AuditSummary], int]:
    """Entity summaries, most recently modified first. Returns (summaries, total_count)."""
    filters = filters or AuditSummaryFilters()
    total = (await db.execute(filters.apply(select(func.count(AuditSummary.id))))).scalar() or 0
    result = await db.execute(
        filters.apply(select(AuditSummary))
        .order_by(AuditSummary.last_modified_at.desc(), AuditSummary.id.desc())
        .limit(limit)
        .offset(offset)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all()), total


async def get_audit_statistics(
    db: AsyncSession,
    tenant_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Operation counts by operation and entity type, top users, last-24h activity."""
    filters = AuditFilters(tenant_id=tenant_id, start=start, end=end)

    total = (await db.execute(filters.apply(select(func.count(AuditLog.id))))).scalar() or 0

    result = await db.execute(
        filters.apply(select(AuditLog.operation, func.count(AuditLog.id))).group_by(AuditLog.operation)
    )
    by_operation = {op.value: 0 for op in AuditOperation}
    for operation, count in result.all():
        by_operation[operation] = count

    result = await db.execute(
        filters.apply(select(AuditLog.entity_type, func.count(AuditLog.id))).group_by(AuditLog.entity_type)
    )
    by_entity_type = {entity: count for entity, count in result.all()}

    op_count = func.count(AuditLog.id).label("count")
    result = await db.execute(
        filters.apply(select(AuditLog.user_name, AuditLog.user_email, op_count))
        .group_by(AuditLog.user_name, AuditLog.user_email)
        .order_by(op_count.desc())
        .limit(10)
    )
    top_users = [{"user_name": name, "user_email": email, "count": count} for name, email, count in result.all()]

    since = (now or utcnow()) - RECENT_ACTIVITY_WINDOW
    recent = (
        await db.execute(filters.apply(select(func.count(AuditLog.id))).where(AuditLog.created_at >= since))
    ).scalar() or 0

    return {
        "total_operations": total,
        "by_operation": by_operation,
        "by_entity_type": by_entity_type,
        "top_users": top_users,
        "recent_activity": recent,
    }


# ── CSV export ───────────────────────────────────────────────────────

AUDIT_EXPORT_COLUMNS: tuple[tuple[str, str], ...] = (
    ("ID", "id"),
    ("Entity Type", "entity_type"),
    ("Entity ID", "entity_id"),
    ("Operation", "operation"),
    ("User Name", "user_name"),
    ("User Email", "user_email"),
    ("User Role", "user_role"),
    ("Tenant Name", "tenant_name"),
    ("IP Address", "ip_address"),
    ("Created At", "created_at"),
)


def export_audit_logs_csv(entries: Iterable[AuditLog]) -> str:
    """Render audit entries as CSV text, one row per entry."""
    return rows_to_csv(AUDIT_EXPORT_COLUMNS, entries)
