"""Audit log store — full before/after state for any entity.

Independent of invoice backups: buyers, products, users and invoices all
land in audit_logs. Invoice entries carry the nested line items under
`invoice_items` so a viewer can rebuild item state from one row.

Each entry is also folded into audit_summary (one row per entity) in the
same transaction.

AuditTrail is the fire-and-forget writer used by request handlers. It never
raises storage failures — they are logged and the primary operation carries on.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from invoice_audit.audit.summary import audit_summary_projection
from invoice_audit.config import settings
from invoice_audit.errors import StorageError, ValidationError
from invoice_audit.models.audit import AuditLog
from invoice_audit.models.enums import AuditOperation, EntityType
from invoice_audit.schemas.snapshots import (
    ActorInfo,
    RequestContext,
    TenantInfo,
    ensure_json_lossless,
)

logger = logging.getLogger(__name__)

INVOICE_ITEMS_KEY = "invoice_items"


def compute_changed_fields(
    old_values: Mapping[str, Any] | None,
    new_values: Mapping[str, Any] | None,
) -> dict[str, dict[str, Any]] | None:
    """Top-level keys whose values differ, as {key: {"old": ..., "new": ...}}.

    Nested values (e.g. the invoice_items array) are compared as whole values.
    A key missing on one side counts as None. Returns None when nothing changed.
    """
    old = old_values or {}
    new = new_values or {}
    changed: dict[str, dict[str, Any]] = {}
    for key in sorted(set(old) | set(new)):
        before = old.get(key)
        after = new.get(key)
        if before != after:
            changed[key] = {"old": before, "new": after}
    return changed or None


def invoice_audit_values(
    invoice: Mapping[str, Any],
    items: Sequence[Mapping[str, Any]] | None,
) -> dict[str, Any]:
    """Invoice state for the audit log with the nested line-item array."""
    values = {k: v for k, v in invoice.items() if k not in settings.backup.sensitive_keys}
    values[INVOICE_ITEMS_KEY] = [dict(item) for item in (items or [])]
    return values


def _check_values(
    entity_type: str,
    operation: AuditOperation,
    old_values: Mapping[str, Any] | None,
    new_values: Mapping[str, Any] | None,
) -> None:
    if operation is AuditOperation.UPDATE and (old_values is None or new_values is None):
        msg = "UPDATE audit entries need both old_values and new_values"
        raise ValidationError(msg)
    if operation is AuditOperation.CREATE:
        if old_values is not None:
            msg = "CREATE audit entries must not carry old_values"
            raise ValidationError(msg)
        if new_values is None:
            msg = "CREATE audit entries need new_values"
            raise ValidationError(msg)
    if operation is AuditOperation.DELETE and new_values is not None:
        msg = "DELETE audit entries must not carry new_values"
        raise ValidationError(msg)
    if (
        entity_type == EntityType.INVOICE.value
        and new_values is not None
        and INVOICE_ITEMS_KEY not in new_values
    ):
        msg = f"Invoice audit new_values must include '{INVOICE_ITEMS_KEY}'"
        raise ValidationError(msg)


class AuditLogStore:
    """Stateless audit log operations — AsyncSession passed per call."""

    async def record_change(
        self,
        db: AsyncSession,
        entity_type: EntityType | str,
        entity_id: int,
        operation: AuditOperation | str,
        old_values: Mapping[str, Any] | None = None,
        new_values: Mapping[str, Any] | None = None,
        actor: ActorInfo | None = None,
        tenant: TenantInfo | None = None,
        request: RequestContext | None = None,
        additional_info: Mapping[str, Any] | None = None,
        changed_fields: Mapping[str, Any] | None = None,
    ) -> AuditLog:
        """Append one audit entry and fold it into the entity's summary. Does not commit."""
        try:
            op = AuditOperation(operation)
        except ValueError as exc:
            msg = f"Unknown audit operation: {operation!r}"
            raise ValidationError(msg) from exc
        entity = entity_type.value if isinstance(entity_type, EntityType) else str(entity_type)
        if not entity:
            msg = "entity_type is required"
            raise ValidationError(msg)

        _check_values(entity, op, old_values, new_values)

        old = ensure_json_lossless(dict(old_values), "old_values") if old_values is not None else None
        new = ensure_json_lossless(dict(new_values), "new_values") if new_values is not None else None
        if changed_fields is None and op is AuditOperation.UPDATE:
            diff = compute_changed_fields(old, new)
        else:
            diff = dict(changed_fields) if changed_fields is not None else None
        if diff is not None:
            ensure_json_lossless(diff, "changed_fields")
        extra = ensure_json_lossless(dict(additional_info), "additional_info") if additional_info else None

        actor = actor or ActorInfo()
        tenant = tenant or TenantInfo()
        request = request or RequestContext()
        request_id = request.request_id
        if request_id is None and settings.backup.generate_request_ids:
            request_id = str(uuid.uuid4())

        entry = AuditLog(
            entity_type=entity,
            entity_id=entity_id,
            operation=op.value,
            old_values=old,
            new_values=new,
            changed_fields=diff,
            user_id=actor.user_id,
            user_email=actor.email,
            user_name=actor.display_name,
            user_role=actor.role,
            tenant_id=tenant.id,
            tenant_name=tenant.name,
            ip_address=request.ip_address,
            user_agent=request.user_agent,
            request_id=request_id,
            additional_info=extra,
        )
        try:
            db.add(entry)
            await db.flush()
            await audit_summary_projection.upsert_summary(db, entry)
        except SQLAlchemyError as exc:
            msg = f"Could not persist audit entry for {entity}:{entity_id}"
            raise StorageError(msg) from exc

        logger.info("Audit entry written: %s %s:%s id=%s", op.value, entity, entity_id, entry.id)
        return entry

    async def list_entries(
        self,
        db: AsyncSession,
        entity_type: EntityType | str,
        entity_id: int,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLog]:
        """Audit entries for one entity, newest first."""
        entity = entity_type.value if isinstance(entity_type, EntityType) else str(entity_type)
        result = await db.execute(
            select(AuditLog)
            .where(AuditLog.entity_type == entity, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())


# Module-level singleton
audit_log_store = AuditLogStore()


class AuditTrail:
    """Tenant-bound audit writer with its own transaction per entry."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record_change(self, *args: Any, **kwargs: Any) -> AuditLog | None:
        """Write one audit entry; see AuditLogStore.record_change.

        ValidationError propagates. StorageError is logged and None returned —
        audit logging must never break the operation being audited.
        """
        try:
            async with self._session_factory() as db, db.begin():
                return await audit_log_store.record_change(db, *args, **kwargs)
        except (StorageError, SQLAlchemyError):
            logger.exception("Failed to persist audit entry (args=%s)", args[:3])
            return None
