"""Audit summary projection — one aggregate row per audited entity.

Folded in by AuditLogStore.record_change in the same transaction as the
audit_logs insert. Like the backup summary, the count is column arithmetic
and the row is guarded by the id of the newest folded entry, so a retried
fold of the same entry is a no-op.

Rules applied per entry:
- creator attribution, tenant and created_at are written once, when the row
  is created
- last-modifier attribution, last_modified_at and entity_name follow the
  entry with the highest id
- a DELETE marks the entity deleted and records who deleted it and when
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import BigInteger, DateTime, String, case, literal, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_audit.db.statements import insert_if_absent
from invoice_audit.models.audit import AuditLog
from invoice_audit.models.audit_summary import AuditSummary
from invoice_audit.models.enums import AuditOperation, EntityType

logger = logging.getLogger(__name__)


def entity_display_name(entity_type: str, entity_id: int, new_values: Mapping[str, Any] | None) -> str | None:
    """Human-readable name of an entity from its new state, None without one."""
    if not new_values:
        return None
    ident = new_values.get("id", entity_id)
    if entity_type == EntityType.INVOICE.value:
        return new_values.get("invoice_number") or new_values.get("system_invoice_id") or f"Invoice {ident}"
    if entity_type == EntityType.BUYER.value:
        return new_values.get("buyerBusinessName") or new_values.get("buyerNTNCNIC") or f"Buyer {ident}"
    if entity_type == EntityType.PRODUCT.value:
        return new_values.get("name") or f"Product {ident}"
    if entity_type == EntityType.USER.value:
        full_name = f"{new_values.get('firstName') or ''} {new_values.get('lastName') or ''}".strip()
        return new_values.get("email") or full_name or f"User {ident}"
    return f"{entity_type} {ident}"


class AuditSummaryProjection:
    """Stateless audit summary operations — AsyncSession passed per call."""

    async def upsert_summary(self, db: AsyncSession, entry: AuditLog) -> bool:
        """Fold one flushed audit entry into its entity's summary.

        Returns False when the entry was already folded in.
        """
        if entry.id is None or entry.created_at is None:
            msg = "upsert_summary needs a flushed AuditLog (id and created_at set)"
            raise ValueError(msg)

        dialect = db.get_bind().dialect.name
        name = entity_display_name(entry.entity_type, entry.entity_id, entry.new_values)

        seed = {
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "created_at": entry.created_at,
            "created_by_user_id": entry.user_id,
            "created_by_email": entry.user_email,
            "created_by_name": entry.user_name,
            "tenant_id": entry.tenant_id,
            "tenant_name": entry.tenant_name,
        }
        await db.execute(
            insert_if_absent(dialect, AuditSummary.__table__, seed, ["entity_type", "entity_id"])
        )

        s = AuditSummary
        entry_id = literal(entry.id, BigInteger())
        ts = literal(entry.created_at, DateTime(timezone=True))
        is_newer = or_(s.latest_audit_log_id.is_(None), s.latest_audit_log_id < entry_id)

        def newest(column: Any, value: Any, type_: Any) -> Any:
            return case((is_newer, literal(value, type_)), else_=column)

        values: dict[str, Any] = {
            "total_operations": s.total_operations + 1,
            "latest_audit_log_id": case((is_newer, entry_id), else_=s.latest_audit_log_id),
            "last_modified_at": case(
                (or_(s.last_modified_at.is_(None), s.last_modified_at < ts), ts),
                else_=s.last_modified_at,
            ),
            "last_modified_by_user_id": newest(s.last_modified_by_user_id, entry.user_id, BigInteger()),
            "last_modified_by_email": newest(s.last_modified_by_email, entry.user_email, String()),
            "last_modified_by_name": newest(s.last_modified_by_name, entry.user_name, String()),
        }
        if name is not None:
            values["entity_name"] = newest(s.entity_name, name, String())
        if entry.operation == AuditOperation.DELETE.value:
            values.update({
                "is_deleted": True,
                "deleted_by_user_id": entry.user_id,
                "deleted_by_email": entry.user_email,
                "deleted_by_name": entry.user_name,
                "deleted_at": entry.created_at,
            })

        stmt = (
            update(s)
            .where(
                s.entity_type == entry.entity_type,
                s.entity_id == entry.entity_id,
                or_(s.latest_audit_log_id.is_(None), s.latest_audit_log_id != entry_id),
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)

        if result.rowcount == 0:  # type: ignore[attr-defined]
            logger.debug("Audit summary already includes entry %s for %s:%s", entry.id, entry.entity_type, entry.entity_id)
            return False
        return True


# Module-level singleton
audit_summary_projection = AuditSummaryProjection()
