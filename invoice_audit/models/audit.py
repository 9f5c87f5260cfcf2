"""AuditLog model — generic before/after change log for any entity.

This table is append-only — no updates or deletes.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import BigInteger, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from invoice_audit.models.base import Base, CreatedAtMixin, JSONType


class AuditLog(CreatedAtMixin, Base):
    """Immutable audit trail entry."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_entity_created", "entity_type", "entity_id", "created_at"),
    )

    # What changed
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, comment="invoice, buyer, product, user")
    entity_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    operation: Mapped[str] = mapped_column(String(30), nullable=False, index=True, comment="AuditOperation enum value")

    # Full-entity snapshots and the top-level diff
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    changed_fields: Mapped[dict[str, Any] | None] = mapped_column(JSONType)

    # Actor
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
        return f"<AuditLog {self.operation} {self.entity_type}:{self.entity_id}>"
