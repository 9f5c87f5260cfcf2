"""AuditSummary model — one aggregate row per audited entity.

Updated in the same transaction as each audit_logs insert; see
invoice_audit.audit.summary.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, UniqueConstraint, false
from sqlalchemy.orm import Mapped, mapped_column

from invoice_audit.models.base import Base, CreatedAtMixin, UpdatedAtMixin


class AuditSummary(CreatedAtMixin, UpdatedAtMixin, Base):
    """Operation count, attribution and deletion state of one entity.

    created_at is the time of the entity's first audited operation.
    """

    __tablename__ = "audit_summary"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_audit_summary_entity"),
        Index("idx_audit_summary_entity_tenant", "entity_type", "tenant_id", "last_modified_at"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    entity_name: Mapped[str | None] = mapped_column(String(255), comment="Human-readable name of the entity")
    latest_audit_log_id: Mapped[int | None] = mapped_column(BigInteger, comment="Most recent audit_logs.id")

    total_operations: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # Set once from the first operation
    created_by_user_id: Mapped[int | None] = mapped_column(BigInteger, index=True)
    created_by_email: Mapped[str | None] = mapped_column(String(255))
    created_by_name: Mapped[str | None] = mapped_column(String(255))

    # Actor of the newest operation
    last_modified_by_user_id: Mapped[int | None] = mapped_column(BigInteger)
    last_modified_by_email: Mapped[str | None] = mapped_column(String(255))
    last_modified_by_name: Mapped[str | None] = mapped_column(String(255))
    last_modified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    tenant_id: Mapped[int | None] = mapped_column(BigInteger)
    tenant_name: Mapped[str | None] = mapped_column(String(255))

    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    deleted_by_user_id: Mapped[int | None] = mapped_column(BigInteger)
    deleted_by_email: Mapped[str | None] = mapped_column(String(255))
    deleted_by_name: Mapped[str | None] = mapped_column(String(255))
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<AuditSummary {self.entity_type}:{self.entity_id} ops={self.total_operations}>"
