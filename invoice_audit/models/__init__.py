"""SQLAlchemy ORM models for the invoice backup and audit trail.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from invoice_audit.models.audit import AuditLog
from invoice_audit.models.audit_summary import AuditSummary
from invoice_audit.models.backup import InvoiceBackup
from invoice_audit.models.backup_summary import InvoiceBackupSummary
from invoice_audit.models.base import Base
from invoice_audit.models.enums import AuditOperation, BackupType, EntityType

__all__ = [
    # Base
    "Base",
    # Models
    "InvoiceBackup",
    "InvoiceBackupSummary",
    "AuditLog",
    "AuditSummary",
    # Enums
    "BackupType",
    "AuditOperation",
    "EntityType",
]
