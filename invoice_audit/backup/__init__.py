"""Invoice backups — record store, summary projection, reconciliation, snapshot writer."""

from invoice_audit.backup.reconcile import reconcile_all, reconcile_summary
from invoice_audit.backup.store import backup_store
from invoice_audit.backup.summary import summary_projection
from invoice_audit.backup.writer import SnapshotWriter

__all__ = [
    "SnapshotWriter",
    "backup_store",
    "reconcile_all",
    "reconcile_summary",
    "summary_projection",
]
