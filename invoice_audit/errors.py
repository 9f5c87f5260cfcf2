"""Error taxonomy for the backup and audit trail.

- ValidationError: malformed write input, nothing persisted.
- StorageError: the database rejected or could not take the write.
- ConsistencyDrift: a summary disagrees with its backup records.
"""

from __future__ import annotations

from typing import Any


class AuditTrailError(Exception):
    """Base class for all backup / audit trail errors."""


class ValidationError(AuditTrailError, ValueError):
    """Write input is missing a required key, has an unknown enum value,
    or carries a payload that does not survive JSON round-tripping."""


class StorageError(AuditTrailError):
    """Underlying persistence failed. Callers decide whether to retry."""


class ConsistencyDrift(AuditTrailError):
    """A BackupSummary row disagrees with the BackupRecord rows it projects.

    Not raised by the reconciliation path — returned and logged so operators
    can see what was corrected.
    """

    def __init__(self, invoice_id: int, differences: dict[str, tuple[Any, Any]]) -> None:
        self.invoice_id = invoice_id
        self.differences = differences
        fields = ", ".join(sorted(differences))
        super().__init__(f"Backup summary drift for invoice {invoice_id}: {fields}")
