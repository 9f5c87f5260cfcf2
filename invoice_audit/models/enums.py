"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin so the persisted value is the literal token.
"""

from __future__ import annotations

from enum import Enum


class BackupType(str, Enum):
    """Invoice lifecycle event that triggered a snapshot.

    The tokens are stored verbatim in existing tenant databases — do not rename.
    """

    DRAFT = "DRAFT"
    SAVED = "SAVED"
    EDIT = "EDIT"
    POST = "POST"
    FBR_REQUEST = "FBR_REQUEST"
    FBR_RESPONSE = "FBR_RESPONSE"

    @property
    def counter_column(self) -> str:
        """Name of the matching per-type counter on InvoiceBackupSummary."""
        return f"{self.value.lower()}_backups"


class AuditOperation(str, Enum):
    """Operation recorded in the generic audit log."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    # Invoice workflow operations
    SAVE_DRAFT = "SAVE_DRAFT"
    SAVE_AND_VALIDATE = "SAVE_AND_VALIDATE"
    SUBMIT_TO_FBR = "SUBMIT_TO_FBR"
    BULK_CREATE = "BULK_CREATE"


class EntityType(str, Enum):
    """Known audited entity kinds. Other strings are accepted as-is."""

    INVOICE = "invoice"
    BUYER = "buyer"
    PRODUCT = "product"
    USER = "user"
