"""Backup record store — validates and appends invoice snapshots.

Every call writes exactly one invoice_backups row and then folds it into the
invoice's summary on the same session, so both land in the caller's
transaction. Nothing here commits; see SnapshotWriter for the
transactional entry point.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_audit.backup.summary import summary_projection
from invoice_audit.config import settings
from invoice_audit.errors import StorageError, ValidationError
from invoice_audit.models.backup import InvoiceBackup
from invoice_audit.schemas.snapshots import (
    BackupSnapshot,
    ensure_json_lossless,
    snapshot_invoice,
    snapshot_items,
)

logger = logging.getLogger(__name__)


def coerce_snapshot(snapshot: BackupSnapshot | Mapping[str, Any]) -> BackupSnapshot:
    """Turn caller input into a BackupSnapshot, raising our ValidationError."""
    if isinstance(snapshot, BackupSnapshot):
        return snapshot
    if not isinstance(snapshot, Mapping):
        msg = f"Backup snapshot must be a mapping, got {type(snapshot).__name__}"
        raise ValidationError(msg)
    try:
        return BackupSnapshot.model_validate(dict(snapshot))
    except PydanticValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        msg = f"Invalid backup snapshot ({', '.join(fields)}): {exc}"
        raise ValidationError(msg) from exc


def _derive_fbr_invoice_number(snapshot: BackupSnapshot, invoice_data: dict[str, Any]) -> str | None:
    """Explicit value, then FBR response, then FBR request, then the invoice header."""
    if snapshot.fbr_invoice_number:
        return snapshot.fbr_invoice_number
    for payload in (snapshot.fbr_response_data, snapshot.fbr_request_data):
        if payload and payload.get("invoiceNumber"):
            return str(payload["invoiceNumber"])
    value = invoice_data.get("fbr_invoice_number")
    return str(value) if value else None


def build_backup_row(snapshot: BackupSnapshot) -> InvoiceBackup:
    """Validate payloads and build (but do not add) the ORM row."""
    sensitive = settings.backup.sensitive_keys

    if snapshot.invoice_data is None:
        header: dict[str, Any] = {"id": snapshot.original_invoice_id}
        if snapshot.invoice_number is not None:
            header["invoice_number"] = snapshot.invoice_number
        if snapshot.system_invoice_id is not None:
            header["system_invoice_id"] = snapshot.system_invoice_id
        invoice_data = snapshot_invoice(header)
    else:
        header = dict(snapshot.invoice_data)
        header.setdefault("id", snapshot.original_invoice_id)
        invoice_data = snapshot_invoice(header, sensitive)

    items = snapshot_items(snapshot.invoice_items_data, sensitive)

    fbr_request = snapshot.fbr_request_data
    fbr_response = snapshot.fbr_response_data
    additional = snapshot.additional_info
    if fbr_request is not None:
        ensure_json_lossless(fbr_request, "fbr_request_data")
    if fbr_response is not None:
        ensure_json_lossless(fbr_response, "fbr_response_data")
    if additional is not None:
        ensure_json_lossless(additional, "additional_info")

    request_id = snapshot.request_id
    if request_id is None and settings.backup.generate_request_ids:
        request_id = str(uuid.uuid4())

    return InvoiceBackup(
        original_invoice_id=snapshot.original_invoice_id,
        system_invoice_id=snapshot.system_invoice_id or invoice_data.get("system_invoice_id"),
        invoice_number=snapshot.invoice_number or invoice_data.get("invoice_number"),
        backup_type=snapshot.backup_type.value,
        backup_reason=snapshot.backup_reason,
        status_before=snapshot.status_before,
        status_after=snapshot.status_after,
        invoice_data=invoice_data,
        invoice_items_data=items,
        fbr_request_data=fbr_request,
        fbr_response_data=fbr_response,
        fbr_invoice_number=_derive_fbr_invoice_number(snapshot, invoice_data),
        user_id=snapshot.user_id,
        user_email=snapshot.user_email,
        user_name=snapshot.user_name,
        user_role=snapshot.user_role,
        tenant_id=snapshot.tenant_id,
        tenant_name=snapshot.tenant_name,
        ip_address=snapshot.ip_address,
        user_agent=snapshot.user_agent,
        request_id=request_id,
        additional_info=additional,
    )


class BackupStore:
    """Stateless backup operations — AsyncSession passed per call."""

    async def write_backup(
        self,
        db: AsyncSession,
        snapshot: BackupSnapshot | Mapping[str, Any],
    ) -> InvoiceBackup:
        """Append one snapshot and update the invoice's summary.

        Raises ValidationError before touching the database when the input is
        malformed, StorageError when the database rejects either write.
        """
        backup = build_backup_row(coerce_snapshot(snapshot))

        try:
            db.add(backup)
            await db.flush()
            await summary_projection.upsert_summary(db, backup)
        except SQLAlchemyError as exc:
            logger.error(
                "Backup write failed: invoice=%s type=%s (%s)",
                backup.original_invoice_id,
                backup.backup_type,
                exc.__class__.__name__,
            )
            msg = f"Could not persist {backup.backup_type} backup for invoice {backup.original_invoice_id}"
            raise StorageError(msg) from exc

        logger.info(
            "Invoice backup written: id=%s invoice=%s type=%s",
            backup.id,
            backup.original_invoice_id,
            backup.backup_type,
        )
        return backup


# Module-level singleton
backup_store = BackupStore()
