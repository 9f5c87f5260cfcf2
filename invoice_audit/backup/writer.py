"""Snapshot writer — the entry point invoice lifecycle handlers call.

Bound to one tenant's session factory. Each backup opens its own session and
writes the record and the summary update in a single transaction, so the
summary can only fall behind through an out-of-band failure (which
reconciliation repairs).

Backups are auxiliary to the invoice operation that triggers them: the
lifecycle helpers go through try_write_backup, which logs storage failures
instead of raising them. Validation errors still propagate — they mean the
caller built a bad snapshot.

Usage:
    writer = tenant_databases.writer("fbr_acme")
    await writer.backup_post(invoice, items, actor=actor, tenant=tenant)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from invoice_audit.backup.store import backup_store, coerce_snapshot
from invoice_audit.config import settings
from invoice_audit.errors import StorageError
from invoice_audit.models.backup import InvoiceBackup
from invoice_audit.models.enums import BackupType
from invoice_audit.schemas.snapshots import (
    ActorInfo,
    BackupSnapshot,
    RequestContext,
    TenantInfo,
    snapshot_invoice,
    snapshot_items,
)

logger = logging.getLogger(__name__)

Invoice = Mapping[str, Any]
Items = Sequence[Mapping[str, Any]]


def _label(invoice: Invoice) -> Any:
    return invoice.get("invoice_number") or invoice.get("system_invoice_id")


def build_snapshot(
    invoice: Invoice,
    items: Items | None,
    backup_type: BackupType,
    reason: str | None,
    status_before: str | None = None,
    status_after: str | None = None,
    actor: ActorInfo | None = None,
    tenant: TenantInfo | None = None,
    request: RequestContext | None = None,
    fbr_request_data: Mapping[str, Any] | None = None,
    fbr_response_data: Mapping[str, Any] | None = None,
    additional_info: Mapping[str, Any] | None = None,
) -> BackupSnapshot:
    """Flatten invoice, actor, tenant and request context into a BackupSnapshot."""
    actor = actor or ActorInfo()
    tenant = tenant or TenantInfo()
    request = request or RequestContext()
    return coerce_snapshot({
        "original_invoice_id": invoice.get("id"),
        "system_invoice_id": invoice.get("system_invoice_id"),
        "invoice_number": invoice.get("invoice_number"),
        "backup_type": backup_type,
        "backup_reason": reason,
        "status_before": status_before,
        "status_after": status_after,
        "invoice_data": dict(invoice),
        "invoice_items_data": [dict(item) for item in items] if items is not None else None,
        "fbr_request_data": dict(fbr_request_data) if fbr_request_data is not None else None,
        "fbr_response_data": dict(fbr_response_data) if fbr_response_data is not None else None,
        "user_id": actor.user_id,
        "user_email": actor.email,
        "user_name": actor.display_name,
        "user_role": actor.role,
        "tenant_id": tenant.id,
        "tenant_name": tenant.name,
        "ip_address": request.ip_address,
        "user_agent": request.user_agent,
        "request_id": request.request_id,
        "additional_info": dict(additional_info) if additional_info is not None else None,
    })


class SnapshotWriter:
    """Transactional backup writer for one tenant database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def write_backup(self, snapshot: BackupSnapshot | Mapping[str, Any]) -> InvoiceBackup:
        """Persist one backup and its summary update atomically.

        Raises ValidationError (nothing written) or StorageError (rolled back).
        """
        validated = coerce_snapshot(snapshot)
        try:
            async with self._session_factory() as db, db.begin():
                return await backup_store.write_backup(db, validated)
        except SQLAlchemyError as exc:
            # Commit-time failures surface here rather than inside the store
            msg = f"Could not commit backup for invoice {validated.original_invoice_id}"
            raise StorageError(msg) from exc

    async def try_write_backup(self, snapshot: BackupSnapshot | Mapping[str, Any]) -> InvoiceBackup | None:
        """write_backup, but storage failures are logged and None is returned."""
        try:
            return await self.write_backup(snapshot)
        except StorageError:
            logger.exception("Invoice backup not persisted; run reconciliation if this repeats")
            return None

    # ── Lifecycle helpers ────────────────────────────────────────────

    async def backup_draft(
        self,
        invoice: Invoice,
        items: Items | None = None,
        is_update: bool = False,
        actor: ActorInfo | None = None,
        tenant: TenantInfo | None = None,
        request: RequestContext | None = None,
    ) -> InvoiceBackup | None:
        """Draft created or updated."""
        verb = "updated" if is_update else "created"
        return await self.try_write_backup(build_snapshot(
            invoice,
            items,
            BackupType.DRAFT,
            f"Draft invoice {verb} - {_label(invoice)}",
            status_before="draft" if is_update else None,
            status_after="draft",
            actor=actor,
            tenant=tenant,
            request=request,
        ))

    async def backup_saved(
        self,
        invoice: Invoice,
        items: Items | None = None,
        is_update: bool = False,
        actor: ActorInfo | None = None,
        tenant: TenantInfo | None = None,
        request: RequestContext | None = None,
    ) -> InvoiceBackup | None:
        """Invoice saved and validated."""
        reason = (
            f"Saved invoice updated - {_label(invoice)}"
            if is_update
            else f"Invoice saved and validated - {_label(invoice)}"
        )
        return await self.try_write_backup(build_snapshot(
            invoice,
            items,
            BackupType.SAVED,
            reason,
            status_before="saved" if is_update else "draft",
            status_after="saved",
            actor=actor,
            tenant=tenant,
            request=request,
        ))

    async def backup_edit(
        self,
        old_invoice: Invoice,
        new_invoice: Invoice,
        old_items: Items | None = None,
        new_items: Items | None = None,
        actor: ActorInfo | None = None,
        tenant: TenantInfo | None = None,
        request: RequestContext | None = None,
    ) -> InvoiceBackup | None:
        """Invoice edited. The pre-edit version is the snapshot; the new one rides along."""
        return await self.try_write_backup(build_snapshot(
            old_invoice,
            old_items,
            BackupType.EDIT,
            f"Invoice edited - {_label(old_invoice)}",
            status_before=old_invoice.get("status"),
            status_after=new_invoice.get("status"),
            actor=actor,
            tenant=tenant,
            request=request,
            additional_info={
                "editType": "UPDATE",
                "newInvoiceData": snapshot_invoice(new_invoice, settings.backup.sensitive_keys),
                "newInvoiceItemsData": snapshot_items(new_items, settings.backup.sensitive_keys),
            },
        ))

    async def backup_post(
        self,
        invoice: Invoice,
        items: Items | None = None,
        fbr_invoice_number: str | None = None,
        actor: ActorInfo | None = None,
        tenant: TenantInfo | None = None,
        request: RequestContext | None = None,
    ) -> InvoiceBackup | None:
        """Invoice posted to FBR."""
        snapshot = build_snapshot(
            invoice,
            items,
            BackupType.POST,
            f"Invoice posted - {_label(invoice)}",
            status_before=invoice.get("status"),
            status_after="posted",
            actor=actor,
            tenant=tenant,
            request=request,
        )
        if fbr_invoice_number is not None:
            snapshot = snapshot.model_copy(update={"fbr_invoice_number": fbr_invoice_number})
        return await self.try_write_backup(snapshot)

    async def backup_fbr_request(
        self,
        invoice: Invoice,
        fbr_request_data: Mapping[str, Any],
        actor: ActorInfo | None = None,
        tenant: TenantInfo | None = None,
        request: RequestContext | None = None,
    ) -> InvoiceBackup | None:
        """Payload about to be sent to FBR."""
        return await self.try_write_backup(build_snapshot(
            invoice,
            None,
            BackupType.FBR_REQUEST,
            f"FBR request sent - {_label(invoice)}",
            status_before=invoice.get("status"),
            status_after=invoice.get("status"),
            actor=actor,
            tenant=tenant,
            request=request,
            fbr_request_data=fbr_request_data,
        ))

    async def backup_fbr_response(
        self,
        invoice: Invoice,
        fbr_response_data: Mapping[str, Any],
        actor: ActorInfo | None = None,
        tenant: TenantInfo | None = None,
        request: RequestContext | None = None,
    ) -> InvoiceBackup | None:
        """Response received from FBR."""
        return await self.try_write_backup(build_snapshot(
            invoice,
            None,
            BackupType.FBR_RESPONSE,
            f"FBR response received - {_label(invoice)}",
            status_before=invoice.get("status"),
            status_after=invoice.get("status"),
            actor=actor,
            tenant=tenant,
            request=request,
            fbr_response_data=fbr_response_data,
        ))
