"""Tests for invoice_audit/backup/writer.py — transactional writes and lifecycle helpers."""

from __future__ import annotations

import logging
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from invoice_audit.backup.queries import get_backup_history, get_backup_summary
from invoice_audit.backup.summary import summary_projection
from invoice_audit.backup.writer import SnapshotWriter, build_snapshot
from invoice_audit.errors import StorageError, ValidationError
from invoice_audit.models.backup import InvoiceBackup
from invoice_audit.models.enums import BackupType
from invoice_audit.schemas.snapshots import ActorInfo, RequestContext, TenantInfo

INVOICE = {
    "id": 5,
    "invoice_number": "INV-5",
    "system_invoice_id": "SYS-0005",
    "status": "draft",
    "buyerBusinessName": "Karachi Textiles",
}
ITEMS = [{"hsCode": "5208.1100", "quantity": 10, "unitPrice": Decimal("250.00")}]
ACTOR = ActorInfo(user_id=7, email="ayesha@example.pk", first_name="Ayesha", last_name="Khan", role="admin")
TENANT = TenantInfo(id=3, name="Acme")


def _upsert_failure() -> AsyncMock:
    return AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("database is locked")))


async def _count(session_factory) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count(InvoiceBackup.id)))).scalar()


# ── build_snapshot ───────────────────────────────────────────────────


class TestBuildSnapshot:
    def test_flattens_context(self):
        snap = build_snapshot(
            INVOICE,
            ITEMS,
            BackupType.SAVED,
            "Invoice saved and validated - INV-5",
            actor=ACTOR,
            tenant=TENANT,
            request=RequestContext(ip_address="10.1.1.1", user_agent="pytest", request_id="req-9"),
        )
        assert snap.original_invoice_id == 5
        assert snap.invoice_number == "INV-5"
        assert snap.user_name == "Ayesha Khan"
        assert snap.user_role == "admin"
        assert snap.tenant_name == "Acme"
        assert snap.request_id == "req-9"

    def test_system_event(self):
        snap = build_snapshot(INVOICE, None, BackupType.FBR_RESPONSE, None)
        assert snap.user_id is None
        assert snap.user_name is None
        assert snap.invoice_items_data is None

    def test_invoice_without_id(self):
        with pytest.raises(ValidationError, match="original_invoice_id"):
            build_snapshot({"invoice_number": "INV-X"}, [], BackupType.DRAFT, None)


# ── write_backup ─────────────────────────────────────────────────────


class TestWriteBackup:
    @pytest.mark.asyncio
    async def test_record_and_summary_committed(self, session_factory):
        writer = SnapshotWriter(session_factory)
        record = await writer.write_backup({"original_invoice_id": 5, "backup_type": "DRAFT"})

        async with session_factory() as db:
            summary = await get_backup_summary(db, 5)
        assert record.id is not None
        assert summary.latest_backup_id == record.id

    @pytest.mark.asyncio
    async def test_summary_failure_rolls_back_record(self, session_factory):
        writer = SnapshotWriter(session_factory)
        with patch.object(summary_projection, "upsert_summary", _upsert_failure()):
            with pytest.raises(StorageError):
                await writer.write_backup({"original_invoice_id": 5, "backup_type": "DRAFT"})

        assert await _count(session_factory) == 0
        async with session_factory() as db:
            assert await get_backup_summary(db, 5) is None

    @pytest.mark.asyncio
    async def test_validation_error_propagates(self, session_factory):
        writer = SnapshotWriter(session_factory)
        with pytest.raises(ValidationError):
            await writer.write_backup({"original_invoice_id": 5, "backup_type": "PUBLISH"})
        assert await _count(session_factory) == 0


class TestTryWriteBackup:
    @pytest.mark.asyncio
    async def test_storage_failure_logged_not_raised(self, session_factory, caplog):
        writer = SnapshotWriter(session_factory)
        with (
            patch.object(summary_projection, "upsert_summary", _upsert_failure()),
            caplog.at_level(logging.ERROR, logger="invoice_audit.backup.writer"),
        ):
            result = await writer.try_write_backup({"original_invoice_id": 5, "backup_type": "POST"})

        assert result is None
        assert "not persisted" in caplog.text

    @pytest.mark.asyncio
    async def test_validation_error_still_raised(self, session_factory):
        writer = SnapshotWriter(session_factory)
        with pytest.raises(ValidationError):
            await writer.try_write_backup({"backup_type": "POST"})


# ── Lifecycle helpers ────────────────────────────────────────────────


class TestLifecycleHelpers:
    @pytest.mark.asyncio
    async def test_draft_created(self, session_factory):
        record = await SnapshotWriter(session_factory).backup_draft(INVOICE, ITEMS, actor=ACTOR, tenant=TENANT)

        assert record.backup_type == "DRAFT"
        assert record.backup_reason == "Draft invoice created - INV-5"
        assert record.status_before is None
        assert record.status_after == "draft"
        assert record.user_name == "Ayesha Khan"
        assert record.invoice_items_data[0]["unitPrice"] == "250.00"

    @pytest.mark.asyncio
    async def test_draft_updated(self, session_factory):
        record = await SnapshotWriter(session_factory).backup_draft(INVOICE, ITEMS, is_update=True)
        assert record.backup_reason == "Draft invoice updated - INV-5"
        assert record.status_before == "draft"

    @pytest.mark.asyncio
    async def test_saved(self, session_factory):
        writer = SnapshotWriter(session_factory)
        created = await writer.backup_saved(INVOICE, ITEMS)
        updated = await writer.backup_saved(INVOICE, ITEMS, is_update=True)

        assert created.backup_reason == "Invoice saved and validated - INV-5"
        assert (created.status_before, created.status_after) == ("draft", "saved")
        assert updated.backup_reason == "Saved invoice updated - INV-5"
        assert updated.status_before == "saved"

    @pytest.mark.asyncio
    async def test_edit_keeps_new_version_in_additional_info(self, session_factory):
        new_invoice = {**INVOICE, "status": "saved", "buyerBusinessName": "Lahore Textiles"}
        new_items = [{"hsCode": "5208.1100", "quantity": 12, "unitPrice": Decimal("250.00")}]

        record = await SnapshotWriter(session_factory).backup_edit(INVOICE, new_invoice, ITEMS, new_items)

        assert record.backup_type == "EDIT"
        assert record.invoice_data["buyerBusinessName"] == "Karachi Textiles"
        assert record.status_before == "draft"
        assert record.status_after == "saved"
        assert record.additional_info["editType"] == "UPDATE"
        assert record.additional_info["newInvoiceData"]["buyerBusinessName"] == "Lahore Textiles"
        assert record.additional_info["newInvoiceItemsData"][0]["quantity"] == 12

    @pytest.mark.asyncio
    async def test_post_sets_fbr_number_on_summary(self, session_factory):
        writer = SnapshotWriter(session_factory)
        await writer.backup_draft(INVOICE, ITEMS, actor=ACTOR, tenant=TENANT)
        record = await writer.backup_post(INVOICE, ITEMS, fbr_invoice_number="FBR-001")

        assert record.backup_reason == "Invoice posted - INV-5"
        assert record.status_after == "posted"
        assert record.fbr_invoice_number == "FBR-001"

        async with session_factory() as db:
            summary = await get_backup_summary(db, 5)
        assert summary.fbr_invoice_number == "FBR-001"
        assert summary.current_status == "posted"
        assert summary.tenant_name == "Acme"

    @pytest.mark.asyncio
    async def test_fbr_round_trip(self, session_factory):
        writer = SnapshotWriter(session_factory)
        request_payload = {"invoiceType": "Sale Invoice", "items": [{"hsCode": "5208.1100"}]}
        response_payload = {
            "invoiceNumber": "7000007DI1747119701593",
            "validationResponse": {"statusCode": "00", "status": "Valid"},
        }
        await writer.backup_fbr_request(INVOICE, request_payload)
        await writer.backup_fbr_response(INVOICE, response_payload)

        async with session_factory() as db:
            records = await get_backup_history(db, 5)
        request_rec, response_rec = records

        assert request_rec.backup_type == "FBR_REQUEST"
        assert request_rec.fbr_request_data == request_payload
        assert request_rec.invoice_items_data == []
        assert response_rec.backup_type == "FBR_RESPONSE"
        assert response_rec.fbr_response_data == response_payload
        assert response_rec.fbr_invoice_number == "7000007DI1747119701593"

    @pytest.mark.asyncio
    async def test_helper_swallows_storage_failure(self, session_factory):
        writer = SnapshotWriter(session_factory)
        with patch.object(summary_projection, "upsert_summary", _upsert_failure()):
            assert await writer.backup_post(INVOICE, ITEMS) is None
        assert await _count(session_factory) == 0

    @pytest.mark.asyncio
    async def test_helper_raises_on_bad_invoice(self, session_factory):
        writer = SnapshotWriter(session_factory)
        with pytest.raises(ValidationError):
            await writer.backup_draft({"invoice_number": "INV-NO-ID"}, ITEMS)
