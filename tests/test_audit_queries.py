"""Tests for invoice_audit/audit/queries.py — audit log listings, statistics and export."""

from __future__ import annotations

import csv
import io
from datetime import UTC, datetime, timedelta

import pytest

from invoice_audit.audit.queries import (
    AUDIT_EXPORT_COLUMNS,
    AuditFilters,
    AuditSummaryFilters,
    export_audit_logs_csv,
    get_audit_statistics,
    get_audit_summary,
    list_audit_logs,
    list_audit_summaries,
)
from invoice_audit.audit.store import AuditLogStore
from invoice_audit.models.audit import AuditLog
from invoice_audit.models.enums import AuditOperation, EntityType
from invoice_audit.schemas.snapshots import ActorInfo, TenantInfo

ALICE = ActorInfo(user_id=7, email="alice@example.pk", name="Alice")
BOB = ActorInfo(user_id=9, email="bob@example.pk", name="Bob")


async def _populate(db) -> list[AuditLog]:
    """Alice creates and updates buyer 1 in tenant 3; Bob creates then deletes product 2 in tenant 4."""
    store = AuditLogStore()
    acme = TenantInfo(id=3, name="Acme")
    other = TenantInfo(id=4, name="Other")
    entries = [
        await store.record_change(
            db, EntityType.BUYER, 1, "CREATE", new_values={"buyerBusinessName": "Acme Traders"},
            actor=ALICE, tenant=acme,
        ),
        await store.record_change(
            db, EntityType.BUYER, 1, "UPDATE",
            old_values={"buyerBusinessName": "Acme Traders"}, new_values={"buyerBusinessName": "Acme Ltd"},
            actor=ALICE, tenant=acme, additional_info={"source": "bulk-import"},
        ),
        await store.record_change(
            db, EntityType.PRODUCT, 2, "CREATE", new_values={"name": "Rice"}, actor=BOB, tenant=other,
        ),
        await store.record_change(
            db, EntityType.PRODUCT, 2, "DELETE", old_values={"name": "Rice"}, actor=BOB, tenant=other,
        ),
    ]
    await db.commit()
    return entries


# ── Audit log listing ────────────────────────────────────────────────


class TestListAuditLogs:
    @pytest.mark.asyncio
    async def test_newest_first_with_total(self, db):
        entries = await _populate(db)
        rows, total = await list_audit_logs(db)
        assert total == 4
        assert [r.id for r in rows] == [e.id for e in reversed(entries)]

    @pytest.mark.asyncio
    async def test_pagination_keeps_total(self, db):
        entries = await _populate(db)
        rows, total = await list_audit_logs(db, limit=2, offset=1)
        assert total == 4
        assert [r.id for r in rows] == [entries[2].id, entries[1].id]

    @pytest.mark.asyncio
    async def test_entity_filters(self, db):
        await _populate(db)
        rows, total = await list_audit_logs(db, AuditFilters(entity_type=EntityType.BUYER, entity_id=1))
        assert total == 2
        assert {r.entity_type for r in rows} == {"buyer"}

    @pytest.mark.asyncio
    async def test_operation_filter(self, db):
        entries = await _populate(db)
        rows, total = await list_audit_logs(db, AuditFilters(operation=AuditOperation.DELETE))
        assert total == 1
        assert rows[0].id == entries[3].id

    @pytest.mark.asyncio
    async def test_by_user(self, db):
        await _populate(db)
        _, by_id = await list_audit_logs(db, AuditFilters(user_id=9))
        _, by_email = await list_audit_logs(db, AuditFilters(user_email="alice@example.pk"))
        assert by_id == 2
        assert by_email == 2

    @pytest.mark.asyncio
    async def test_by_tenant(self, db):
        await _populate(db)
        rows, total = await list_audit_logs(db, AuditFilters(tenant_id=3))
        assert total == 2
        assert {r.tenant_name for r in rows} == {"Acme"}

    @pytest.mark.asyncio
    async def test_date_range(self, db):
        await _populate(db)
        _, total = await list_audit_logs(db, AuditFilters(start=datetime.now(UTC) + timedelta(days=1)))
        assert total == 0
        _, total = await list_audit_logs(db, AuditFilters(end=datetime.now(UTC) + timedelta(days=1)))
        assert total == 4

    @pytest.mark.asyncio
    async def test_search_is_case_insensitive(self, db):
        await _populate(db)
        _, total = await list_audit_logs(db, AuditFilters(search="BOB"))
        assert total == 2

    @pytest.mark.asyncio
    async def test_search_covers_additional_info(self, db):
        entries = await _populate(db)
        rows, total = await list_audit_logs(db, AuditFilters(search="bulk-import"))
        assert total == 1
        assert rows[0].id == entries[1].id

    @pytest.mark.asyncio
    async def test_search_wildcards_are_literal(self, db):
        await _populate(db)
        _, total = await list_audit_logs(db, AuditFilters(search="%"))
        assert total == 0


# ── Summaries ────────────────────────────────────────────────────────


class TestAuditSummaries:
    @pytest.mark.asyncio
    async def test_get_one(self, db):
        await _populate(db)
        summary = await get_audit_summary(db, "buyer", 1)
        assert summary.total_operations == 2
        assert summary.entity_name == "Acme Ltd"
        assert await get_audit_summary(db, "buyer", 99) is None

    @pytest.mark.asyncio
    async def test_listing_most_recent_first(self, db):
        await _populate(db)
        rows, total = await list_audit_summaries(db)
        assert total == 2
        assert [(r.entity_type, r.entity_id) for r in rows] == [("product", 2), ("buyer", 1)]

    @pytest.mark.asyncio
    async def test_deleted_filter(self, db):
        await _populate(db)
        rows, total = await list_audit_summaries(db, AuditSummaryFilters(is_deleted=True))
        assert total == 1
        assert rows[0].entity_type == "product"
        assert rows[0].deleted_by_name == "Bob"

        _, live = await list_audit_summaries(db, AuditSummaryFilters(is_deleted=False))
        assert live == 1

    @pytest.mark.asyncio
    async def test_search_and_tenant(self, db):
        await _populate(db)
        rows, total = await list_audit_summaries(db, AuditSummaryFilters(search="acme ltd"))
        assert total == 1
        assert rows[0].entity_id == 1

        _, total = await list_audit_summaries(db, AuditSummaryFilters(tenant_id=4, entity_type="product"))
        assert total == 1

    @pytest.mark.asyncio
    async def test_creator_filter(self, db):
        await _populate(db)
        rows, total = await list_audit_summaries(db, AuditSummaryFilters(created_by_user_id=7))
        assert total == 1
        assert rows[0].entity_type == "buyer"


# ── Statistics ───────────────────────────────────────────────────────


class TestAuditStatistics:
    @pytest.mark.asyncio
    async def test_counts(self, db):
        await _populate(db)
        stats = await get_audit_statistics(db)
        assert stats["total_operations"] == 4
        assert stats["by_operation"]["CREATE"] == 2
        assert stats["by_operation"]["SUBMIT_TO_FBR"] == 0
        assert set(stats["by_operation"]) == {op.value for op in AuditOperation}
        assert stats["by_entity_type"] == {"buyer": 2, "product": 2}
        assert stats["recent_activity"] == 4
        assert sorted(u["user_name"] for u in stats["top_users"]) == ["Alice", "Bob"]
        assert all(u["count"] == 2 for u in stats["top_users"])

    @pytest.mark.asyncio
    async def test_tenant_scope(self, db):
        await _populate(db)
        stats = await get_audit_statistics(db, tenant_id=4)
        assert stats["total_operations"] == 2
        assert stats["by_operation"]["DELETE"] == 1
        assert stats["top_users"] == [{"user_name": "Bob", "user_email": "bob@example.pk", "count": 2}]

    @pytest.mark.asyncio
    async def test_recent_activity_window(self, db):
        await _populate(db)
        stats = await get_audit_statistics(db, now=datetime.now(UTC) + timedelta(days=2))
        assert stats["recent_activity"] == 0
        assert stats["total_operations"] == 4

    @pytest.mark.asyncio
    async def test_empty_database(self, db):
        stats = await get_audit_statistics(db)
        assert stats["total_operations"] == 0
        assert stats["top_users"] == []
        assert all(count == 0 for count in stats["by_operation"].values())


# ── CSV export ───────────────────────────────────────────────────────


class TestExportCsv:
    def test_header(self):
        header = next(csv.reader(io.StringIO(export_audit_logs_csv([]))))
        assert header == [heading for heading, _ in AUDIT_EXPORT_COLUMNS]

    def test_row_values(self):
        entry = AuditLog(
            id=5,
            entity_type="buyer",
            entity_id=1,
            operation="UPDATE",
            user_name='Alice "A"',
            created_at=datetime(2026, 10, 17, 9, 0, tzinfo=UTC),
        )
        rows = list(csv.reader(io.StringIO(export_audit_logs_csv([entry]))))
        assert rows[1] == [
            "5", "buyer", "1", "UPDATE", 'Alice "A"', "", "", "", "", "2026-10-17T09:00:00+00:00",
        ]
