"""Tests for invoice_audit/audit/summary.py — per-entity audit summary."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from invoice_audit.audit.store import AuditLogStore
from invoice_audit.audit.summary import AuditSummaryProjection, entity_display_name
from invoice_audit.models.audit_summary import AuditSummary
from invoice_audit.models.enums import EntityType
from invoice_audit.schemas.snapshots import ActorInfo, TenantInfo

AYESHA = ActorInfo(user_id=7, email="ayesha@x.pk", first_name="Ayesha", last_name="Khan")
BILAL = ActorInfo(user_id=8, email="bilal@x.pk", first_name="Bilal", last_name="Ahmed")


async def _summary(db, entity_type: str, entity_id: int) -> AuditSummary | None:
    result = await db.execute(
        select(AuditSummary)
        .where(AuditSummary.entity_type == entity_type, AuditSummary.entity_id == entity_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# ── Display names ────────────────────────────────────────────────────


class TestEntityDisplayName:
    def test_invoice_prefers_number(self):
        assert entity_display_name("invoice", 1, {"invoice_number": "INV-9", "system_invoice_id": "S-1"}) == "INV-9"

    def test_invoice_falls_back_to_system_id(self):
        assert entity_display_name("invoice", 1, {"system_invoice_id": "S-1"}) == "S-1"

    def test_invoice_default(self):
        assert entity_display_name("invoice", 4, {"status": "draft"}) == "Invoice 4"

    def test_buyer(self):
        assert entity_display_name("buyer", 2, {"buyerBusinessName": "Acme"}) == "Acme"
        assert entity_display_name("buyer", 2, {"buyerNTNCNIC": "123"}) == "123"

    def test_product(self):
        assert entity_display_name("product", 5, {"name": "Rice"}) == "Rice"
        assert entity_display_name("product", 5, {"id": 6}) == "Product 6"

    def test_user(self):
        assert entity_display_name("user", 1, {"email": "a@x.pk", "firstName": "A"}) == "a@x.pk"
        assert entity_display_name("user", 1, {"firstName": "Ayesha", "lastName": "Khan"}) == "Ayesha Khan"
        assert entity_display_name("user", 1, {"role": "admin"}) == "User 1"

    def test_other_entity(self):
        assert entity_display_name("warehouse", 3, {"x": 1}) == "warehouse 3"

    def test_no_new_values(self):
        assert entity_display_name("buyer", 2, None) is None
        assert entity_display_name("buyer", 2, {}) is None


# ── Folding through record_change ────────────────────────────────────


class TestSummaryFromAuditLog:
    @pytest.mark.asyncio
    async def test_created_on_first_entry(self, db):
        await AuditLogStore().record_change(
            db,
            EntityType.BUYER,
            11,
            "CREATE",
            new_values={"buyerBusinessName": "Acme"},
            actor=AYESHA,
            tenant=TenantInfo(id=3, name="Acme Tenant"),
        )
        await db.commit()

        summary = await _summary(db, "buyer", 11)
        assert summary.total_operations == 1
        assert summary.entity_name == "Acme"
        assert summary.created_by_user_id == 7
        assert summary.created_by_name == "Ayesha Khan"
        assert summary.last_modified_by_email == "ayesha@x.pk"
        assert summary.tenant_id == 3
        assert summary.is_deleted is False

    @pytest.mark.asyncio
    async def test_creator_kept_last_modifier_follows(self, db):
        store = AuditLogStore()
        await store.record_change(db, "product", 5, "CREATE", new_values={"name": "Rice"}, actor=AYESHA)
        last = await store.record_change(
            db,
            "product",
            5,
            "UPDATE",
            old_values={"name": "Rice"},
            new_values={"name": "Basmati"},
            actor=BILAL,
        )
        await db.commit()

        summary = await _summary(db, "product", 5)
        assert summary.total_operations == 2
        assert summary.created_by_user_id == 7
        assert summary.last_modified_by_user_id == 8
        assert summary.entity_name == "Basmati"
        assert summary.latest_audit_log_id == last.id

    @pytest.mark.asyncio
    async def test_delete_marks_entity_deleted(self, db):
        store = AuditLogStore()
        await store.record_change(db, "buyer", 2, "CREATE", new_values={"buyerBusinessName": "Acme"}, actor=AYESHA)
        deleted = await store.record_change(
            db, "buyer", 2, "DELETE", old_values={"buyerBusinessName": "Acme"}, actor=BILAL
        )
        await db.commit()

        summary = await _summary(db, "buyer", 2)
        assert summary.is_deleted is True
        assert summary.deleted_by_user_id == 8
        assert summary.deleted_by_name == "Bilal Ahmed"
        assert summary.deleted_at is not None
        # DELETE carries no new state, so the name survives
        assert summary.entity_name == "Acme"
        assert summary.latest_audit_log_id == deleted.id

    @pytest.mark.asyncio
    async def test_entities_kept_apart(self, db):
        store = AuditLogStore()
        await store.record_change(db, "buyer", 1, "CREATE", new_values={"v": 1})
        await store.record_change(db, "product", 1, "CREATE", new_values={"v": 1})
        await store.record_change(db, "product", 1, "UPDATE", old_values={"v": 1}, new_values={"v": 2})
        await db.commit()

        assert (await _summary(db, "buyer", 1)).total_operations == 1
        assert (await _summary(db, "product", 1)).total_operations == 2


# ── Projection idempotence ───────────────────────────────────────────


class TestUpsertSummary:
    @pytest.mark.asyncio
    async def test_retry_of_same_entry_is_noop(self, db):
        entry = await AuditLogStore().record_change(db, "buyer", 4, "CREATE", new_values={"v": 1}, actor=AYESHA)
        await db.commit()

        assert await AuditSummaryProjection().upsert_summary(db, entry) is False
        await db.commit()
        assert (await _summary(db, "buyer", 4)).total_operations == 1

    @pytest.mark.asyncio
    async def test_older_entry_counted_but_does_not_take_over(self, db):
        store = AuditLogStore()
        older = await store.record_change(db, "product", 8, "CREATE", new_values={"name": "Old"}, actor=AYESHA)
        newer = await store.record_change(
            db, "product", 8, "UPDATE", old_values={"name": "Old"}, new_values={"name": "New"}, actor=BILAL
        )
        await db.commit()

        # Rebuild the row from the newest entry, then fold the older one in late
        summary = await _summary(db, "product", 8)
        await db.delete(summary)
        await db.commit()
        projection = AuditSummaryProjection()
        assert await projection.upsert_summary(db, newer) is True
        assert await projection.upsert_summary(db, older) is True
        await db.commit()

        summary = await _summary(db, "product", 8)
        assert summary.total_operations == 2
        assert summary.latest_audit_log_id == newer.id
        assert summary.last_modified_by_user_id == 8
        assert summary.entity_name == "New"

    @pytest.mark.asyncio
    async def test_last_modified_at_is_latest_timestamp(self, db):
        store = AuditLogStore()
        await store.record_change(db, "user", 3, "CREATE", new_values={"email": "u@x.pk"})
        second = await store.record_change(
            db, "user", 3, "UPDATE", old_values={"email": "u@x.pk"}, new_values={"email": "v@x.pk"}
        )
        await db.commit()

        summary = await _summary(db, "user", 3)
        assert summary.last_modified_at.replace(tzinfo=None) == second.created_at.replace(tzinfo=None)

    @pytest.mark.asyncio
    async def test_unflushed_entry_rejected(self, db):
        from invoice_audit.models.audit import AuditLog

        with pytest.raises(ValueError, match="flushed"):
            await AuditSummaryProjection().upsert_summary(
                db, AuditLog(entity_type="buyer", entity_id=1, operation="CREATE")
            )
