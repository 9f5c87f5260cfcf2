"""View helpers for the backup audit viewer.

Backups written by older releases may lack fields or carry partial
snapshots; every helper here renders them without raising and shows a
placeholder for anything absent.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from invoice_audit.models.audit import AuditLog
from invoice_audit.models.audit_summary import AuditSummary
from invoice_audit.models.backup import InvoiceBackup
from invoice_audit.models.backup_summary import InvoiceBackupSummary
from invoice_audit.models.enums import BackupType

NOT_AVAILABLE = "N/A"


def display(value: Any) -> Any:
    """Value for display, or "N/A" when missing or empty."""
    if value is None:
        return NOT_AVAILABLE
    if isinstance(value, str) and not value.strip():
        return NOT_AVAILABLE
    return value


def format_timestamp(value: datetime | str | None) -> str:
    """ISO-8601 timestamp, or "N/A"."""
    if value is None:
        return NOT_AVAILABLE
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value) or NOT_AVAILABLE


def _field(data: Mapping[str, Any], *keys: str) -> Any:
    # Snapshots keep the caller's spelling: FBR camelCase or snake_case
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _invoice_header(data: Any) -> dict[str, Any]:
    # Legacy rows may hold a JSON string or nothing at all
    if not isinstance(data, Mapping):
        return {}
    return {
        "id": display(data.get("id")),
        "invoice_number": display(data.get("invoice_number")),
        "status": display(data.get("status")),
        "invoice_date": display(_field(data, "invoiceDate", "invoice_date")),
        "buyer_name": display(_field(data, "buyerBusinessName", "buyer_business_name")),
        "seller_name": display(_field(data, "sellerBusinessName", "seller_business_name")),
    }


def backup_to_view(backup: InvoiceBackup) -> dict[str, Any]:
    """Flatten one backup record for the history and listing views."""
    items = backup.invoice_items_data if isinstance(backup.invoice_items_data, list) else []
    return {
        "id": backup.id,
        "original_invoice_id": backup.original_invoice_id,
        "system_invoice_id": display(backup.system_invoice_id),
        "invoice_number": display(backup.invoice_number),
        "backup_type": display(backup.backup_type),
        "backup_reason": display(backup.backup_reason),
        "status_before": display(backup.status_before),
        "status_after": display(backup.status_after),
        "fbr_invoice_number": display(backup.fbr_invoice_number),
        "user_name": display(backup.user_name),
        "user_email": display(backup.user_email),
        "user_role": display(backup.user_role),
        "tenant_name": display(backup.tenant_name),
        "request_id": display(backup.request_id),
        "created_at": format_timestamp(backup.created_at),
        "invoice": _invoice_header(backup.invoice_data),
        "item_count": len(items),
        "invoice_data": backup.invoice_data,
        "invoice_items_data": items,
        "fbr_request_data": backup.fbr_request_data,
        "fbr_response_data": backup.fbr_response_data,
        "additional_info": backup.additional_info,
    }


def summary_to_view(summary: InvoiceBackupSummary) -> dict[str, Any]:
    """Flatten a backup summary; counters default to 0 for legacy rows."""
    counts = {
        bt.value: getattr(summary, bt.counter_column, None) or 0
        for bt in BackupType
    }
    return {
        "original_invoice_id": summary.original_invoice_id,
        "latest_backup_id": display(summary.latest_backup_id),
        "last_backup_type": display(summary.last_backup_type),
        "total_backups": summary.total_backups or 0,
        "backups_by_type": counts,
        "first_backup_at": format_timestamp(summary.first_backup_at),
        "last_backup_at": format_timestamp(summary.last_backup_at),
        "created_by": {
            "user_id": display(summary.created_by_user_id),
            "email": display(summary.created_by_email),
            "name": display(summary.created_by_name),
        },
        "last_modified_by": {
            "user_id": display(summary.last_modified_by_user_id),
            "email": display(summary.last_modified_by_email),
            "name": display(summary.last_modified_by_name),
        },
        "current_invoice_number": display(summary.current_invoice_number),
        "current_status": display(summary.current_status),
        "system_invoice_id": display(summary.system_invoice_id),
        "fbr_invoice_number": display(summary.fbr_invoice_number),
        "tenant_id": display(summary.tenant_id),
        "tenant_name": display(summary.tenant_name),
    }


def audit_entry_to_view(entry: AuditLog) -> dict[str, Any]:
    changed = entry.changed_fields if isinstance(entry.changed_fields, Mapping) else {}
    return {
        "id": entry.id,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "operation": entry.operation,
        "changed_keys": sorted(changed),
        "changed_fields": entry.changed_fields,
        "old_values": entry.old_values,
        "new_values": entry.new_values,
        "user_name": display(entry.user_name),
        "user_email": display(entry.user_email),
        "user_role": display(entry.user_role),
        "tenant_name": display(entry.tenant_name),
        "ip_address": display(entry.ip_address),
        "request_id": display(entry.request_id),
        "created_at": format_timestamp(entry.created_at),
    }


def statistics_to_view(stats: Mapping[str, Any]) -> dict[str, Any]:
    """Statistics payload with the recent backups rendered."""
    return {
        **{k: v for k, v in stats.items() if k != "recent_backups"},
        "top_users": [
            {**user, "user_name": display(user.get("user_name")), "user_email": display(user.get("user_email"))}
            for user in stats.get("top_users", [])
        ],
        "recent_backups": [backup_to_view(b) for b in stats.get("recent_backups", [])],
    }


def _actor(user_id: Any, email: Any, name: Any) -> dict[str, Any]:
    return {"user_id": display(user_id), "email": display(email), "name": display(name)}


def audit_summary_to_view(summary: AuditSummary) -> dict[str, Any]:
    return {
        "entity_type": summary.entity_type,
        "entity_id": summary.entity_id,
        "entity_name": display(summary.entity_name),
        "total_operations": summary.total_operations or 0,
        "created_by": _actor(summary.created_by_user_id, summary.created_by_email, summary.created_by_name),
        "created_at": format_timestamp(summary.created_at),
        "last_modified_by": _actor(
            summary.last_modified_by_user_id,
            summary.last_modified_by_email,
            summary.last_modified_by_name,
        ),
        "last_modified_at": format_timestamp(summary.last_modified_at),
        "tenant_id": display(summary.tenant_id),
        "tenant_name": display(summary.tenant_name),
        "is_deleted": bool(summary.is_deleted),
        "deleted_by": (
            _actor(summary.deleted_by_user_id, summary.deleted_by_email, summary.deleted_by_name)
            if summary.is_deleted
            else None
        ),
        "deleted_at": format_timestamp(summary.deleted_at) if summary.is_deleted else None,
    }


def audit_statistics_to_view(stats: Mapping[str, Any]) -> dict[str, Any]:
    """Audit statistics with user names made displayable."""
    return {
        **stats,
        "top_users": [
            {**user, "user_name": display(user.get("user_name")), "user_email": display(user.get("user_email"))}
            for user in stats.get("top_users", [])
        ],
    }
