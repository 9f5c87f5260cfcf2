"""Entity audit log — before/after state for invoices, buyers, products and users."""

from invoice_audit.audit.store import AuditTrail, audit_log_store
from invoice_audit.audit.summary import audit_summary_projection

__all__ = ["AuditTrail", "audit_log_store", "audit_summary_projection"]
