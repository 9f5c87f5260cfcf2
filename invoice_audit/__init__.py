"""Invoice backup and audit trail for the FBR digital invoicing backend."""
