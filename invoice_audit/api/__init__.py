"""Read-only audit viewer API."""
