"""Tenant database engines and sessions."""
