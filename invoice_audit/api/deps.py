"""FastAPI dependencies for the audit viewer API."""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_audit.config import settings
from invoice_audit.db.engine import tenant_databases


async def get_db(x_tenant_database: str | None = Header(None)) -> AsyncGenerator[AsyncSession, None]:
    """Session on the tenant database named by X-Tenant-Database (or the default)."""
    database = x_tenant_database or settings.db.default_tenant_database
    try:
        tenant_databases.session_factory(database)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    async with tenant_databases.session(database) as session:
        yield session
