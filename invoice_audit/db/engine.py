"""Tenant-keyed async database engines, session factories, and lifespan management.

Every tenant has its own database. TenantDatabaseManager owns one
SQLAlchemy 2.0 async engine per tenant database, created on first use and
disposed at shutdown. Backup and audit code never routes tenants itself —
it receives a session or a session factory from here.

At most settings.db.max_open_engines engines are kept; opening another one
evicts the least recently used, whose pool is disposed at the next session
or at close(). When settings.db.allowed_tenant_databases is set, no other
database name is ever opened.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from collections import OrderedDict
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from invoice_audit.config import DatabaseSettings, settings

if TYPE_CHECKING:
    from invoice_audit.audit.store import AuditTrail
    from invoice_audit.backup.writer import SnapshotWriter

logger = logging.getLogger(__name__)

_TENANT_DB_RE = re.compile(r"^[A-Za-z0-9_]{1,64}$")


class TenantDatabaseManager:
    """Process-wide owner of per-tenant connection pools.

    Usage:
        manager = TenantDatabaseManager(settings.db)
        async with manager.session("fbr_acme") as db:
            ...
        await manager.close()
    """

    def __init__(self, db_settings: DatabaseSettings) -> None:
        self._settings = db_settings
        # Least recently used first
        self._engines: OrderedDict[str, AsyncEngine] = OrderedDict()
        self._factories: dict[str, async_sessionmaker[AsyncSession]] = {}
        self._retired: list[tuple[str, AsyncEngine]] = []
        self._lock = asyncio.Lock()

    @property
    def tenants(self) -> list[str]:
        """Tenant databases with an open engine."""
        return sorted(self._engines)

    def _create_engine(self, database: str) -> AsyncEngine:
        url = self._settings.url_for(database)
        if url.startswith("sqlite"):
            return create_async_engine(url, echo=self._settings.echo_sql)
        return create_async_engine(
            url,
            echo=self._settings.echo_sql,
            pool_size=self._settings.pool_size,
            max_overflow=self._settings.max_overflow,
            pool_pre_ping=True,
            pool_recycle=self._settings.pool_recycle,
        )

    def _check_name(self, database: str) -> None:
        if not _TENANT_DB_RE.match(database):
            msg = f"Invalid tenant database name: {database!r}"
            raise ValueError(msg)
        allowed = self._settings.allowed_tenants
        if allowed and database not in allowed:
            msg = f"Unknown tenant database: {database!r}"
            raise ValueError(msg)

    def _evict_overflow(self) -> None:
        while len(self._engines) > self._settings.max_open_engines:
            database, engine = self._engines.popitem(last=False)
            del self._factories[database]
            self._retired.append((database, engine))
            logger.info("Evicted engine for tenant database %s", database)

    def session_factory(self, database: str) -> async_sessionmaker[AsyncSession]:
        """Return the session factory for a tenant database, creating its engine if needed.

        Raises ValueError for a malformed name or one outside the allow-list.
        """
        self._check_name(database)

        factory = self._factories.get(database)
        if factory is not None:
            self._engines.move_to_end(database)
            return factory

        engine = self._create_engine(database)
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        self._engines[database] = engine
        self._factories[database] = factory
        logger.info("Opened engine for tenant database %s", database)
        self._evict_overflow()
        return factory

    async def _dispose_retired(self) -> None:
        async with self._lock:
            retired, self._retired = self._retired, []
        for database, engine in retired:
            await engine.dispose()
            logger.info("Disposed engine for tenant database %s", database)

    @contextlib.asynccontextmanager
    async def session(self, database: str) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session for one tenant; commit on success, roll back on error."""
        factory = self.session_factory(database)
        await self._dispose_retired()
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    def writer(self, database: str) -> SnapshotWriter:
        """Snapshot writer bound to one tenant database."""
        from invoice_audit.backup.writer import SnapshotWriter

        return SnapshotWriter(self.session_factory(database))

    def audit_trail(self, database: str) -> AuditTrail:
        """Audit trail writer bound to one tenant database."""
        from invoice_audit.audit.store import AuditTrail

        return AuditTrail(self.session_factory(database))

    async def create_schema(self, database: str) -> None:
        """Create backup and audit tables in a tenant database.

        Production databases are migrated with Alembic; this is for
        development and tests.
        """
        # Import here to ensure all models are registered with Base.metadata
        from invoice_audit.models import Base

        self.session_factory(database)
        engine = self._engines[database]
        await self._dispose_retired()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose every tenant engine.

        Engines are recreated lazily if the manager is used again.
        """
        async with self._lock:
            self._retired.extend(self._engines.items())
            self._engines.clear()
            self._factories.clear()
        await self._dispose_retired()


# ── Process-wide manager ─────────────────────────────────────────────

tenant_databases: TenantDatabaseManager = TenantDatabaseManager(settings.db)


async def init_db() -> None:
    """Open the default tenant engine at startup.

    In development the tables are created directly; production relies on
    Alembic migrations.
    """
    default = settings.db.default_tenant_database
    if not settings.is_production:
        await tenant_databases.create_schema(default)
    else:
        tenant_databases.session_factory(default)


async def close_db() -> None:
    """Dispose all tenant engines. Called during FastAPI lifespan shutdown."""
    await tenant_databases.close()


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Context manager for database lifecycle.

    Usage in FastAPI lifespan:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with db_lifespan():
                yield
    """
    await init_db()
    try:
        yield
    finally:
        await close_db()
