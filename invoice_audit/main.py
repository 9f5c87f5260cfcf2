"""FastAPI application entry point for the invoice backup audit viewer.

Usage:
    python -m invoice_audit.main

Host applications can mount `invoice_audit.api.routes.router` on their own
app instead; this module is the standalone deployment.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from invoice_audit.api.routes import router
from invoice_audit.config import settings
from invoice_audit.db.engine import db_lifespan, tenant_databases
from invoice_audit.errors import StorageError, ValidationError

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting invoice audit service (env=%s)", settings.environment)

    async with db_lifespan():
        logger.info("Database initialized (default tenant=%s)", settings.db.default_tenant_database)
        try:
            yield
        finally:
            logger.info("Shutting down invoice audit service...")

    logger.info("Invoice audit service shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="Invoice Audit API",
    description="Invoice backup history and audit trail for FBR digital invoicing",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(router)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": "Storage unavailable"})


@app.get("/health")
async def health_check() -> dict[str, object]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "tenant_databases": tenant_databases.tenants,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "invoice_audit.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
