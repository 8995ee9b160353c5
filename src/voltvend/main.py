"""FastAPI application entrypoint for VoltVend."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from voltvend import __version__
from voltvend.config import settings
from voltvend.database import dispose_engine, init_db
from voltvend.errors import (
    CapacityBelowUsage,
    ConcurrentModification,
    CustomerAdditionDenied,
    InvalidStateTransition,
    LedgerError,
    NotFound,
    ValidationError,
)

logger = logging.getLogger("voltvend")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown lifecycle handler."""
    logging.basicConfig(level=settings.log_level)
    logger.info("VoltVend %s starting (env=%s)", __version__, settings.environment)

    if settings.environment == "dev":
        await init_db()
        logger.info("Dev mode: tables created via init_db()")

    yield

    await dispose_engine()
    logger.info("VoltVend shut down.")


app = FastAPI(
    title="VoltVend",
    version=__version__,
    description="Vendor customer capacity, paid upgrades and admin overrides for electricity token vending.",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Include API routers
# ---------------------------------------------------------------------------
from voltvend.api.upgrades import router as upgrades_router  # noqa: E402
from voltvend.api.vendors import router as vendors_router  # noqa: E402

app.include_router(upgrades_router)
app.include_router(vendors_router)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------
@app.get("/health", tags=["meta"])
async def health_check() -> dict:
    return {
        "status": "ok",
        "version": __version__,
        "environment": settings.environment,
    }


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------
_STATUS_CODES: dict[type[LedgerError], int] = {
    ValidationError: 422,
    NotFound: 404,
    InvalidStateTransition: 409,
    CapacityBelowUsage: 409,
    ConcurrentModification: 409,
    CustomerAdditionDenied: 403,
}


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = next(
        (code for kind, code in _STATUS_CODES.items() if isinstance(exc, kind)),
        400,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(PermissionError)
async def permission_error_handler(request: Request, exc: PermissionError) -> JSONResponse:
    return JSONResponse(status_code=403, content={"detail": str(exc)})
