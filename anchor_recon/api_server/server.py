"""
FastAPI server for the reconciliation core.

Routers: /transactions, /anchors, /reconciliation, /config/matching, /risk, /drift,
/audit. Domain errors map to {"detail", "code"} with the status carried by the
exception class. Config via env (RECON_DB_URL / RECON_DB_PATH, RPC_URL).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from anchor_recon import __version__
from anchor_recon.api_server.reconciliation import config_router, router as reconciliation_router
from anchor_recon.api_server.signals import audit_router, drift_router, risk_router
from anchor_recon.api_server.transactions import anchors_router, router as transactions_router
from anchor_recon.core.exceptions import ReconError, ValidationError
from anchor_recon.database import init_db
from anchor_recon.recon_logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup."""
    init_db()
    logger.info("api_started", version=__version__)
    yield
    logger.info("api_stopped")


app = FastAPI(
    title="Anchor Recon API",
    description="Reconciles on-chain anchors against operator claims, with audit, risk and drift.",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
app.include_router(anchors_router, prefix="/anchors", tags=["Anchors"])
app.include_router(reconciliation_router, prefix="/reconciliation", tags=["Reconciliation"])
app.include_router(config_router, prefix="/config/matching", tags=["Config"])
app.include_router(risk_router, prefix="/risk", tags=["Risk"])
app.include_router(drift_router, prefix="/drift", tags=["Drift"])
app.include_router(audit_router, prefix="/audit", tags=["Audit"])


@app.get("/health")
def health() -> dict[str, str]:
    """Liveness probe: API is up."""
    return {"status": "ok"}


@app.exception_handler(ReconError)
def recon_error_handler(request: Request, exc: ReconError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
    else:
        logger.info("request_rejected", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query params are 400 INVALID_INPUT, like domain validation."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(
        status_code=400,
        content={"detail": "; ".join(parts) or "invalid input", "code": ValidationError.code},
    )


@app.exception_handler(HTTPException)
def http_exception_handler(request: Any, exc: HTTPException) -> JSONResponse:
    """Consistent JSON error response for HTTPException."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )
