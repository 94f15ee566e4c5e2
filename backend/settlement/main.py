"""
Tenant settlement backend.

- Invoices: manual billing, issue / cancel / delete, payment summaries
- Ledger: append-only customer postings with a per-client balance cache
- POS: cash drawer sessions and counter sales

The ledger is the source of truth for money. The balance cache and the
invoice status fields are derived from it and written in the same commit.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from settlement.api.routes import invoices, ledger, pos
from settlement.core.config import settings
from settlement.core.exceptions import SettlementError, to_http_exception
from settlement.db.init_db import init_db

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup. Nothing to tear down."""
    logger.info("Initializing database...")
    init_db()
    logger.info(f"Database ready ({settings.ENVIRONMENT})")
    yield


app = FastAPI(
    title="Tenant Settlement API",
    description="Invoices, customer ledger and POS sessions. Ledger first, caches derived.",
    version="0.1.0",
    lifespan=lifespan,
)

# SECURITY: Restrict CORS to specific methods and headers (not wildcards)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Accept",
        "Origin",
        "X-Tenant-ID",
        "X-User-ID",
    ],
    max_age=600,
    expose_headers=["Content-Type"],
)


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    """Domain errors that escape a route still get their mapped status code."""
    http_exc = to_http_exception(exc)
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


app.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
app.include_router(ledger.router, prefix="/ledger", tags=["ledger"])
app.include_router(pos.router, prefix="/pos", tags=["pos"])


@app.get("/health")
def health():
    return {"status": "ok", "environment": settings.ENVIRONMENT}
