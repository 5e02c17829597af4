"""
Card Notes Credits - FastAPI Backend
Credit balances, usage gating and credit purchases for AI-written notes.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError

from config import settings, validate_security_settings
from database import Database
import models  # noqa: F401
from routers import (
    health,
    accounts,
    credits,
    admin,
)
from services.errors import CreditError, StorageUnavailable
from services.packages import seed_default_packages

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info("Starting Card Notes Credits API...")
    validate_security_settings()
    database = Database(settings.DATABASE_URL, pool_timeout=settings.DB_POOL_TIMEOUT_SECONDS)
    database.connect()
    app.state.database = database
    if settings.AUTO_CREATE_DB_SCHEMA:
        await database.create_schema()
        logger.info("Database schema verified.")
    if settings.SEED_CREDIT_PACKAGES:
        async with database.session() as session:
            await seed_default_packages(session, currency=settings.STRIPE_CURRENCY)
    yield
    # Shutdown
    await database.disconnect()
    app.state.database = None
    logger.info("Shutting down API...")


app = FastAPI(
    title="Card Notes Credits API",
    description="Prepaid credits that gate AI note generation and exports",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CreditError)
async def credit_error_handler(request: Request, exc: CreditError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


@app.exception_handler(DBAPIError)
async def storage_error_handler(request: Request, exc: DBAPIError):
    logger.exception("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    error = StorageUnavailable("Credit store is unavailable. Retry the request.")
    return JSONResponse(status_code=error.status_code, content={"detail": error.to_detail()})


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(accounts.router, prefix="/accounts", tags=["Accounts"])
app.include_router(credits.router, prefix="/credits", tags=["Credits"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Card Notes Credits API",
        "version": "0.1.0",
        "status": "running"
    }
