"""
backend/betsim/main.py

Purpose:
    FastAPI application bootstrap, middleware/router wiring, scheduler
    lifecycle, and startup initialization for the wallet and pending
    settlement jobs.

Dependencies:
    - betsim.container
    - betsim.database
    - betsim.workers.settlement_worker
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.mongodb import MongoDBJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import MongoClient
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError

import betsim.database as _db
from betsim.config import settings
from betsim.container import SETTLEMENT_JOBSTORE, build_services
from betsim.database import close_db, connect_db
from betsim.middleware.logging import StructuredLoggingMiddleware, setup_logging
from betsim.workers import settlement_worker
from betsim.workers.cache_maintenance import run_cache_maintenance

logger = logging.getLogger("betsim")


def _build_scheduler() -> tuple[AsyncIOScheduler, MongoClient]:
    # Settlement jobs persist across restarts; periodic jobs are re-added on
    # every startup and stay in memory.
    jobstore_client = MongoClient(settings.MONGO_URI)
    scheduler = AsyncIOScheduler(
        jobstores={
            "default": MemoryJobStore(),
            SETTLEMENT_JOBSTORE: MongoDBJobStore(
                database=settings.MONGO_DB,
                collection=settings.SETTLEMENT_JOBSTORE_COLLECTION,
                client=jobstore_client,
            ),
        },
        timezone="UTC",
    )
    return scheduler, jobstore_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)
    await connect_db()

    scheduler, jobstore_client = _build_scheduler()
    services = build_services(scheduler)
    app.state.services = services
    settlement_worker.configure(services.settlement)

    await services.ledger.initialize_wallet()

    scheduler.add_job(
        run_cache_maintenance,
        "interval",
        minutes=settings.CACHE_MAINTENANCE_INTERVAL_MINUTES,
        args=[services.markets, timedelta(minutes=settings.ODDS_CACHE_PURGE_MINUTES)],
        id="cache_maintenance",
        replace_existing=True,
    )
    scheduler.start()
    resumed = await services.settlement.resume_pending()
    logger.info("Background scheduler started (%d pending bets queued)", resumed)

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)
    settlement_worker.configure(None)
    await services.markets.wait_for_refreshes()
    await services.gateway.aclose()
    jobstore_client.close()
    await close_db()


app = FastAPI(
    title="betsim",
    description="Virtual sports betting simulator",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type"],
)

# Structured logging
app.add_middleware(StructuredLoggingMiddleware)

# Routers
from betsim.routers.advisory import router as advisory_router
from betsim.routers.bets import router as bets_router
from betsim.routers.markets import router as markets_router
from betsim.routers.wallet import router as wallet_router

app.include_router(markets_router)
app.include_router(wallet_router)
app.include_router(bets_router)
app.include_router(advisory_router)


@app.exception_handler(InvalidId)
async def invalid_object_id_handler(request: Request, exc: InvalidId):
    return JSONResponse(status_code=400, content={"detail": "Invalid ID."})


def _field_name(loc: tuple) -> str:
    # Drop the leading "body"/"query"/"path" segment.
    parts = [str(part) for part in loc[1:]] or [str(part) for part in loc]
    return ".".join(parts) or "unknown"


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": _field_name(tuple(err.get("loc", ()))), "message": err.get("msg", "Invalid value.")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=422, content={"detail": "Validation error.", "errors": errors})


@app.exception_handler(ConnectionFailure)
async def db_unavailable_handler(request: Request, exc: ConnectionFailure):
    # Also covers ServerSelectionTimeoutError.
    logger.error("MongoDB unreachable during %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(OperationFailure)
async def db_operation_handler(request: Request, exc: OperationFailure):
    logger.error("MongoDB operation failed during %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.get("/health")
async def health(request: Request):
    """Database ping plus the odds feed's circuit state and credit usage."""
    try:
        db_ok = (await _db.db.command("ping")).get("ok") == 1.0
    except PyMongoError:
        db_ok = False

    services = getattr(request.app.state, "services", None)
    gateway = services.gateway if services else None
    return {
        "status": "healthy" if db_ok else "degraded",
        "db": "connected" if db_ok else "disconnected",
        "odds_provider": {
            "circuit_open": getattr(gateway, "circuit_open", False),
            "usage": getattr(gateway, "api_usage", {}),
        },
    }
