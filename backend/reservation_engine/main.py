"""
Reservation Engine API - Main Application Entry Point

Holds seats and date-range rental units for competing requesters:
- Provisional holds claimed through conditional (compare-and-swap) writes
- Automatic reclamation of expired holds by a periodic sweep
- Idempotent payment event intake driving confirmation
- Deposit refunds released a grace period after a rental ends
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reservation_engine.api.middleware import RequestLoggingMiddleware
from reservation_engine.api.router import api_router
from reservation_engine.core.clock import SystemClock
from reservation_engine.core.config import get_settings
from reservation_engine.core.logging import get_logger, setup_logging
from reservation_engine.core.metrics import metrics_endpoint
from reservation_engine.db.base import Base
from reservation_engine.db.session import build_engine
from reservation_engine.engine import ReservationEngine, build_store
from reservation_engine.services.cache_service import CalendarCache, close_redis, get_redis

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging(settings)
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        store=settings.STORE_BACKEND,
    )

    db_engine = None
    if settings.STORE_BACKEND == "sql":
        db_engine = build_engine(settings)
        if db_engine.dialect.name == "sqlite":
            # Local development only; PostgreSQL schemas come from alembic.
            async with db_engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

    redis_client = await get_redis(settings)
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without calendar cache")

    engine = ReservationEngine(
        build_store(settings, db_engine),
        SystemClock(),
        settings=settings,
        calendar_cache=CalendarCache(redis_client, ttl=settings.CALENDAR_CACHE_TTL),
    )
    app.state.engine = engine

    sweeps = engine.build_sweeps() if settings.SWEEPS_ENABLED else []
    for sweep in sweeps:
        sweep.start()

    yield

    # Cleanup
    for sweep in sweeps:
        await sweep.stop()
    await close_redis()
    if db_engine is not None:
        await db_engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Reservation and capacity allocation API with time-boxed holds",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)

# Routes
app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    engine = getattr(app.state, "engine", None)
    cache_stats = await engine.calendar_cache.stats() if engine else {"status": "disabled"}
    return {
        "status": "healthy" if engine else "starting",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "store": settings.STORE_BACKEND,
        "cache": cache_stats,
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
