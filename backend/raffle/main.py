"""
Raffle Inventory API - Main Application Entry Point

Sells a fixed pool of numbered raffle tickets:
- Race-free number holds backed by a uniqueness constraint
- Payment intents through MercadoPago
- Idempotent reconciliation of at-least-once payment webhooks
- Background expiry of abandoned holds
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from raffle.core.config import get_settings
from raffle.core.errors import RaffleError
from raffle.core.logging import setup_logging, get_logger
from raffle.core.metrics import metrics_endpoint
from raffle.api.router import api_router
from raffle.api.middleware import RequestLoggingMiddleware
from raffle.db.base import Base
from raffle.db.session import get_session_factory, make_engine, make_session_factory, wait_for_store
from raffle.infrastructure.redis_client import close_redis
from raffle.services.cache_service import get_cache_stats
from raffle.services.expiry_service import ExpirySweeper
from raffle.services.mercadopago_gateway import MercadoPagoGateway
from raffle.services.strategy_factory import create_claim_store, create_gateway

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: build collaborators on startup, tear down on shutdown."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    engine = make_engine(settings.DATABASE_URL, settings)
    await wait_for_store(engine, settings)
    if settings.CREATE_TABLES_ON_STARTUP:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    session_factory = make_session_factory(engine)
    http = MercadoPagoGateway.create_http_client(settings)

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.gateway = create_gateway(http, settings)
    app.state.claims = await create_claim_store(session_factory, settings)

    sweeper = ExpirySweeper(
        session_factory,
        interval=settings.SWEEP_INTERVAL_SECONDS,
        batch_size=settings.SWEEP_BATCH_SIZE,
    )
    if settings.SWEEPER_ENABLED:
        sweeper.start()

    yield

    await sweeper.stop()
    await http.aclose()
    await close_redis()
    await engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Raffle ticket inventory with concurrency-safe holds and payment reconciliation",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.exception_handler(RaffleError)
async def raffle_error_handler(request: Request, exc: RaffleError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health", tags=["Health"])
async def health_check(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Health check endpoint for Docker and load balancers."""
    try:
        async with session_factory() as db:
            await db.execute(text("SELECT 1"))
        store = "connected"
    except SQLAlchemyError as e:
        store = f"error: {e.__class__.__name__}"

    return {
        "status": "healthy" if store == "connected" else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "store": store,
        "cache": await get_cache_stats(),
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
