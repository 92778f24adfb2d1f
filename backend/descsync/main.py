"""FastAPI application entry point"""
import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from descsync.core.config import settings
from descsync.core.errors import DescSyncError
from descsync.core.logging import setup_logging
from descsync.core.otel import initialize_otel, instrument_app, setup_otel_logging
from descsync.db.redis import get_redis_client
from descsync.db.session import engine, init_db
from descsync.services.credential_vault import CredentialVault
from descsync.services.event_bus import RedisEventQueue
from descsync.services.youtube_gateway import YouTubeGateway
from descsync.tasks.event_worker import event_worker_task
from descsync.tasks.scheduler import channel_sync_scheduler_task

from descsync.api import channels, containers, templates, usage, videos

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")
    instrument_app(app, engine)

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        raise

    http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT)
    vault = CredentialVault(http_client)
    gateway = YouTubeGateway(http_client, vault)
    queue = RedisEventQueue()

    app.state.http_client = http_client
    app.state.vault = vault
    app.state.gateway = gateway
    app.state.event_queue = queue

    logger.info("Starting background tasks...")
    background = [
        asyncio.create_task(channel_sync_scheduler_task(queue)),
        asyncio.create_task(event_worker_task(queue, gateway)),
    ]
    logger.info("Background tasks started")

    yield

    # Shutdown
    logger.info("Shutting down...")
    for task in background:
        task.cancel()
    await asyncio.gather(*background, return_exceptions=True)
    await http_client.aclose()


app = FastAPI(
    title="DescSync Backend",
    description="Template-driven YouTube description management",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
allowed_origins = [settings.FRONTEND_URL]
if settings.ENVIRONMENT == "development":
    allowed_origins.extend([
        "http://localhost:3000",
        "http://localhost:8000",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:8000"
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(channels.router)
app.include_router(templates.router)
app.include_router(containers.router)
app.include_router(videos.router)
app.include_router(usage.router)


@app.exception_handler(DescSyncError)
async def descsync_exception_handler(request: Request, exc: DescSyncError):
    if exc.http_status >= 500:
        logger.warning(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content={"error": exc.to_dict()})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "internal_error", "message": "Internal server error", "details": {}}}
    )


@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
