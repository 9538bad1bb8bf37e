import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from labwatch.api.v1.api import api_router
from labwatch.core.config import settings
from labwatch.core.database import async_session_maker, engine
from labwatch.core.logging_config import setup_logging
from labwatch.core.redis import RedisClient
from labwatch.middleware.logging import LoggingMiddleware
from labwatch.services.breakdown.inactivity_sweep import InactivitySweep, SweepLock
from labwatch.services.realtime.publisher import RealtimePublisher
from labwatch.services.realtime.relay import RedisEventRelay
from labwatch.utils.background import BackgroundDispatcher
from labwatch.utils.date_time_serializer import utcnow

logger = logging.getLogger(__name__)


def build_runtime(app: FastAPI, session_factory=None):
    """Attach the process-wide services to app.state"""
    session_factory = session_factory or async_session_maker
    relay = RedisEventRelay(RedisClient()) if settings.REDIS_URL else None

    app.state.session_factory = session_factory
    app.state.dispatcher = BackgroundDispatcher()
    app.state.publisher = RealtimePublisher(relay=relay)
    app.state.inactivity_sweep = InactivitySweep(
        session_factory,
        publisher=app.state.publisher,
        lock=SweepLock(RedisClient(settings.sweep_lock_url)),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    build_runtime(app)
    await app.state.publisher.startup()
    logger.info("LabWatch backend started")
    try:
        yield
    finally:
        await app.state.dispatcher.shutdown()
        await app.state.publisher.shutdown()
        await app.state.inactivity_sweep.lock.close()
        await engine.dispose()
        logger.info("LabWatch backend stopped")


app_config = {
    "title": "LabWatch Equipment Monitoring",
    "description": "Lab equipment telemetry, alerting and breakdown/reorder workflow",
    "version": "1.0.0",
}

app = FastAPI(lifespan=lifespan, **app_config)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(OperationalError)
@app.exception_handler(PoolTimeoutError)
async def storage_unavailable_handler(request: Request, exc: Exception):
    logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Storage temporarily unavailable, please retry"},
        headers={"Retry-After": "5"},
    )


app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    return {
        "message": "LabWatch equipment monitoring backend",
        "status": "active",
        "version": app_config["version"],
        "docs": "/docs",
    }


@app.get("/health")
async def health_check(request: Request):
    publisher = getattr(request.app.state, "publisher", None)
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "components": {
            "realtime_connections": await publisher.connection_count() if publisher else 0,
            "background_jobs": dispatcher.pending if dispatcher else 0,
            "relay": "redis" if settings.REDIS_URL else "local",
        },
    }
