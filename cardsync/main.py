"""
FastAPI application entry point for CardSync.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from cardsync.api.v1.routes import inventory as inventory_router
from cardsync.api.v1.routes import pending_listings as pending_listings_router
from cardsync.api.v1.routes import sync as sync_router
from cardsync.api.v1.routes import webhooks as webhooks_router
from cardsync.core.config import get_settings
from cardsync.core.database import dispose_engine
from cardsync.core.exception_handlers import EXCEPTION_HANDLERS, get_trace_id
from cardsync.core.health import get_health_status
from cardsync.core.logging import LogContext, get_logger, setup_logging
from cardsync.core.prometheus_metrics import get_metrics_response
from cardsync.core.redis_client import close_redis

# Setup logging first
setup_logging()

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    logger.info("Starting CardSync")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.DEBUG}")

    yield

    logger.info("Shutting down CardSync")
    await close_redis()
    await dispose_engine()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.APP_VERSION,
    description="Synchronizes a local trading-card catalog, inventory and orders with CardTrader",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

allowed_origins = [origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",") if origin.strip()]
if "*" in allowed_origins and settings.ENVIRONMENT == "production":
    logger.warning("CORS allow_origins is set to '*' in production! This is a security risk.")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def trace_id_middleware(request: Request, call_next):
    """Bind the request trace id to every log record and echo it back."""
    trace_id = get_trace_id(request)
    with LogContext(trace_id=trace_id):
        response = await call_next(request)
    response.headers.setdefault("X-Trace-Id", trace_id)
    return response


for exception_type, handler in EXCEPTION_HANDLERS.items():
    app.add_exception_handler(exception_type, handler)


@app.get("/health/live")
async def health_live():
    """Liveness probe."""
    return {"status": "alive"}


@app.get("/health/ready")
async def health_ready():
    """Readiness probe: 200 when the database and Redis answer, 503 otherwise."""
    health_status = await get_health_status()
    if health_status["status"] == "healthy":
        return health_status
    return JSONResponse(status_code=503, content=health_status)


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    metrics_text, content_type = get_metrics_response()
    return Response(content=metrics_text, media_type=content_type)


app.include_router(sync_router.router, prefix=settings.API_V1_STR)
app.include_router(webhooks_router.router, prefix=settings.API_V1_STR)
app.include_router(pending_listings_router.router, prefix=settings.API_V1_STR)
app.include_router(inventory_router.router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "cardsync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
