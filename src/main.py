"""
Pet Try-On Compositor - Main Application

FastAPI application with:
- API versioning (/api/v1/)
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
- Request-scoped temp storage for uploads
- Vision inference as an advisory, timeout-bounded hint
"""

import time
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.core.config import settings
from src.core.logging import setup_logging, get_logger
from src.core.exceptions import register_exception_handlers
from src.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from src.core.storage import ITempStorage, TempResourceManager, get_temp_storage
from src.engines.tryon.vision_client import HttpVisionClient
from src.api.v1 import api_v1_router
from src.api.v1.tryon import router as legacy_tryon_router


# =============================================================================
# Initialize Logging
# =============================================================================
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON
)
logger = get_logger(__name__)


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - startup and shutdown."""
    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    # One connection pool for all vision calls
    app.state.http_client = httpx.AsyncClient(timeout=settings.VISION_TIMEOUT_SECONDS)
    app.state.vision_client = HttpVisionClient(
        base_url=settings.VISION_API_BASE_URL,
        api_key=settings.GROQ_API_KEY,
        model=settings.VISION_MODEL,
        timeout=settings.VISION_TIMEOUT_SECONDS,
        client=app.state.http_client
    )
    if not settings.GROQ_API_KEY:
        logger.warning("vision_not_configured", message="GROQ_API_KEY unset, anchors fall back to image center")

    set_app_info(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    logger.info("application_ready", vision_model=settings.VISION_MODEL)

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await app.state.http_client.aclose()
    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Virtual try-on for pet photos.

    - **Anchor**: a vision model suggests where the garment sits; the image
      center is used whenever the model is slow, unavailable or unclear
    - **Placement**: overlay scaled to a hint or a fraction of the photo width,
      aspect ratio preserved
    - **Compositing**: alpha-blended PNG at the photo's original size

    ## API Versioning

    All endpoints are versioned under `/api/v1/`; `POST /try-on` is kept as an
    unversioned alias.
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# =============================================================================
# Middleware
# =============================================================================

# CORS - storefront widgets call this from other origins
cors_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Anchor-Source", "X-Anchor-Point", "X-Process-Time"],
)


# Request timing middleware
@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Track request timing for metrics."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path
    ).observe(duration)

    http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code
    ).inc()

    response.headers["X-Process-Time"] = str(duration)

    return response


# =============================================================================
# Register Exception Handlers
# =============================================================================
register_exception_handlers(app)


# =============================================================================
# Include API Routers
# =============================================================================
app.include_router(api_v1_router)

# Unversioned alias used by existing storefront clients
app.include_router(
    legacy_tryon_router,
    prefix="/try-on",
    tags=["try-on-legacy"]
)


# =============================================================================
# Root Endpoints
# =============================================================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/api/docs",
        "api_v1": "/api/v1",
        "try_on": "/api/v1/try-on",
        "metrics": "/api/v1/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


@app.get("/ready", tags=["health"])
async def ready(storage: ITempStorage = Depends(get_temp_storage)):
    """Readiness check - temp storage must round-trip; vision is advisory."""
    checks = {
        "temp_storage": False,
        "vision_configured": bool(settings.GROQ_API_KEY),
    }

    try:
        async with TempResourceManager(storage) as temps:
            marker = await temps.acquire(b"ok", "ready.txt", field="readiness")
            checks["temp_storage"] = await temps.read(marker) == b"ok"
    except OSError as e:
        logger.warning("readiness_storage_failed", error=str(e))

    return JSONResponse(
        status_code=200 if checks["temp_storage"] else 503,
        content={
            "ready": checks["temp_storage"],
            "checks": checks
        }
    )


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
