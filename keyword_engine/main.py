import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from keyword_engine.api.v1.router import api_v1_router
from keyword_engine.core.config import settings, validate_settings_for_production
from keyword_engine.core.exceptions import HTTP_STATUS_BY_REASON, EngineError
from keyword_engine.core.logging import setup_logging
from keyword_engine.core.metrics import PrometheusMiddleware, metrics_response
from keyword_engine.core.middleware import RequestLoggingMiddleware
from keyword_engine.core.rate_limit import limiter
from keyword_engine.core.sentry import init_sentry
from keyword_engine.services.engine import KeywordEngine

# Configure logging before anything else
setup_logging()
init_sentry()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    logger.info(
        "Starting keyword engine (storage=%s, scheduler=%s)...",
        settings.storage_backend,
        settings.scheduler_mode,
    )

    # Tests inject a prebuilt engine
    engine = getattr(app.state, "engine", None)
    if engine is None:
        engine = KeywordEngine.from_settings(settings)
        app.state.engine = engine
    await engine.start()

    yield

    # Shutdown
    await engine.stop()
    logger.info("Keyword engine shut down")


app = FastAPI(
    title="Keyword Engine",
    description="App-store keyword discovery and ranking intelligence",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


@app.exception_handler(EngineError)
async def _engine_error_handler(request: Request, exc: EngineError):
    status_code = HTTP_STATUS_BY_REASON.get(exc.reason, 500)
    if status_code >= 500:
        logger.error("%s on %s %s: %s", exc.reason.value, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Log unhandled exceptions; never leak the raw exception text
@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled %s on %s %s",
        type(exc).__name__,
        request.method,
        request.url.path,
        exc_info=(type(exc), exc, exc.__traceback__),
    )
    return JSONResponse(status_code=500, content={"reason": "scheduler_fault", "detail": "Internal server error"})


# Rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Request logging + metrics middleware
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(PrometheusMiddleware)

# CORS: parse allowed_origins from settings (comma-separated)
_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(api_v1_router)


@app.get("/api/v1/health")
async def health():
    engine = getattr(app.state, "engine", None)
    return {
        "status": "ok",
        "storage": settings.storage_backend,
        "scheduler": settings.scheduler_mode,
        "queue": engine.scheduler.queue.get_stats() if engine else None,
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()
