"""
FastAPI application entry point.

This module sets up the FastAPI application with middleware, shared
per-process state, error handlers and routers.
"""
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers import ai_analytics, ai_coach, ai_feedback
from core.config import settings
from core.database import engine
from core.logging import setup_logging
from core.exceptions import APIException, RequestValidationFailed
from core.rate_limit import RateLimitMiddleware, build_admission_controller
from core.redis_client import ping_redis
from services.ai_observability import AiRequestRecorder
from services.query_analytics import QueryAnalytics
import logging
import secrets
import time
from sqlalchemy import text

# Setup logging first
setup_logging()
logger = logging.getLogger(__name__)

STARTED_AT = time.time()

# Initialize Sentry for error tracking (production)
if settings.SENTRY_DSN:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.redis import RedisIntegration

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                RedisIntegration(),
            ],
            # Don't send PII
            send_default_pii=False,
            before_send=lambda event, hint: _filter_sensitive_data(event),
        )
        logger.info(f"Sentry initialized for environment: {settings.ENVIRONMENT}")
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def _filter_sensitive_data(event):
    """Strip auth material and chat bodies before sending to Sentry."""
    request = event.get("request") or {}
    headers = request.get("headers")
    if isinstance(headers, dict):
        headers.pop("authorization", None)
        headers.pop("cookie", None)
    request.pop("data", None)
    return event


# Create FastAPI app
app = FastAPI(
    title="Coach Orchestration API",
    description="Streaming strength and conditioning coach with privacy-gated data tools",
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# Per-process shared state. Tests replace these with fresh instances.
app.state.admission = build_admission_controller()
app.state.query_analytics = QueryAnalytics()
app.state.recorder = AiRequestRecorder()


@app.on_event("shutdown")
async def drain_ai_logs():
    """Let pending ai_logs writes finish before the process exits."""
    recorder: AiRequestRecorder = app.state.recorder
    if recorder.pending:
        logger.info(f"Draining {recorder.pending} pending AI log writes")
    await recorder.drain()


# CORS middleware
# Production: set CORS_ORIGINS env var (comma-separated)
# Development: DEBUG=True allows all origins
if settings.DEBUG:
    allowed_origins = ["*"]
elif settings.CORS_ORIGINS:
    allowed_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
else:
    allowed_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    # Session and guest-mode cookies ride on every call.
    allow_credentials=not settings.DEBUG,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Message-Id", "Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)

# General API quota; the chat and feedback routes add their own tighter limits.
app.add_middleware(RateLimitMiddleware)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing information."""
    start_time = time.time()

    logger.info(
        f"Request: {request.method} {request.url.path}",
        extra={
            "extra_fields": {
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
            }
        }
    )

    try:
        response = await call_next(request)
        process_time = time.time() - start_time

        logger.info(
            f"Response: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "process_time_ms": round(process_time * 1000, 2),
                }
            }
        )

        response.headers["X-Process-Time"] = str(process_time)
        return response
    except Exception as e:
        logger.error(
            f"Request failed: {request.method} {request.url.path}",
            exc_info=True,
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                }
            }
        )
        raise


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException):
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and query params are 400s with the structured error body."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = first.get("loc") or ()
    field = str(loc[1]) if len(loc) > 1 else None
    message = first.get("msg") or "Invalid request format"
    logger.info(
        "Request validation failed",
        extra={"extra_fields": {"path": request.url.path, "field": field, "error_count": len(errors)}},
    )
    err = RequestValidationFailed(message, field=field)
    return JSONResponse(status_code=err.status_code, content=err.to_body())


# Error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
        extra={
            "extra_fields": {
                "method": request.method,
                "path": request.url.path,
            }
        }
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}},
    )


def _check_database():
    start = time.time()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"status": "ok", "latency_ms": round((time.time() - start) * 1000, 2)}
    except Exception as e:
        logger.error(f"Health check database probe failed: {e}")
        return {"status": "error", "latency_ms": round((time.time() - start) * 1000, 2)}


@app.get("/health")
async def health(request: Request):
    """
    Health check.

    Without a valid X-Health-Secret header only {"status": "ok"} is returned,
    so load balancers and anonymous probes learn nothing about internals.

    With it:
        - 200 healthy: database reachable, configuration complete
        - 200 degraded: required configuration missing or Redis unreachable
        - 503 unhealthy: database unreachable
    """
    expected = settings.HEALTH_CHECK_SECRET
    provided = request.headers.get("x-health-secret")
    if not expected or not provided or not secrets.compare_digest(provided, expected):
        return {"status": "ok"}

    start = time.time()
    database = _check_database()
    redis_status, redis_latency = ping_redis()
    missing = settings.required_config_missing()

    if database["status"] != "ok":
        overall = "unhealthy"
    elif missing or redis_status in ("unavailable", "error"):
        overall = "degraded"
    else:
        overall = "healthy"

    body = {
        "status": overall,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "timestamp": time.time(),
        "uptime_seconds": round(time.time() - STARTED_AT, 1),
        "checks": {
            "database": database,
            "redis": {"status": redis_status, "latency_ms": redis_latency},
            "configuration": {"status": "error" if missing else "ok", "missing": missing},
            "rate_limiter": {"backend": app.state.admission.backend},
        },
        "response_time_ms": round((time.time() - start) * 1000, 2),
    }
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE if overall == "unhealthy" else status.HTTP_200_OK,
        content=body,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )


@app.get("/ping")
async def ping():
    """
    Minimal ping endpoint for uptime monitors.
    No dependencies checked - just confirms the API is responding.
    """
    return {"pong": True}


# Include routers
app.include_router(ai_coach.router)
app.include_router(ai_feedback.router)
app.include_router(ai_analytics.router)
