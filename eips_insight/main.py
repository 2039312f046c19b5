from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from eips_insight.config.common_settings import ALLOWED_ORIGINS
from eips_insight.exceptions import LifecycleError, classify_exception
from eips_insight.routers.fastapi_router import router as api_router
from eips_insight.utils.dates import to_iso, utcnow
from eips_insight.utils.logger import logger
from eips_insight.utils.startup_validation import validate_startup

# Run startup validation
logger.info("EIPs Insight lifecycle service starting up...")
if not validate_startup():
    logger.error("Startup validation failed. Please check configuration.")
    # Keep serving so /healthz can report the problem

app = FastAPI(title="EIPs Insight Lifecycle Engine", version="0.1.0")

allowed_origins = [origin.strip() for origin in ALLOWED_ORIGINS.split(",") if origin.strip()]
logger.info("Allowed origins: %s", allowed_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials="*" not in allowed_origins,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)


def _error_response(exc: LifecycleError) -> JSONResponse:
    headers = {}
    if exc.retry_after is not None:
        headers["Retry-After"] = str(max(1, int(round(exc.retry_after))))
    return JSONResponse(status_code=exc.code, content=exc.to_dict(), headers=headers)


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    if exc.code >= 500:
        logger.error("API: %s %s failed (%d): %s", request.method, request.url.path, exc.code, exc.message)
    return _error_response(exc)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = classify_exception(exc)
    logger.error("API: %s %s raised %s (%d): %s", request.method, request.url.path,
                 type(exc).__name__, error.code, exc, exc_info=exc)
    return _error_response(error)


@app.get("/healthz")
def healthz() -> dict:
    """Health check with connection pool status."""
    health_status = {"status": "ok", "timestamp": to_iso(utcnow())}

    from eips_insight.services.connection_pool import get_connection_pool
    pool = get_connection_pool()
    pool_stats = pool.get_stats()

    if pool_stats.get("in_backoff"):
        health_status["database"] = "backoff mode"
        health_status["status"] = "degraded"
    else:
        try:
            conn = pool.get_connection()
            pool.return_connection(conn)
            health_status["database"] = "connected"
        except LifecycleError as e:
            health_status["database"] = f"error: {e.message[:100]}"
            health_status["status"] = "degraded"

    health_status["pool_stats"] = {
        "failure_count": pool_stats.get("failure_count", 0),
        "pool_exists": pool_stats.get("pool_exists", False),
    }
    return health_status


@app.on_event("shutdown")
def shutdown_event():
    """Clean up resources on application shutdown."""
    logger.info("Shutting down EIPs Insight lifecycle service...")
    from eips_insight.services.connection_pool import close_connection_pool
    close_connection_pool()


# Mount API routes
app.include_router(api_router)
