"""
FastAPI application entry point.

Wires the v1 routers, CORS, rate limiting, request logging and the
error handlers that render ``FulfillmentError`` subclasses as
``{error, code, message, details, request_id}`` with their HTTP status.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from fulfillment.api.v1 import api_router
from fulfillment.cache.redis_client import close_redis_client, get_redis_client
from fulfillment.core.config import get_settings
from fulfillment.core.exceptions import FulfillmentError
from fulfillment.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from fulfillment.database.connection import (
    check_database_health,
    close_database_connections,
    initialize_database,
)

configure_logging()
logger = get_logger(__name__)

settings = get_settings()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit],
    enabled=not settings.is_test,
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    if not settings.is_test:
        with log_performance(logger, "application_startup"):
            await initialize_database()

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        await close_redis_client()
        await close_database_connections()
        logger.info("Resources cleaned up successfully")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Event logistics order fulfillment API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=settings.debug,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """
    Assign a correlation id, log the request and time its processing.

    The id is taken from ``X-Request-ID`` when the caller sends one and
    is echoed back in the response header.
    """
    request_id = set_request_id(request.headers.get("X-Request-ID"))

    logger.info(
        "Request received",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        with log_performance(
            logger,
            "request_processing",
            method=request.method,
            path=request.url.path,
        ):
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response
    finally:
        clear_context()


@app.exception_handler(FulfillmentError)
async def fulfillment_error_handler(
    request: Request, exc: FulfillmentError
) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Request rejected",
        method=request.method,
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": type(exc).__name__,
            **exc.to_dict(),
            "request_id": get_request_id(),
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        errors=exc.errors(),
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "ValidationFailed",
            "code": "VALIDATION_FAILED",
            "message": "Request validation failed",
            "details": {"errors": jsonable_errors(exc)},
            "request_id": get_request_id(),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {
            "loc": list(error.get("loc", ())),
            "msg": error.get("msg"),
            "type": error.get("type"),
        }
        for error in exc.errors()
    ]


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected errors with context and hide their details."""
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "InternalServerError",
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "details": {},
            "request_id": get_request_id(),
        },
    )


@app.get("/health", tags=["Health"], summary="Health check endpoint")
@limiter.exempt
async def health_check() -> dict[str, str]:
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get("/ready", tags=["Health"], summary="Readiness check endpoint")
@limiter.exempt
async def readiness_check():
    """
    Readiness check for orchestration.

    The database must answer; Redis is optional and only reported.
    """
    database_ready = await check_database_health(max_retries=1)

    redis_status = "unavailable"
    try:
        client = await get_redis_client()
        redis_status = "healthy" if await client.health_check() else "unhealthy"
    except RedisError as e:
        logger.warning("Redis readiness check failed", error=str(e))

    body = {
        "status": "ready" if database_ready else "not_ready",
        "service": settings.app_name,
        "version": settings.app_version,
        "database": "healthy" if database_ready else "unhealthy",
        "redis": redis_status,
    }
    if not database_ready:
        logger.warning("Readiness check failed", database=body["database"])
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body


@app.get("/live", tags=["Health"], summary="Liveness check endpoint")
@limiter.exempt
async def liveness_check() -> dict[str, str]:
    return {
        "status": "alive",
        "service": settings.app_name,
        "version": settings.app_version,
    }


app.include_router(api_router, prefix="/api/v1")
