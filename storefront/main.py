import logging
import time
import uuid
from datetime import datetime
from typing import Optional

import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.engine import Engine

from storefront.api.v1 import cart, checkout, orders
from storefront.core.config import settings
from storefront.core.exceptions import APIError
from storefront.core.logging_config import configure_logging
from storefront.core.rate_limiter import limiter
from storefront.db.session import build_engine, build_session_factory

API_VERSION = "1.0.0"

logger = structlog.get_logger()


def standardized_error_response(status_code: int, message: str, errors=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            {
                "success": False,
                "message": message,
                "data": None,
                "errors": errors or [],
                "timestamp": f"{datetime.utcnow().isoformat()}Z",
            }
        ),
    )


def init_sentry() -> None:
    if settings.ENVIRONMENT != "production" or not settings.SENTRY_DSN:
        return
    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            traces_sample_rate=0.1,
            integrations=[
                FastApiIntegration(),
                SqlalchemyIntegration(),
            ],
        )
        logging.info("Sentry initialized successfully")
    except Exception as e:
        # Application continues without Sentry monitoring
        logging.warning(f"Failed to initialize Sentry: {e}")


def create_app(engine: Optional[Engine] = None) -> FastAPI:
    """Build the API around an explicit engine (a fresh one from DATABASE_URL by default)."""
    configure_logging()
    init_sentry()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        docs_url=f"{settings.API_V1_STR}/docs",
        redoc_url=f"{settings.API_V1_STR}/redoc",
    )

    app.state.engine = engine or build_engine(settings.DATABASE_URL)
    app.state.session_factory = build_session_factory(app.state.engine)

    # --------------------------------------------------
    # RATE LIMITING
    # --------------------------------------------------
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    # --------------------------------------------------
    # CORS
    # --------------------------------------------------
    cors_origins = list(settings.BACKEND_CORS_ORIGINS)
    if settings.FRONTEND_URL and settings.FRONTEND_URL not in cors_origins:
        cors_origins.append(settings.FRONTEND_URL)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Stripe-Signature", "X-Correlation-ID"],
        expose_headers=["X-Process-Time", "X-Correlation-ID"],
        max_age=3600,
    )

    # --------------------------------------------------
    # MIDDLEWARE
    # --------------------------------------------------
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())

        request.state.correlation_id = correlation_id
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("correlation_id")

        response.headers["X-Correlation-ID"] = correlation_id
        return response

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        response = await call_next(request)

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response

    # --------------------------------------------------
    # ROUTERS
    # --------------------------------------------------
    app.include_router(cart.router, prefix=f"{settings.API_V1_STR}/cart", tags=["Cart"])
    app.include_router(checkout.router, prefix=f"{settings.API_V1_STR}/checkout", tags=["Checkout"])
    app.include_router(orders.router, prefix=f"{settings.API_V1_STR}/orders", tags=["Orders"])

    # --------------------------------------------------
    # HEALTH
    # --------------------------------------------------
    @app.get("/health")
    def health_check():
        return {
            "status": "healthy",
            "environment": settings.ENVIRONMENT,
            "version": API_VERSION,
        }

    @app.get("/health/database")
    def database_health_check():
        engine = app.state.engine
        try:
            with engine.connect() as connection:
                connection.exec_driver_sql("SELECT 1")

            pool = engine.pool
            metrics = {
                "pool_class": pool.__class__.__name__,
                "checked_out": pool.checkedout() if hasattr(pool, "checkedout") else None,
                "status": pool.status() if hasattr(pool, "status") else None,
            }
            return {"status": "healthy", "pool": metrics}
        except Exception as exc:
            return {
                "status": "unhealthy",
                "pool": {},
                "reason": f"Database connectivity check failed: {exc}",
            }

    # --------------------------------------------------
    # ERROR HANDLERS
    # --------------------------------------------------
    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return standardized_error_response(
            status_code=429,
            message="Too many requests. Please try again later.",
        )

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        return standardized_error_response(
            status_code=exc.status_code,
            message=exc.message,
            errors=exc.errors,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail

        if isinstance(detail, str):
            message = detail
            errors = []
        elif isinstance(detail, list):
            message = "Request failed"
            errors = detail
        elif isinstance(detail, dict):
            message = detail.get("message", "Request failed")
            errors = detail.get("errors", [])
        else:
            message = "Request failed"
            errors = []

        response = standardized_error_response(
            status_code=exc.status_code,
            message=message,
            errors=errors,
        )
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return standardized_error_response(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            message="Validation failed",
            errors=exc.errors(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled_exception", error_type=type(exc).__name__, detail=str(exc))

        if settings.DEBUG and settings.ENVIRONMENT != "production":
            return standardized_error_response(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                message=f"Internal server error: {str(exc)}",
                errors=[{"type": type(exc).__name__}],
            )

        return standardized_error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Internal server error",
        )

    return app


app = create_app()
