import logging
import os
import sys
import time
import uuid
from typing import Callable, Iterable

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from homedispatch.api.routes_admin import router as admin_router
from homedispatch.api.routes_bookings import router as bookings_router
from homedispatch.api.routes_health import router as health_router
from homedispatch.api.routes_metrics import router as metrics_router
from homedispatch.api.routes_payments import router as payments_router
from homedispatch.api.routes_providers import router as providers_router
from homedispatch.domain.errors import PROBLEM_TYPE_DOMAIN, PROBLEM_TYPE_VALIDATION, DomainError, InvariantViolation
from homedispatch.domain.pricing.service import PricingConfigurationError
from homedispatch.infra.db import get_session_factory
from homedispatch.infra.email import resolve_email_adapter
from homedispatch.infra.locks import create_booking_locker
from homedispatch.infra.logging import configure_logging
from homedispatch.infra.metrics import configure_metrics
from homedispatch.settings import settings

PROBLEM_TYPE_SERVER = "https://example.com/problems/server-error"
DEFAULT_AUTH_SECRET = "dev-auth-secret"

logger = logging.getLogger(__name__)


def problem_details(
    request: Request,
    status: int,
    title: str,
    detail: str,
    errors: list[dict[str, str]] | None = None,
    type_: str = "about:blank",
    headers: dict[str, str] | None = None,
    retryable: bool | None = None,
) -> JSONResponse:
    content = {
        "type": type_,
        "title": title,
        "status": status,
        "detail": detail,
        "request_id": getattr(request.state, "request_id", None),
        "errors": errors or [],
    }
    if retryable is not None:
        content["retryable"] = retryable
    return JSONResponse(status_code=status, content=content, headers=headers)


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_logger = logging.getLogger("homedispatch.request")
        start = time.time()
        response = await call_next(request)
        latency_ms = int((time.time() - start) * 1000)
        if response.status_code >= 500:
            request.app.state.metrics.record_http_5xx(request.method, request.url.path)
        request_logger.info(
            "request",
            extra={
                "request_id": getattr(request.state, "request_id", None),
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "latency_ms": latency_ms,
            },
        )
        return response


def _resolve_cors_origins(app_settings) -> Iterable[str]:
    if app_settings.cors_origins:
        return app_settings.cors_origins
    if app_settings.strict_cors:
        return []
    if app_settings.app_env == "dev":
        return ["http://localhost:3000"]
    return []


def _validate_prod_config(app_settings) -> None:
    if (
        app_settings.app_env == "dev"
        or getattr(app_settings, "testing", False)
        or os.getenv("PYTEST_CURRENT_TEST")
        or "pytest" in sys.argv[0]
    ):
        return

    errors: list[str] = []
    if app_settings.auth_secret_key == DEFAULT_AUTH_SECRET:
        errors.append("AUTH_SECRET_KEY must be set outside dev")
    if not (app_settings.admin_basic_username and app_settings.admin_basic_password):
        errors.append("ADMIN_BASIC_USERNAME and ADMIN_BASIC_PASSWORD are required outside dev")
    if app_settings.payment_gateway_mode == "stripe" and not app_settings.stripe_secret_key:
        errors.append("STRIPE_SECRET_KEY is required when PAYMENT_GATEWAY_MODE=stripe")
    if app_settings.booking_lock_backend == "redis" and not app_settings.redis_url:
        errors.append("REDIS_URL is required when BOOKING_LOCK_BACKEND=redis")

    if errors:
        for error in errors:
            logger.error("startup_config_error", extra={"extra": {"detail": error}})
        raise RuntimeError("Invalid production configuration; see logs for details")


def create_app(app_settings) -> FastAPI:
    configure_logging()
    _validate_prod_config(app_settings)
    app = FastAPI(title="Home Dispatch Booking Engine", version="1.0.0")

    booking_locker = create_booking_locker(app_settings)
    app.state.app_settings = app_settings
    app.state.db_session_factory = get_session_factory()
    app.state.booking_locker = booking_locker
    app.state.email_adapter = resolve_email_adapter(app_settings)
    app.state.payment_gateway = None
    app.state.stripe_webhook_verifier = None
    app.state.metrics = configure_metrics(app_settings.metrics_enabled)

    @app.on_event("shutdown")
    async def shutdown_locker() -> None:
        await booking_locker.close()

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(_resolve_cors_origins(app_settings)),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            loc = error.get("loc", [])
            field = ".".join(str(part) for part in loc if part not in {"body", "query", "path"}) or "body"
            errors.append({"field": field, "message": error.get("msg", "Invalid value")})
        return problem_details(
            request=request,
            status=422,
            title="Validation Error",
            detail="Request validation failed",
            errors=errors,
            type_=PROBLEM_TYPE_VALIDATION,
        )

    @app.exception_handler(DomainError)
    async def domain_exception_handler(request: Request, exc: DomainError):
        return problem_details(
            request=request,
            status=exc.status_code,
            title=exc.title,
            detail=exc.detail,
            errors=exc.errors or [],
            type_=exc.type or PROBLEM_TYPE_DOMAIN,
            retryable=exc.retryable,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return problem_details(
            request=request,
            status=exc.status_code,
            title=exc.detail if isinstance(exc.detail, str) else "HTTP Error",
            detail=exc.detail if isinstance(exc.detail, str) else "Request failed",
            type_=PROBLEM_TYPE_DOMAIN if exc.status_code < 500 else PROBLEM_TYPE_SERVER,
            headers=exc.headers,
        )

    @app.exception_handler(InvariantViolation)
    async def invariant_exception_handler(request: Request, exc: InvariantViolation):
        logger.critical(
            "invariant_violation",
            exc_info=exc,
            extra={"request_id": getattr(request.state, "request_id", None), "path": request.url.path},
        )
        return problem_details(
            request=request,
            status=500,
            title="Internal Server Error",
            detail="Unexpected error",
            type_=PROBLEM_TYPE_SERVER,
        )

    @app.exception_handler(PricingConfigurationError)
    async def pricing_exception_handler(request: Request, exc: PricingConfigurationError):
        logger.error(
            "pricing_configuration_error",
            extra={"request_id": getattr(request.state, "request_id", None), "extra": {"detail": str(exc)}},
        )
        return problem_details(
            request=request,
            status=500,
            title="Internal Server Error",
            detail="Service pricing is misconfigured",
            type_=PROBLEM_TYPE_SERVER,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            extra={"request_id": getattr(request.state, "request_id", None), "path": request.url.path},
        )
        return problem_details(
            request=request,
            status=500,
            title="Internal Server Error",
            detail="Unexpected error",
            type_=PROBLEM_TYPE_SERVER,
        )

    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(bookings_router)
    app.include_router(payments_router)
    app.include_router(providers_router)
    app.include_router(admin_router)
    return app


app = create_app(settings)
