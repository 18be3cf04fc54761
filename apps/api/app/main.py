from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.deps import domain_error_response, error_response
from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.errors import DomainError
from app.core.events import InternalEvent, event_bus
from app.logging import configure_logging
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.rate_limit import MutationRateLimitMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("app.lifecycle")
_subscriptions_registered = False

_HTTP_ERROR_CODES = {
    401: "unauthenticated",
    403: "access_denied",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limited",
}


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "api"})
    yield


app = FastAPI(title="Realty CRM API", version="0.1.0", lifespan=lifespan)
app.add_middleware(MutationRateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)


@app.exception_handler(DomainError)
async def handle_domain_error(request: Request, exc: DomainError):  # type: ignore[no-untyped-def]
    return domain_error_response(request, exc)


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):  # type: ignore[no-untyped-def]
    return error_response(
        request,
        status_code=400,
        code="validation_error",
        message="Request validation failed",
        details=jsonable_encoder(exc.errors(), exclude={"ctx", "url"}),
    )


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(request: Request, exc: StarletteHTTPException):  # type: ignore[no-untyped-def]
    response = error_response(
        request,
        status_code=exc.status_code,
        code=_HTTP_ERROR_CODES.get(exc.status_code, "http_error"),
        message=str(exc.detail),
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):  # type: ignore[no-untyped-def]
    logger.error(
        "http.unhandled_error",
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"method": request.method, "path": request.url.path, "error": str(exc)},
    )
    return error_response(
        request,
        status_code=500,
        code="internal_error",
        message="Internal server error",
    )


settings = get_settings()
if settings.otel_enabled:
    setup_otel("api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
