"""
FastAPI application factory for the mail relay service.

The module exposes a `create_app` function that builds the REST API in front
of a :class:`mail_relay_service.dispatcher.Dispatcher`. Every error leaves
the service as a ``{status, message, code}`` JSON document; authentication
is optional and enforced through an API token carried in the ``X-API-Token``
header.
"""

import json
from datetime import datetime, timezone
from typing import Any, AsyncContextManager, Callable, Iterable, List, Literal, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .dispatcher import Dispatcher, error_body
from .errors import InvalidApiToken, InvalidPayload, MailServiceError, PayloadTooLarge, RateLimited
from .logger import get_logger
from .prometheus import MailMetrics
from .rate_limit import RateLimiter

API_TOKEN_HEADER_NAME = "X-API-Token"
SEND_EMAIL_PATH = "/api/v1/send-email"
AVAILABLE_ENDPOINTS = ["GET /health", f"POST {SEND_EMAIL_PATH}"]
DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
}

api_key_scheme = APIKeyHeader(name=API_TOKEN_HEADER_NAME, auto_error=False)
logger = get_logger(__name__)


class ErrorResponse(BaseModel):
    """Error payload shared by every failing endpoint."""
    status: Literal["error"] = "error"
    message: str
    code: str
    details: Optional[str] = None


class FieldError(BaseModel):
    field: str
    message: str
    value: Any = None


class ValidationErrorResponse(ErrorResponse):
    errors: List[FieldError] = Field(default_factory=list)


class SendEmailPayload(BaseModel):
    """Documented shape of the send request; the body itself is validated by the dispatcher."""
    to: str | List[str]
    subject: str
    message: str
    cc: Optional[str | List[str]] = None
    bcc: Optional[str | List[str]] = None
    from_: Optional[str] = Field(default=None, alias="from")
    name: Optional[str] = None


class SentEmailData(BaseModel):
    messageId: str
    from_: Optional[str] = Field(default=None, alias="from")
    name: str
    recipients: int
    subject: str
    sentAt: str


class SendEmailResponse(BaseModel):
    status: Literal["success"] = "success"
    message: str
    data: SentEmailData


class HealthResponse(BaseModel):
    status: Literal["success"] = "success"
    message: str
    timestamp: str
    environment: str

SEND_EMAIL_RESPONSES = {
    200: {"model": SendEmailResponse},
    400: {"model": ValidationErrorResponse},
    401: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


async def require_token(request: Request, api_token: str | None = Depends(api_key_scheme)) -> None:
    """Validate the API token carried in the ``X-API-Token`` header.

    When no token is configured the dependency is effectively bypassed.
    """
    expected = getattr(request.app.state, "api_token", None)
    if expected is None:
        return
    if not api_token or api_token != expected:
        raise InvalidApiToken("Invalid or missing API token")


async def throttle(request: Request) -> None:
    """Apply the per-client rate limiter, if one is configured."""
    limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return
    client = request.client.host if request.client else "unknown"
    retry_after = limiter.check_and_record(client)
    if retry_after is not None:
        raise RateLimited(retry_after)


async def read_json_body(request: Request) -> dict:
    """Read the request body enforcing the size ceiling and decode it as a JSON object."""
    limit = request.app.state.max_body_bytes
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise PayloadTooLarge(int(declared), limit)
    raw_body = await request.body()
    if len(raw_body) > limit:
        raise PayloadTooLarge(len(raw_body), limit)
    try:
        payload = json.loads(raw_body)
    except ValueError as exc:
        raise InvalidPayload(f"Malformed JSON body: {exc}") from exc
    if not isinstance(payload, dict):
        raise InvalidPayload("Request body must be a JSON object")
    return payload


def create_app(
    dispatcher: Dispatcher,
    *,
    api_token: str | None = None,
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    rate_limiter: RateLimiter | None = None,
    cors_origins: Iterable[str] = ("*",),
    environment: str = "development",
    metrics: MailMetrics | None = None,
    lifespan: Callable[[FastAPI], AsyncContextManager] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    dispatcher:
        Instance of :class:`mail_relay_service.dispatcher.Dispatcher` that
        validates and sends each request.
    api_token:
        Optional secret. When provided, the ``X-API-Token`` header must match
        this value on the send and metrics endpoints.
    max_body_bytes:
        Ceiling for the request body; larger bodies get ``413``.
    rate_limiter:
        Optional :class:`RateLimiter` applied per client address on the send
        endpoint.
    cors_origins:
        Origins allowed by the CORS middleware.
    environment:
        Deployment environment; outside ``production`` unhandled errors carry
        a ``details`` field.
    metrics:
        Prometheus metrics to expose on ``/metrics``; defaults to the
        dispatcher's.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.

    Returns
    -------
    FastAPI
        A configured application ready to be served by Uvicorn or any ASGI
        server.
    """
    api = FastAPI(title="Mail Relay Service", lifespan=lifespan)
    api.state.dispatcher = dispatcher
    api.state.api_token = api_token
    api.state.max_body_bytes = int(max_body_bytes)
    api.state.rate_limiter = rate_limiter
    api.state.environment = environment
    diagnostics = environment != "production"
    metrics = metrics or getattr(dispatcher, "metrics", None)

    api.add_middleware(
        CORSMiddleware,
        allow_origins=list(cors_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @api.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response

    @api.exception_handler(MailServiceError)
    async def handle_service_error(request: Request, exc: MailServiceError):
        status_code, body = error_body(exc)
        headers = None
        if isinstance(exc, RateLimited):
            body["retryAfter"] = exc.retry_after
            headers = {"Retry-After": str(exc.retry_after)}
        if metrics:
            metrics.inc_rejected(body["code"])
        logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, body["code"], exc)
        return JSONResponse(status_code=status_code, content=body, headers=headers)

    @api.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            body = {
                "status": "error",
                "message": f"Route {request.url.path} not found",
                "code": "ROUTE_NOT_FOUND",
                "availableEndpoints": AVAILABLE_ENDPOINTS,
            }
        elif exc.status_code == 405:
            body = {
                "status": "error",
                "message": f"Method {request.method} not allowed on {request.url.path}",
                "code": "METHOD_NOT_ALLOWED",
            }
        else:
            body = {"status": "error", "message": str(exc.detail), "code": "HTTP_ERROR"}
        return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))

    @api.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        status_code, body = error_body(exc, diagnostics=diagnostics)
        body["message"] = "Internal server error"
        # runs outside the http middleware stack
        return JSONResponse(status_code=status_code, content=body, headers=SECURITY_HEADERS)

    @api.get("/health", response_model=HealthResponse)
    async def health():
        """Return a simple health status payload."""
        return HealthResponse(
            message="Email service is running",
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            environment=environment,
        )

    send_email_schema = {
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": SendEmailPayload.model_json_schema(by_alias=True)}},
        }
    }

    @api.post(
        SEND_EMAIL_PATH,
        dependencies=[Depends(require_token), Depends(throttle)],
        responses=SEND_EMAIL_RESPONSES,
        openapi_extra=send_email_schema,
    )
    async def send_email(payload: dict = Depends(read_json_body)):
        """Validate the request body and send it through the relay."""
        result = await api.state.dispatcher.dispatch(payload)
        return JSONResponse(status_code=result.status_code, content=result.body)

    if metrics is not None:
        @api.get("/metrics", dependencies=[Depends(require_token)])
        async def prometheus_metrics():
            """Expose Prometheus metrics collected by the service."""
            return Response(content=metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    return api
