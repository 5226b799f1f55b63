"""API middleware: CORS, request logging, rate limiting and error handling.

Provides helper functions and middleware classes to configure cross-origin
resource sharing, structured request logging (via structlog), per-client
rate limiting, and automatic conversion of ``RegDocError`` subclasses into
JSON ``{"success": false, "error": ...}`` bodies.

# ─── MIDDLEWARE EXECUTION ORDER ───────────────────────────────────────
#
# Starlette middleware is a stack (LIFO: last added, first executed):
#
#   In main.py:
#     app.add_middleware(ErrorHandlingMiddleware)   # added 1st → innermost
#     app.add_middleware(RateLimitMiddleware, ...)  # added 2nd
#     app.add_middleware(RequestLoggingMiddleware)  # added 3rd → outermost
#
#   Request flow:
#     Client → RequestLogging → RateLimit → ErrorHandling → route handler
#
# So RequestLoggingMiddleware sees the *final* status code, including
# 429s from the limiter and the JSON errors produced by ErrorHandling.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import math
import time
import uuid

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from src.api.schemas import ErrorResponse
from src.resilience.rate_limiter import DistributedRateLimiter, get_client_id
from src.utils.errors import RegDocError, ValidationError
from src.utils.logging import bind_request_context, clear_request_context, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

RATE_LIMIT_MESSAGE = "Trop de requêtes. Veuillez réessayer plus tard."

# Paths never counted against a client's window.
_RATE_LIMIT_EXEMPT = frozenset({"/api/v1/health", "/docs", "/openapi.json"})


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware to the FastAPI application.

    Parameters
    ----------
    app:
        The FastAPI application instance.
    allowed_origins:
        Explicit list of allowed origins.  Defaults to ``["*"]`` for
        development; override with specific origins in production.
    """
    origins = allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code, and duration.

    Binds a request id and the resolved client id into structlog's
    context so every event logged while the request runs carries them.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None
        bind_request_context(
            request_id=request.headers.get("x-request-id") or uuid.uuid4().hex[:12],
            client_id=get_client_id(request.headers),
        )

        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = response.status_code if response else 500
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=status_code,
                duration_ms=duration_ms,
            )
            clear_request_context()


# ---------------------------------------------------------------------------
# Rate Limiting
# ---------------------------------------------------------------------------


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject clients that exceed their fixed window with HTTP 429.

    The client key comes from :func:`get_client_id`.  Allowed responses
    carry ``X-RateLimit-Remaining``; denied ones carry ``Retry-After`` (in
    seconds) and ``{"error": ..., "retryAfter": n}``.
    """

    def __init__(self, app: ASGIApp, limiter: DistributedRateLimiter) -> None:
        super().__init__(app)
        self._limiter = limiter

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        if request.url.path in _RATE_LIMIT_EXEMPT or request.method == "OPTIONS":
            return await call_next(request)

        result = await self._limiter.check(get_client_id(request.headers))
        if not result.allowed:
            retry_after = max(1, math.ceil((result.reset_at - self._limiter.now_ms()) / 1000))
            return JSONResponse(
                status_code=429,
                content={"error": RATE_LIMIT_MESSAGE, "retryAfter": retry_after},
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return response


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Return structured JSON errors for anything a route lets escape.

    ``ValidationError`` maps to 400, every other application error to
    500.  Any other exception is a 500 with a generic message.  Stack
    traces are logged server-side only and never leaked to the
    client.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except RegDocError as exc:
            status_code = 400 if isinstance(exc, ValidationError) else 500
            _logger.error(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                path=str(request.url.path),
                status=status_code,
            )
            body = ErrorResponse(error=exc.message)
            return JSONResponse(
                status_code=status_code,
                content=body.model_dump(),
            )
        except Exception as exc:
            _logger.exception(
                "unhandled_error",
                error_type=type(exc).__name__,
                path=str(request.url.path),
                status=500,
            )
            body = ErrorResponse(error="Erreur interne du serveur")
            return JSONResponse(
                status_code=500,
                content=body.model_dump(),
            )
