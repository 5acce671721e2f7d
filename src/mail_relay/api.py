# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""FastAPI application factory for the mail relay.

Endpoints:
- ``GET /health``: liveness probe, always ``{"status": "ok"}``
- ``POST /send``: validate a message, submit it over SMTP and return the
  Message-ID with the accepted and rejected recipients

Every error body carries an ``error`` string. SMTP failures are mapped to
HTTP statuses by :func:`mail_relay.smtp_transport.classify_smtp_error`; the
raw SMTP text is only exposed as ``details`` in the development environment.

Example:
    Creating and running the API application::

        from mail_relay.core import MailRelay
        from mail_relay.api import create_app

        relay = MailRelay(load_settings())
        app = create_app(relay)

        # Run with uvicorn
        uvicorn.run(app, host="0.0.0.0", port=10000)
"""

import logging
import secrets
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config_loader import RelaySettings
from .core import MailRelay
from .models import ErrorResponse, SendParams, SendRequest, SendResponse
from .rate_limit import SlidingWindowRateLimiter, client_key
from .smtp_transport import SmtpSendError

logger = logging.getLogger(__name__)

service: MailRelay | None = None
AVAILABLE_ENDPOINTS = ["GET /health", "POST /send"]
REQUEST_ID_HEADER = "X-Request-ID"


class RateLimitExceeded(Exception):
    """Raised by the rate-limit dependency when a client exceeds its quota."""

    def __init__(self, retry_after: int):
        super().__init__(f"retry after {retry_after}s")
        self.retry_after = retry_after


def get_service() -> MailRelay:
    """Return the relay bound by :func:`create_app`.

    Raises:
        RuntimeError: If no relay has been bound.
    """
    if service is None:
        raise RuntimeError("Service not initialized")
    return service


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "-")


def _error_body(error: str, details: Any = None, **extra: Any) -> dict[str, Any]:
    body = ErrorResponse(error=error, details=details).model_dump(exclude_none=True)
    body.update(extra)
    return body


def _validation_details(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


def create_app(
    svc: MailRelay,
    settings: RelaySettings | None = None,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager] | None = None,
    rate_limiter: SlidingWindowRateLimiter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    svc:
        The :class:`mail_relay.core.MailRelay` that performs the sends.
    settings:
        Runtime settings; defaults to ``svc.settings``. Controls the rate
        limit and whether SMTP error details are exposed.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.
    rate_limiter:
        Limiter applied to ``POST /send``; built from ``settings`` when
        omitted.

    Returns
    -------
    FastAPI
        A configured application ready to be served by Uvicorn or any ASGI
        server.
    """
    global service
    service = svc
    settings = settings or svc.settings

    api = FastAPI(title="Mail Relay", lifespan=lifespan)
    api.state.settings = settings
    api.state.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
        window_ms=settings.rate_limit_window_ms,
        max_requests=settings.rate_limit_max,
    )

    async def enforce_rate_limit(request: Request) -> None:
        retry_after = await request.app.state.rate_limiter.hit(client_key(request))
        if retry_after is not None:
            raise RateLimitExceeded(retry_after)

    @api.middleware("http")
    async def assign_request_id(request: Request, call_next):
        request.state.request_id = secrets.token_hex(4)
        start = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - start) * 1000
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        logger.info(
            "[%s] %s %s -> %d (%.1f ms)",
            request.state.request_id, request.method, request.url.path, response.status_code, elapsed_ms,
        )
        return response

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors with a uniform error body."""
        details = _validation_details(exc)
        logger.warning("[%s] Validation error on %s %s: %s", _request_id(request), request.method, request.url.path, details)
        return JSONResponse(
            status_code=422,
            content=_error_body("Invalid request payload", details),
        )

    @api.exception_handler(SmtpSendError)
    async def smtp_exception_handler(request: Request, exc: SmtpSendError):
        logger.error("[%s] SMTP send failed (%s): %s", _request_id(request), exc.kind.value, exc)
        details = str(exc) if request.app.state.settings.is_development else None
        return JSONResponse(status_code=exc.status, content=_error_body(exc.public_message, details))

    @api.exception_handler(RateLimitExceeded)
    async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=_error_body("Too many requests, please try again later", retryAfter=exc.retry_after),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @api.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return JSONResponse(
                status_code=404,
                content=_error_body("Endpoint not found", availableEndpoints=AVAILABLE_ENDPOINTS),
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @api.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("[%s] Unhandled error on %s %s", _request_id(request), request.method, request.url.path)
        return JSONResponse(status_code=500, content=_error_body("Internal server error"))

    @api.get("/health")
    async def health():
        """Health check endpoint for container orchestration and load balancers.

        Returns:
            dict: Simple status object with ``{"status": "ok"}``.
        """
        return {"status": "ok"}

    @api.post(
        "/send",
        response_model=SendResponse,
        responses={
            401: {"model": ErrorResponse},
            422: {"model": ErrorResponse},
            429: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
            502: {"model": ErrorResponse},
        },
        dependencies=[Depends(enforce_rate_limit)],
    )
    async def send(request: Request, payload: SendRequest) -> SendResponse:
        """Send one message through the configured SMTP server."""
        relay = get_service()
        logger.info("[%s] Send requested to %s", _request_id(request), ", ".join(str(a) for a in payload.to))
        result = await relay.send(SendParams.from_request(payload))
        return SendResponse(
            message_id=result.message_id,
            accepted=result.accepted,
            rejected=result.rejected,
        )

    return api
