"""Custom FastAPI middleware for logging context and API-wide rate limiting."""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from restored_relay import logging_conf
from restored_relay.rate_limit import SlidingWindowLimiter, client_address

access_logger = logging.getLogger("restored_relay.access")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach a request identifier to each HTTP request and log its outcome."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        incoming_request_id = (request.headers.get("X-Request-ID") or "").strip()
        request_id = incoming_request_id or uuid.uuid4().hex
        logging_conf.set_request_id(request_id)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001 - rendered as a 500 that keeps the request id
            access_logger.error(
                "unhandled error on %s [%s] %s [request_id=%s]",
                request.url.path,
                exc.__class__.__name__,
                exc,
                request_id,
                exc_info=True,
            )
            response = internal_error_response(request_id)
        else:
            status_code = response.status_code
        finally:
            access_logger.info(
                "%s %s %d",
                request.method,
                request.url.path,
                status_code,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                    "ip": client_address(request, _trust_proxy(request)),
                },
            )
            logging_conf.set_request_id(None)

        response.headers["X-Request-ID"] = request_id
        return response


class ApiRateLimitMiddleware(BaseHTTPMiddleware):
    """Apply the general API limiter to every path under ``prefix``."""

    def __init__(self, app: ASGIApp, prefix: str = "/api/") -> None:
        super().__init__(app)
        self.prefix = prefix

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not request.url.path.startswith(self.prefix) or request.method == "OPTIONS":
            return await call_next(request)

        limiter: SlidingWindowLimiter = request.app.state.api_limiter
        key = client_address(request, _trust_proxy(request))
        decision = limiter.hit(key)
        if not decision.allowed:
            access_logger.warning(
                "rate limit exceeded",
                extra={"limiter": limiter.name, "ip": key, "path": request.url.path},
            )
            headers = decision.headers()
            headers["Retry-After"] = headers["RateLimit-Reset"]
            return JSONResponse(
                status_code=429, content={"error": limiter.message}, headers=headers
            )

        response = await call_next(request)
        response.headers.update(decision.headers())
        return response


def _trust_proxy(request: Request) -> bool:
    return bool(getattr(request.app.state.settings, "trust_proxy", False))


def get_request_id_from_context() -> str | None:
    """Retrieve the current request identifier from the logging context."""

    return logging_conf.get_log_context().get("request_id")


def internal_error_response(request_id: str | None) -> JSONResponse:
    """Build the sanitized 500 body returned for unhandled errors."""

    response = JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error", "request_id": request_id},
    )
    if request_id:
        response.headers["X-Request-ID"] = request_id
    return response
