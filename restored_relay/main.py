"""FastAPI application entrypoint for the Restored OS relay."""

from __future__ import annotations

import logging
import sys
import time

import uvicorn
from fastapi import Body, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from restored_relay.config import Settings, settings as default_settings
from restored_relay.errors import ModelListingUnsupportedError, RelayError
from restored_relay.health import build_health_snapshot
from restored_relay.logging_conf import configure_logging
from restored_relay.middleware import (
    ApiRateLimitMiddleware,
    RequestContextMiddleware,
    get_request_id_from_context,
    internal_error_response,
)
from restored_relay.models.dto import (
    ErrorResponse,
    GenerateRequest,
    GenerateResponse,
    HealthResponse,
    ModelsResponse,
)
from restored_relay.rate_limit import (
    API_LIMIT_MESSAGE,
    GENERATION_LIMIT_MESSAGE,
    Clock,
    SlidingWindowLimiter,
    client_address,
)
from restored_relay.services.provider import GeminiProvider, TextProvider
from restored_relay.services.relay_service import RelayService

logger = logging.getLogger(__name__)

APP_TITLE = "Restored OS Relay"
APP_VERSION = "1.0.0"
LIVENESS_TEXT = "Restored OS Relay Online. Uplink Established."


def get_relay_service(request: Request) -> RelayService:
    return request.app.state.relay


def get_client_ip(request: Request) -> str:
    return client_address(request, request.app.state.settings.trust_proxy)


def enforce_generation_limit(request: Request, client_ip: str = Depends(get_client_ip)) -> None:
    """Count the call against the generation window before the body is read."""

    request.app.state.generation_limiter.check(client_ip)


def create_app(
    settings: Settings | None = None,
    provider: TextProvider | None = None,
    clock: Clock = time.monotonic,
) -> FastAPI:
    """Build the relay application with its process-scoped state.

    ``provider`` overrides the Gemini client (tests pass a stub). It is only
    used when the settings carry a credential, so the health report and the
    generation path always agree on whether the relay is configured.
    """

    settings = settings or default_settings
    configure_logging(
        settings.effective_log_level,
        tz=settings.tz,
        env=settings.app_env,
        log_dir=settings.log_dir,
    )

    if not settings.api_key_configured:
        provider = None
    elif provider is None:
        provider = GeminiProvider(settings.gemini_api_key, settings.generative_model)

    app = FastAPI(
        title=APP_TITLE,
        version=APP_VERSION,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.clock = clock
    app.state.started_at = clock()
    app.state.relay = RelayService(provider, settings.max_prompt_length)
    app.state.api_limiter = SlidingWindowLimiter(
        "api",
        settings.api_rate_limit_max,
        settings.api_rate_limit_window_seconds,
        API_LIMIT_MESSAGE,
        clock=clock,
    )
    app.state.generation_limiter = SlidingWindowLimiter(
        "generation",
        settings.generation_rate_limit_max,
        settings.generation_rate_limit_window_seconds,
        GENERATION_LIMIT_MESSAGE,
        clock=clock,
    )

    # Last added runs first: CORS, then request context, then the API limiter.
    app.add_middleware(ApiRateLimitMiddleware, prefix="/api/")
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID", "RateLimit-Limit", "RateLimit-Remaining", "RateLimit-Reset"],
    )

    _register_events(app)
    _register_exception_handlers(app)
    _register_routes(app)
    return app


def _register_events(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        """Emit an informative startup banner and probe the provider."""

        settings: Settings = app.state.settings
        relay: RelayService = app.state.relay
        logger.info(
            "%s v%s (env=%s, model=%s, python=%s, structured_logging=true)",
            app.title,
            app.version,
            settings.app_env,
            settings.generative_model,
            sys.version.split()[0],
        )
        if not relay.configured:
            logger.error("CRITICAL: GEMINI_API_KEY is missing; generation is disabled")
            return

        logger.info(
            "API key loaded",
            extra={"key_length": len(settings.gemini_api_key or "")},
        )
        if not settings.list_models_on_startup:
            return
        try:
            models = await relay.list_models()
        except ModelListingUnsupportedError:
            logger.info("model listing not available on this SDK version")
        except RelayError as exc:
            logger.warning("could not list models at startup", extra={"error": exc.details})
        else:
            logger.info(
                "available models fetched",
                extra={"model_count": len(models), "sample": models[:5]},
            )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        """Log when the application is shutting down."""

        logger.info("application shutdown")


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        """Render a relay error as its sanitized JSON payload."""

        request_id = get_request_id_from_context()
        response = JSONResponse(
            status_code=exc.status_code,
            content=exc.to_payload(),
            headers=exc.headers,
        )
        if request_id:
            response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Return a 400 JSON error when the request body cannot be parsed."""

        request_id = get_request_id_from_context()
        errors = exc.errors()
        logger.warning(
            "validation error on %s (%d issue(s)) [request_id=%s]",
            request.url.path,
            len(errors),
            request_id,
        )
        response = JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_encoder(errors)},
        )
        if request_id:
            response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for errors raised outside the request-context middleware."""

        request_id = get_request_id_from_context() or (
            request.headers.get("X-Request-ID") or ""
        ).strip() or None
        logger.error(
            "unhandled error on %s [%s] %s [request_id=%s]",
            request.url.path,
            exc.__class__.__name__,
            exc,
            request_id,
            exc_info=True,
        )
        return internal_error_response(request_id)


def _register_routes(app: FastAPI) -> None:
    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return LIVENESS_TEXT

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        """Return uptime, memory and configuration presence."""

        state = request.app.state
        logger.debug("health check requested", extra={"ip": get_client_ip(request)})
        return build_health_snapshot(
            state.settings,
            uptime=state.clock() - state.started_at,
            version=APP_VERSION,
            model_name=state.relay.model_name,
        )

    @app.get(
        "/api/models",
        response_model=ModelsResponse,
        responses={500: {"model": ErrorResponse}, 501: {"model": ErrorResponse}},
    )
    async def list_models(relay: RelayService = Depends(get_relay_service)) -> ModelsResponse:
        """List provider models that support text generation."""

        return ModelsResponse(models=await relay.list_models())

    @app.post(
        "/api/generate",
        response_model=GenerateResponse,
        dependencies=[Depends(enforce_generation_limit)],
        responses={
            400: {"model": ErrorResponse},
            429: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
        },
    )
    async def generate(
        body: GenerateRequest | None = Body(default=None),
        relay: RelayService = Depends(get_relay_service),
        client_ip: str = Depends(get_client_ip),
    ) -> GenerateResponse:
        """Forward a prompt to the provider and return its text verbatim."""

        body = body or GenerateRequest()
        output = await relay.generate(body.prompt, body.systemInstruction, client_ip=client_ip)
        return GenerateResponse(output=output)


def run() -> None:
    """Serve the relay with uvicorn using the environment configuration."""

    uvicorn.run(
        "restored_relay.main:create_app",
        factory=True,
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.is_development,
    )


if __name__ == "__main__":
    run()

# Run locally: `uvicorn restored_relay.main:create_app --factory --reload --port 3001`
# Observe logs: `curl -i http://127.0.0.1:3001/health` and
# `curl -i -X POST http://127.0.0.1:3001/api/generate -H 'Content-Type: application/json' -d '{"prompt": "ping"}'`
