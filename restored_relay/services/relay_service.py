"""Validation, forwarding and error translation for generation requests."""

from __future__ import annotations

import logging
import time
from typing import Any

from starlette.concurrency import run_in_threadpool

from restored_relay.errors import (
    MISSING_KEY_MESSAGE,
    InvalidPromptError,
    MissingCredentialError,
    ModelListingFailedError,
    ModelListingUnsupportedError,
    PromptTooLongError,
    ProviderError,
    ProviderFailureError,
    ProviderModelNotFoundError,
    ProviderQuotaError,
    sanitize_message,
)
from restored_relay.services.provider import TextProvider

LOGGER = logging.getLogger(__name__)

_QUOTA_TOKENS = ("429", "quota", "resource exhausted", "resource_exhausted", "rate limit")
_NOT_FOUND_TOKENS = ("not found", "404")


def _status_of(exc: BaseException) -> int | None:
    """Dig an HTTP-ish status code out of an SDK exception, if it carries one."""

    for candidate in (
        getattr(exc, "status_code", None),
        getattr(exc, "code", None),
        getattr(exc, "status", None),
        getattr(getattr(exc, "response", None), "status_code", None),
        getattr(getattr(exc, "response", None), "status", None),
    ):
        if isinstance(candidate, int) and 100 <= candidate < 600:
            return int(candidate)
    return None


def classify_provider_error(exc: BaseException) -> ProviderError:
    """Map a raw provider exception onto the caller-facing error taxonomy."""

    status = _status_of(exc)
    if status is None:
        # Message tokens only stand in for a missing status.
        lowered = str(exc).lower()
        if any(token in lowered for token in _QUOTA_TOKENS):
            status = 429
        elif any(token in lowered for token in _NOT_FOUND_TOKENS):
            status = 404

    if status == 429:
        return ProviderQuotaError()
    if status == 404:
        return ProviderModelNotFoundError(sanitize_message(exc))
    return ProviderFailureError(sanitize_message(exc))


def validate_generation_input(
    prompt: Any, system_instruction: Any, max_prompt_length: int
) -> tuple[str, str | None]:
    """Return the cleaned ``(prompt, system_instruction)`` pair or raise."""

    if not isinstance(prompt, str) or not prompt:
        raise InvalidPromptError()
    if len(prompt) > max_prompt_length:
        raise PromptTooLongError(max_prompt_length)
    if system_instruction is not None and not isinstance(system_instruction, str):
        raise InvalidPromptError(error="Invalid system instruction")
    return prompt, system_instruction or None


class RelayService:
    """Forward validated generation requests to the configured provider.

    ``provider`` is ``None`` when no credential is configured; requests still
    pass validation and then fail fast with :class:`MissingCredentialError`.
    """

    def __init__(self, provider: TextProvider | None, max_prompt_length: int) -> None:
        self._provider = provider
        self.max_prompt_length = max_prompt_length

    @property
    def configured(self) -> bool:
        return self._provider is not None

    @property
    def model_name(self) -> str | None:
        return self._provider.model_name if self._provider is not None else None

    async def generate(
        self, prompt: Any, system_instruction: Any = None, client_ip: str | None = None
    ) -> str:
        prompt, system_instruction = validate_generation_input(
            prompt, system_instruction, self.max_prompt_length
        )
        LOGGER.info(
            "ai generation request",
            extra={
                "ip": client_ip,
                "prompt_length": len(prompt),
                "has_system_instruction": system_instruction is not None,
            },
        )

        if self._provider is None:
            LOGGER.error(
                "generation error",
                extra={"kind": "missing_credential", "status_code": 500, "ip": client_ip},
            )
            raise MissingCredentialError()

        provider = self._provider
        started = time.perf_counter()
        try:
            text = await run_in_threadpool(provider.generate, prompt, system_instruction)
        except Exception as exc:  # noqa: BLE001 - every provider failure is translated
            translated = classify_provider_error(exc)
            LOGGER.error(
                "generation error",
                extra={
                    "kind": translated.kind,
                    "status_code": translated.status_code,
                    "error": str(exc),
                    "error_type": exc.__class__.__name__,
                    "ip": client_ip,
                    "model": provider.model_name,
                },
                exc_info=True,
            )
            raise translated from exc

        duration_ms = int((time.perf_counter() - started) * 1000)
        LOGGER.info(
            "generation successful",
            extra={
                "ip": client_ip,
                "duration_ms": duration_ms,
                "output_length": len(text),
                "model": provider.model_name,
            },
        )
        return text

    async def list_models(self) -> list[str]:
        if self._provider is None:
            raise MissingCredentialError(error=MISSING_KEY_MESSAGE)

        try:
            models = await run_in_threadpool(self._provider.list_models)
        except ModelListingUnsupportedError:
            LOGGER.info("model listing not available on this provider client")
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.error(
                "model listing failed",
                extra={"error": str(exc), "error_type": exc.__class__.__name__},
                exc_info=True,
            )
            raise ModelListingFailedError(sanitize_message(exc)) from exc

        LOGGER.debug("model listing returned %d model(s)", len(models))
        return models
