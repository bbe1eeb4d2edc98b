from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from restored_relay.errors import (
    InvalidPromptError,
    MissingCredentialError,
    PromptTooLongError,
    ProviderFailureError,
    ProviderModelNotFoundError,
    ProviderQuotaError,
    sanitize_message,
)
from restored_relay.services.relay_service import (
    RelayService,
    classify_provider_error,
    validate_generation_input,
)
from conftest import StubProvider


class _CodedError(Exception):
    def __init__(self, message: str, code: int) -> None:
        super().__init__(message)
        self.code = code


@pytest.mark.parametrize(
    "exc, expected",
    [
        (_CodedError("Resource has been exhausted (e.g. check quota).", 429), ProviderQuotaError),
        (RuntimeError("got status 429 from upstream"), ProviderQuotaError),
        (RuntimeError("RESOURCE_EXHAUSTED"), ProviderQuotaError),
        (_CodedError("model gone", 404), ProviderModelNotFoundError),
        (RuntimeError("[404 Not Found] models/foo"), ProviderModelNotFoundError),
        (_CodedError("internal", 500), ProviderFailureError),
        (ValueError("response was blocked by safety filters"), ProviderFailureError),
        (_CodedError("internal error while checking quota", 500), ProviderFailureError),
        (_CodedError("Quota project models/foo not found", 404), ProviderModelNotFoundError),
        (_CodedError("rate limit reached for project", 403), ProviderFailureError),
        (_CodedError("upstream returned 429 earlier", 503), ProviderFailureError),
    ],
)
def test_classify_provider_error(exc: Exception, expected: type) -> None:
    assert isinstance(classify_provider_error(exc), expected)


def test_classify_uses_response_status() -> None:
    exc = RuntimeError("opaque")
    exc.response = SimpleNamespace(status_code=429)  # type: ignore[attr-defined]
    assert isinstance(classify_provider_error(exc), ProviderQuotaError)


def test_sanitize_message_keeps_first_line_only() -> None:
    assert sanitize_message(RuntimeError("first\nsecond")) == "first"
    assert sanitize_message(RuntimeError()) == "RuntimeError"
    long = sanitize_message("x" * 2000)
    assert len(long) == 500
    assert long.endswith("...")


def test_validate_generation_input() -> None:
    assert validate_generation_input("hi", None, 10) == ("hi", None)
    assert validate_generation_input("hi", "", 10) == ("hi", None)
    with pytest.raises(PromptTooLongError):
        validate_generation_input("x" * 11, None, 10)
    with pytest.raises(InvalidPromptError):
        validate_generation_input(b"bytes", None, 10)


def test_service_generate_and_missing_provider() -> None:
    stub = StubProvider(output="done")
    service = RelayService(stub, max_prompt_length=100)
    assert asyncio.run(service.generate("ping", "be brief", client_ip="1.1.1.1")) == "done"
    assert stub.calls == [("ping", "be brief")]
    assert service.configured
    assert service.model_name == "stub-model"

    unconfigured = RelayService(None, max_prompt_length=100)
    assert not unconfigured.configured
    with pytest.raises(MissingCredentialError):
        asyncio.run(unconfigured.generate("ping"))


def test_service_chains_provider_exception() -> None:
    original = _CodedError("quota", 429)
    service = RelayService(StubProvider(error=original), max_prompt_length=100)
    with pytest.raises(ProviderQuotaError) as excinfo:
        asyncio.run(service.generate("ping"))
    assert excinfo.value.__cause__ is original
    assert excinfo.value.status_code == 429
