from __future__ import annotations

from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient

from restored_relay.config import Settings
from restored_relay.errors import ModelListingUnsupportedError
from restored_relay.main import create_app


class StubProvider:
    """In-memory stand-in for the Gemini client that records every call."""

    model_name = "stub-model"

    def __init__(
        self,
        output: str = "pong",
        error: Exception | None = None,
        models: list[str] | None = None,
        list_error: Exception | None = None,
        listing_supported: bool = True,
    ) -> None:
        self.output = output
        self.error = error
        self.models = models if models is not None else ["gemini-1.5-flash", "gemini-2.0-flash-exp"]
        self.list_error = list_error
        self.listing_supported = listing_supported
        self.calls: list[tuple[str, str | None]] = []
        self.list_calls = 0

    def generate(self, prompt: str, system_instruction: str | None = None) -> str:
        self.calls.append((prompt, system_instruction))
        if self.error is not None:
            raise self.error
        return self.output

    def list_models(self) -> list[str]:
        self.list_calls += 1
        if not self.listing_supported:
            raise ModelListingUnsupportedError()
        if self.list_error is not None:
            raise self.list_error
        return list(self.models)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "gemini_api_key": "test-key",
        "generative_model": "stub-model",
        "app_env": "test",
        "tz": "UTC",
        "log_level": "INFO",
        "log_dir": None,
        "trust_proxy": False,
        "list_models_on_startup": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def build_client(provider: StubProvider, clock: FakeClock) -> Callable[..., TestClient]:
    def _build(stub: StubProvider | None = None, **overrides: Any) -> TestClient:
        app = create_app(make_settings(**overrides), provider=stub or provider, clock=clock)
        return TestClient(app)

    return _build


@pytest.fixture
def client(build_client: Callable[..., TestClient]) -> TestClient:
    return build_client()
