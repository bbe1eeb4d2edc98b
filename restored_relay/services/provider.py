"""Gemini text generation behind a narrow provider interface."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol

import google.generativeai as genai

from restored_relay.errors import ModelListingUnsupportedError

LOGGER = logging.getLogger(__name__)

GENERATE_METHOD = "generateContent"
_MODEL_PREFIX = "models/"


class TextProvider(Protocol):
    """What the relay needs from a text-generation backend."""

    model_name: str

    def generate(self, prompt: str, system_instruction: str | None = None) -> str:
        ...

    def list_models(self) -> list[str]:
        ...


def _strip_prefix(name: str) -> str:
    return name[len(_MODEL_PREFIX):] if name.startswith(_MODEL_PREFIX) else name


def _model_name(model: Any) -> str:
    if isinstance(model, dict):
        return str(model.get("name") or model.get("model") or "")
    return str(getattr(model, "name", None) or getattr(model, "model", None) or "")


def _supported_methods(model: Any) -> list[str]:
    if isinstance(model, dict):
        methods = model.get("supported_generation_methods") or model.get(
            "supportedGenerationMethods"
        )
    else:
        methods = getattr(model, "supported_generation_methods", None) or getattr(
            model, "supportedGenerationMethods", None
        )
    if isinstance(methods, (list, tuple, set)):
        return [str(method) for method in methods]
    return []


def filter_generation_models(models: Iterable[Any]) -> list[str]:
    """Return bare names of the models that advertise ``generateContent``."""

    names: list[str] = []
    for model in models:
        if GENERATE_METHOD not in _supported_methods(model):
            continue
        name = _strip_prefix(_model_name(model))
        if name:
            names.append(name)
    return names


class GeminiProvider:
    """:class:`TextProvider` backed by the ``google.generativeai`` SDK."""

    def __init__(self, api_key: str, model_name: str) -> None:
        # Configuring the SDK does not trigger outbound requests.
        genai.configure(api_key=api_key)
        self.model_name = model_name

    def generate(self, prompt: str, system_instruction: str | None = None) -> str:
        model = genai.GenerativeModel(
            self.model_name, system_instruction=system_instruction or None
        )
        response = model.generate_content(prompt)
        return response.text

    def list_models(self) -> list[str]:
        list_fn = getattr(genai, "list_models", None)
        if not callable(list_fn):
            raise ModelListingUnsupportedError()
        return filter_generation_models(list_fn())
