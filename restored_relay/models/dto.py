"""Data transfer objects for the relay API."""

from typing import Any

from pydantic import BaseModel, ConfigDict


class GenerateRequest(BaseModel):
    """Request body for ``POST /api/generate``.

    Fields are loosely typed on purpose; the relay validates them itself so a
    bad prompt yields the documented 400 payload instead of a schema error.
    """

    model_config = ConfigDict(extra="ignore")

    prompt: Any = None
    systemInstruction: Any = None


class GenerateResponse(BaseModel):
    output: str


class ModelsResponse(BaseModel):
    models: list[str]


class ErrorResponse(BaseModel):
    error: str
    details: str | None = None


class MemoryUsage(BaseModel):
    rss: str
    peak: str


class HealthResponse(BaseModel):
    """Response model for the `/health` endpoint."""

    status: str
    timestamp: str
    uptime: float
    environment: str
    memory: MemoryUsage
    apiKey: str
    model: str
    rateLimiting: str
    version: str
    pythonVersion: str
    platform: str
