"""Error taxonomy for the relay.

Every error a caller may see derives from :class:`RelayError`, which carries
the HTTP status and the sanitized ``error``/``details`` pair that ends up in
the JSON body. Full provider messages and tracebacks stay in the logs.
"""

from __future__ import annotations

from typing import Any

MISSING_KEY_MESSAGE = "Server missing API Key. Check GEMINI_API_KEY."
QUOTA_ADVICE = (
    "Gemini returned 429. Check billing/quotas for the GEMINI_API_KEY or switch "
    "to a lower-cost model (e.g., gemini-1.5-flash)."
)
MODEL_NOT_FOUND_SUGGESTION = (
    "Model not found for this API/version. Call GET /api/models to see the "
    "supported models, or set a supported model via the GENERATIVE_MODEL env var."
)
_MAX_DETAIL_CHARS = 500


def sanitize_message(exc: BaseException | str) -> str:
    """Return the first line of an error message, truncated for callers."""

    text = exc if isinstance(exc, str) else (str(exc) or exc.__class__.__name__)
    first_line = text.strip().splitlines()[0] if text.strip() else ""
    if len(first_line) > _MAX_DETAIL_CHARS:
        first_line = first_line[: _MAX_DETAIL_CHARS - 3] + "..."
    return first_line


class RelayError(Exception):
    """Base class for errors that map onto a JSON error response."""

    status_code: int = 500
    error: str = "Internal Server Error"

    def __init__(
        self,
        details: str | None = None,
        *,
        error: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        if error is not None:
            self.error = error
        self.details = details
        self.headers = headers or {}
        super().__init__(details or self.error)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class InvalidPromptError(RelayError):
    status_code = 400
    error = "Invalid prompt"


class PromptTooLongError(InvalidPromptError):
    def __init__(self, max_length: int) -> None:
        super().__init__(error=f"Prompt too long (max {max_length:,} characters)")
        self.max_length = max_length


class RateLimitExceeded(RelayError):
    status_code = 429

    def __init__(self, message: str, retry_after: float) -> None:
        seconds = max(1, int(retry_after + 0.999))
        super().__init__(error=message, headers={"Retry-After": str(seconds)})
        self.retry_after = retry_after


class MissingCredentialError(RelayError):
    status_code = 500
    error = "AI Generation Failed"

    def __init__(self, error: str | None = None) -> None:
        if error is None:
            super().__init__(MISSING_KEY_MESSAGE)
        else:
            super().__init__(error=error)


class ProviderError(RelayError):
    """Raised when the upstream provider call fails."""

    kind = "failure"
    error = "AI Generation Failed"


class ProviderQuotaError(ProviderError):
    kind = "quota"
    status_code = 429
    error = "Rate limited or quota exceeded"

    def __init__(self) -> None:
        super().__init__(QUOTA_ADVICE)


class ProviderModelNotFoundError(ProviderError):
    kind = "not_found"

    def __init__(self, message: str) -> None:
        super().__init__(f"{message} | SUGGESTION: {MODEL_NOT_FOUND_SUGGESTION}")


class ProviderFailureError(ProviderError):
    kind = "failure"


class ModelListingUnsupportedError(RelayError):
    status_code = 501
    error = "listModels not supported by the provider client"


class ModelListingFailedError(RelayError):
    status_code = 500
    error = "Model listing failed"
