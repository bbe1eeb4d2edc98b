"""Point-in-time process health snapshot."""

from __future__ import annotations

import os
import platform
import sys
from datetime import datetime, timezone
from pathlib import Path

from restored_relay.config import Settings
from restored_relay.models.dto import HealthResponse, MemoryUsage

_MB = 1024 * 1024
_STATM = Path("/proc/self/statm")


def _peak_rss_bytes() -> int:
    try:
        import resource
    except ImportError:  # not available on Windows
        return 0
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is kilobytes on Linux and bytes on macOS.
    return peak if sys.platform == "darwin" else peak * 1024


def _current_rss_bytes() -> int:
    try:
        resident_pages = int(_STATM.read_text().split()[1])
    except (OSError, IndexError, ValueError):
        return _peak_rss_bytes()
    return resident_pages * os.sysconf("SC_PAGE_SIZE")


def _format_mb(value: int) -> str:
    return f"{round(value / _MB)} MB"


def build_health_snapshot(
    settings: Settings,
    *,
    uptime: float,
    version: str,
    model_name: str | None = None,
) -> HealthResponse:
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime=round(uptime, 3),
        environment=settings.app_env,
        memory=MemoryUsage(
            rss=_format_mb(_current_rss_bytes()),
            peak=_format_mb(_peak_rss_bytes()),
        ),
        apiKey="configured" if settings.api_key_configured else "missing",
        model=model_name or settings.generative_model,
        rateLimiting="active",
        version=version,
        pythonVersion=sys.version.split()[0],
        platform=platform.platform(),
    )
