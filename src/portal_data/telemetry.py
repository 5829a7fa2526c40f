"""
Tracing helpers.

Spans are created through the OpenTelemetry API only. Without an SDK
installed and configured by the host process, the API hands out non-recording
spans, so instrumentation costs nothing in tests and local runs.
"""

from __future__ import annotations

import os
from typing import Any

from opentelemetry import trace


class _NoOpSpan:
    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def __enter__(self) -> _NoOpSpan:
        return self

    def __exit__(self, *args: Any) -> None:
        pass


class _NoOpTracer:
    def start_as_current_span(self, name: str, **kwargs: Any) -> _NoOpSpan:
        return _NoOpSpan()


def _is_telemetry_disabled_by_env() -> bool:
    """Check if telemetry is disabled via environment variable."""
    telemetry_enabled = os.getenv("PORTAL_TELEMETRY_ENABLED", "true").lower()
    return telemetry_enabled in ("false", "0", "no", "off")


def get_tracer(name: str = "portal_data") -> Any:
    """
    Get a tracer for creating spans.

    Args:
        name: Tracer name (typically module or component name)

    Returns:
        OpenTelemetry Tracer, or a no-op tracer when disabled
    """
    if _is_telemetry_disabled_by_env():
        return _NoOpTracer()
    return trace.get_tracer(name)
