from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import structlog
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import Tracer
from structlog.testing import CapturingLogger

from app.config import Settings, get_settings
from app.main import create_app
from app.observability.metrics import AppMetrics


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    # Never reach for a real collector from tests.
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")
    monkeypatch.delenv("LOG_FILE", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def tracer(span_exporter: InMemorySpanExporter) -> Tracer:
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider.get_tracer("tests")


@pytest.fixture
def captured_logs() -> CapturingLogger:
    return CapturingLogger()


@pytest.fixture
def base_logger(captured_logs: CapturingLogger):
    return structlog.wrap_logger(
        captured_logs,
        processors=[structlog.processors.add_log_level, structlog.processors.EventRenamer("message")],
        wrapper_class=structlog.BoundLogger,
        context_class=dict,
    )


@pytest.fixture
def metrics() -> AppMetrics:
    return AppMetrics()


@pytest.fixture
def app(tracer: Tracer, base_logger, metrics: AppMetrics) -> FastAPI:
    return create_app(Settings(), tracer=tracer, base_logger=base_logger, metrics=metrics)


@pytest.fixture
async def api_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def log_lines(captured_logs: CapturingLogger):
    """Captured log lines as dicts (``level`` plus every bound/event field), optionally by event."""

    def _lines(event: str | None = None) -> list[dict]:
        lines = [call.kwargs for call in captured_logs.calls]
        if event is None:
            return lines
        return [line for line in lines if line.get("message") == event]

    return _lines
