from __future__ import annotations

import asyncio
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from opentelemetry.trace import StatusCode

from app.main import PIPELINE_STAGES, pipeline_stage_names
from app.observability.context import request_context_from_scope
from app.observability.metrics import AppMetrics
from app.observability.middleware import LoggerBindingMiddleware, MetricsMiddleware, TracingMiddleware


def _chain(downstream, *, tracer, base_logger, metrics: AppMetrics):
    return TracingMiddleware(
        LoggerBindingMiddleware(MetricsMiddleware(downstream, metrics=metrics), base_logger=base_logger),
        tracer=tracer,
    )


def _scope(path: str = "/probe") -> dict[str, Any]:
    return {"type": "http", "method": "GET", "path": path, "headers": []}


async def _receive() -> dict[str, Any]:
    return {"type": "http.request", "body": b"", "more_body": False}


def test_pipeline_order_is_declared() -> None:
    assert pipeline_stage_names() == ["tracing", "logger_binding", "metrics"]
    assert [stage for _, stage in PIPELINE_STAGES] == [TracingMiddleware, LoggerBindingMiddleware, MetricsMiddleware]


def test_app_installs_stages_outermost_first(app) -> None:
    installed = [m.cls for m in app.user_middleware]
    assert installed == [TracingMiddleware, LoggerBindingMiddleware, MetricsMiddleware]


async def test_handler_sees_span_and_bound_logger(tracer, base_logger, metrics) -> None:
    seen: dict[str, Any] = {}
    calls = 0

    async def handler(scope, receive, send) -> None:
        nonlocal calls
        calls += 1
        context = request_context_from_scope(scope)
        seen["span_valid"] = context.span.get_span_context().is_valid
        seen["logger_is_base"] = context.logger is base_logger
        await send({"type": "http.response.start", "status": 204, "headers": []})
        await send({"type": "http.response.body", "body": b""})

    sent: list[dict[str, Any]] = []

    async def send(message) -> None:
        sent.append(message)

    await _chain(handler, tracer=tracer, base_logger=base_logger, metrics=metrics)(_scope(), _receive, send)

    assert calls == 1
    assert seen == {"span_valid": True, "logger_is_base": False}
    assert sent[0]["status"] == 204
    assert metrics.sample("http_requests_total", {"method": "GET", "route": "unmatched", "status": "204"}) == 1


async def test_post_processing_runs_when_handler_raises(tracer, base_logger, metrics, span_exporter) -> None:
    async def handler(scope, receive, send) -> None:
        raise RuntimeError("boom")

    chain = _chain(handler, tracer=tracer, base_logger=base_logger, metrics=metrics)
    async with AsyncClient(transport=ASGITransport(app=chain), base_url="http://test") as client:
        with pytest.raises(RuntimeError):
            await client.get("/probe")

    assert metrics.sample("http_requests_total", {"method": "GET", "route": "unmatched", "status": "500"}) == 1
    assert metrics.sample("http_request_duration_seconds_count", {"method": "GET", "route": "unmatched"}) == 1

    (span,) = span_exporter.get_finished_spans()
    assert span.status.status_code == StatusCode.ERROR
    assert any(event.name == "exception" for event in span.events)


async def test_post_processing_runs_when_request_is_cancelled(tracer, base_logger, metrics, span_exporter) -> None:
    async def handler(scope, receive, send) -> None:
        await send({"type": "http.response.start", "status": 200, "headers": []})
        raise asyncio.CancelledError()

    async def send(message) -> None:
        return None

    chain = _chain(handler, tracer=tracer, base_logger=base_logger, metrics=metrics)
    with pytest.raises(asyncio.CancelledError):
        await chain(_scope(), _receive, send)

    # Partial status is what gets recorded.
    assert metrics.sample("http_requests_total", {"method": "GET", "route": "unmatched", "status": "200"}) == 1
    assert len(span_exporter.get_finished_spans()) == 1


async def test_logger_binding_stage_works_without_tracing(base_logger) -> None:
    seen: dict[str, Any] = {}

    async def handler(scope, receive, send) -> None:
        seen["logger"] = request_context_from_scope(scope).logger
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b""})

    async def send(message) -> None:
        return None

    await LoggerBindingMiddleware(handler, base_logger=base_logger, access_log=False)(_scope(), _receive, send)
    assert seen["logger"] is base_logger


async def test_non_http_scopes_pass_through(tracer, base_logger, metrics, span_exporter) -> None:
    received: list[dict[str, Any]] = []

    async def lifespan_app(scope, receive, send) -> None:
        received.append(scope)

    chain = _chain(lifespan_app, tracer=tracer, base_logger=base_logger, metrics=metrics)
    scope = {"type": "lifespan"}
    await chain(scope, _receive, lambda message: None)

    assert received == [scope]
    assert span_exporter.get_finished_spans() == ()
    body, _ = metrics.render()
    assert b"http_requests_total{" not in body


async def test_concurrent_requests_keep_separate_contexts(api_client, span_exporter, log_lines) -> None:
    await asyncio.gather(*(api_client.get(f"/items/{i}") for i in (1, 2, 3, 1, 2, 3)))

    spans = span_exporter.get_finished_spans()
    assert len(spans) == 6
    span_ids = {format(s.context.span_id, "016x") for s in spans}

    retrieved = log_lines("item_retrieved")
    assert len(retrieved) == 6
    assert {line["span_id"] for line in retrieved} == span_ids
