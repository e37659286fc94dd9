from __future__ import annotations

from time import perf_counter
from typing import Any, Callable, Iterable

from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode, Tracer, format_trace_id
from starlette.datastructures import MutableHeaders

from app.observability.context import (
    RequestContext,
    attach_request_context,
    request_context_from_scope,
    route_template,
)
from app.observability.logging import bind_request_logger, get_logger
from app.observability.metrics import AppMetrics
from app.observability.tracing import extract_parent_context, headers_carrier


class TracingMiddleware:
    """Outermost stage: opens the request span and the RequestContext.

    Continues the caller's trace when a valid ``traceparent`` arrives, otherwise starts
    a new root span. The span is ended exactly once, after every inner stage has run.
    """

    def __init__(self, app: Callable[..., Any], tracer: Tracer | None = None) -> None:
        self.app = app
        self.tracer = tracer if tracer is not None else trace.NoOpTracer()

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "")
        parent = extract_parent_context(headers_carrier(scope.get("headers") or []))
        span = self.tracer.start_span(
            method,
            context=parent,
            kind=SpanKind.SERVER,
            attributes={
                "http.request.method": method,
                "url.path": scope.get("path", ""),
            },
        )

        request_context = RequestContext(span=span)
        attach_request_context(scope, request_context)
        token = otel_context.attach(trace.set_span_in_context(span, parent))
        status_code: int = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                span_context = span.get_span_context()
                if span_context.is_valid:
                    headers = MutableHeaders(scope=message)
                    headers["X-Trace-ID"] = format_trace_id(span_context.trace_id)

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            span.record_exception(exc)
            raise
        finally:
            route = route_template(scope)
            request_context.route = route
            span.update_name(f"{method} {route}")
            span.set_attribute("http.route", route)
            span.set_attribute("http.response.status_code", status_code)
            if status_code >= 500:
                span.set_status(Status(StatusCode.ERROR))
            span.end()
            otel_context.detach(token)


class LoggerBindingMiddleware:
    """Binds a trace-correlated logger into the RequestContext and writes the access log."""

    def __init__(self, app: Callable[..., Any], base_logger: Any | None = None, access_log: bool = True) -> None:
        self.app = app
        self.base_logger = base_logger if base_logger is not None else get_logger("app")
        self.access_log = access_log

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_context = request_context_from_scope(scope)
        if request_context is None:
            request_context = RequestContext()
            attach_request_context(scope, request_context)
        request_context.logger = bind_request_logger(self.base_logger, request_context.span)

        start = perf_counter()
        status_code: int = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            if self.access_log:
                request_context.logger.info(
                    "http_request",
                    method=scope.get("method"),
                    path=scope.get("path"),
                    route=route_template(scope),
                    status_code=status_code,
                    elapsed_ms=round((perf_counter() - start) * 1000.0, 2),
                )


class MetricsMiddleware:
    """Innermost stage: one duration observation and one counter increment per request.

    Requests to ``exclude_paths`` (the scrape endpoint) are not observed at all.
    """

    def __init__(
        self,
        app: Callable[..., Any],
        metrics: AppMetrics,
        exclude_paths: Iterable[str] = (),
    ) -> None:
        self.app = app
        self.metrics = metrics
        # Scrapes would otherwise show up in the very series they read.
        self._excluded_paths = frozenset(exclude_paths)

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        start = perf_counter()
        status_code: int = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_s = perf_counter() - start
            if scope.get("path") not in self._excluded_paths:
                self.metrics.observe_http_request(
                    method=scope.get("method", ""),
                    route=route_template(scope),
                    status=status_code,
                    duration_s=duration_s,
                )
