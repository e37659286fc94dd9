"""OpenTelemetry setup and best-effort span export.

Spans are buffered in a bounded queue and pushed to the collector by one background
thread. Producers never wait on the exporter: when the buffer is full the oldest
unsent span is evicted, and a failed export simply drops its batch.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Mapping, Sequence

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import ReadableSpan, Span, SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SpanExporter, SpanExportResult
from opentelemetry.trace import Tracer
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from app.config import Settings
from app.observability.logging import get_logger


logger = get_logger("app.tracing")

_propagator = TraceContextTextMapPropagator()


def headers_carrier(raw_headers: Sequence[tuple[bytes, bytes]]) -> dict[str, str]:
    """Lower-cased header mapping for the W3C propagator, built from ASGI headers."""

    carrier: dict[str, str] = {}
    for key, value in raw_headers:
        carrier[key.decode("latin-1").lower()] = value.decode("latin-1")
    return carrier


def extract_parent_context(carrier: Mapping[str, str]) -> Context:
    """Upstream trace context from ``traceparent``/``tracestate``.

    Missing or malformed headers yield an empty context, which makes the next span a
    root span with a fresh trace id.
    """

    return _propagator.extract(carrier=carrier)


class DropOldestSpanProcessor(SpanProcessor):
    """Batching span processor with a drop-oldest overflow policy."""

    def __init__(
        self,
        exporter: SpanExporter,
        *,
        max_queue_size: int = 2048,
        max_export_batch_size: int = 512,
        schedule_delay_millis: int = 5000,
    ) -> None:
        if max_queue_size <= 0 or max_export_batch_size <= 0:
            raise ValueError("Queue and batch sizes must be positive")

        self._exporter = exporter
        self._queue: deque[ReadableSpan] = deque(maxlen=max_queue_size)
        self._batch_size = max_export_batch_size
        self._delay_s = max(schedule_delay_millis, 1) / 1000.0
        self._condition = threading.Condition()
        # Serializes exporter calls between the worker and force_flush().
        self._export_lock = threading.Lock()
        self._shutdown = False
        self.dropped_spans = 0

        self._worker = threading.Thread(name="span-export", target=self._run, daemon=True)
        self._worker.start()

    def on_start(self, span: Span, parent_context: Context | None = None) -> None:
        return None

    def on_end(self, span: ReadableSpan) -> None:
        if self._shutdown or not span.context.trace_flags.sampled:
            return

        with self._condition:
            if len(self._queue) == self._queue.maxlen:
                # deque(maxlen=...) evicts from the left on append.
                self.dropped_spans += 1
                if self.dropped_spans == 1 or self.dropped_spans % 1000 == 0:
                    logger.debug("span_buffer_overflow", dropped_spans=self.dropped_spans)
            self._queue.append(span)
            if len(self._queue) >= self._batch_size:
                self._condition.notify()

    def pending(self) -> int:
        with self._condition:
            return len(self._queue)

    def _run(self) -> None:
        while True:
            with self._condition:
                if not self._shutdown and len(self._queue) < self._batch_size:
                    self._condition.wait(self._delay_s)
                stopping = self._shutdown
            self._export_pending()
            if stopping:
                return

    def _take_batch(self) -> list[ReadableSpan]:
        with self._condition:
            size = min(len(self._queue), self._batch_size)
            return [self._queue.popleft() for _ in range(size)]

    def _export_pending(self) -> bool:
        exported_all = True
        with self._export_lock:
            while True:
                batch = self._take_batch()
                if not batch:
                    return exported_all
                exported_all = self._export(batch) and exported_all

    def _export(self, batch: list[ReadableSpan]) -> bool:
        try:
            result = self._exporter.export(batch)
        except Exception as exc:
            logger.debug("span_export_failed", error=str(exc), dropped=len(batch))
            return False
        if result is not SpanExportResult.SUCCESS:
            logger.debug("span_export_failed", result=str(result), dropped=len(batch))
            return False
        return True

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        _ = timeout_millis
        return self._export_pending()

    def shutdown(self) -> None:
        with self._condition:
            if self._shutdown:
                return
            self._shutdown = True
            self._condition.notify_all()
        self._worker.join()
        self._exporter.shutdown()


def _otlp_exporter(endpoint: str) -> SpanExporter:
    # Imported lazily so the grpc stack only loads when the collector is configured.
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

    return OTLPSpanExporter(endpoint=endpoint, insecure=True)


def build_tracer_provider(settings: Settings, exporters: Sequence[SpanExporter]) -> TracerProvider:
    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: settings.service_name}))
    for exporter in exporters:
        provider.add_span_processor(
            DropOldestSpanProcessor(
                exporter,
                max_queue_size=settings.trace_queue_size,
                max_export_batch_size=settings.trace_export_batch_size,
                schedule_delay_millis=settings.trace_export_delay_ms,
            )
        )
    return provider


def setup_tracing(settings: Settings) -> TracerProvider | None:
    """Create and install the process tracer provider.

    Returns ``None`` when tracing is disabled or cannot be initialized; the service
    then runs with a no-op tracer.
    """

    if not settings.tracing_enabled:
        logger.info("tracing_disabled")
        return None

    try:
        exporters: list[SpanExporter] = []
        endpoint = settings.otlp_endpoint.strip()
        if endpoint:
            exporters.append(_otlp_exporter(endpoint))
        if settings.otel_console_export:
            exporters.append(ConsoleSpanExporter())
        provider = build_tracer_provider(settings, exporters)
    except Exception as exc:
        logger.error("tracer_init_failed", error=str(exc), endpoint=settings.otlp_endpoint)
        return None

    trace.set_tracer_provider(provider)
    logger.info("tracer_initialized", endpoint=settings.otlp_endpoint or None)
    return provider


def get_tracer(provider: TracerProvider | None, name: str) -> Tracer:
    if provider is None:
        return trace.NoOpTracer()
    return provider.get_tracer(name)
