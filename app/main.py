from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from opentelemetry.trace import Tracer
from starlette.middleware import Middleware

from app.api.items import router as items_router
from app.api.metrics import METRICS_PATH
from app.api.metrics import router as metrics_router
from app.api.system import router as system_router
from app.config import Settings, get_settings
from app.observability.logging import configure_logging, get_logger
from app.observability.metrics import AppMetrics
from app.observability.middleware import LoggerBindingMiddleware, MetricsMiddleware, TracingMiddleware
from app.observability.tracing import get_tracer, setup_tracing


# Outermost first. Logger binding needs the span; metrics must time only the handler.
PIPELINE_STAGES: tuple[tuple[str, type], ...] = (
    ("tracing", TracingMiddleware),
    ("logger_binding", LoggerBindingMiddleware),
    ("metrics", MetricsMiddleware),
)


def pipeline_stage_names() -> list[str]:
    return [name for name, _ in PIPELINE_STAGES]


def build_pipeline(*, tracer: Tracer, base_logger: Any, metrics: AppMetrics) -> list[Middleware]:
    options: dict[str, dict[str, Any]] = {
        "tracing": {"tracer": tracer},
        "logger_binding": {"base_logger": base_logger},
        "metrics": {"metrics": metrics, "exclude_paths": (METRICS_PATH,)},
    }
    return [Middleware(stage, **options[name]) for name, stage in PIPELINE_STAGES]


def create_app(
    settings: Settings | None = None,
    *,
    tracer: Tracer | None = None,
    base_logger: Any | None = None,
    metrics: AppMetrics | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    # Raises when the log file cannot be opened: never run without the log sink.
    configure_logging(level=settings.log_level, log_file=settings.log_path)
    log = get_logger("app")

    provider = None
    if tracer is None:
        provider = setup_tracing(settings)
        tracer = get_tracer(provider, settings.service_name)

    metrics = metrics if metrics is not None else AppMetrics()
    base_logger = base_logger if base_logger is not None else log

    app = FastAPI(
        title="Observability Demo",
        version="1.0",
        middleware=build_pipeline(tracer=tracer, base_logger=base_logger, metrics=metrics),
    )
    app.state.settings = settings
    app.state.metrics = metrics
    app.state.tracer_provider = provider

    app.include_router(metrics_router)
    app.include_router(system_router)
    app.include_router(items_router)

    @app.on_event("startup")
    def _startup() -> None:
        log.info("startup", service=settings.service_name, port=settings.port)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        # Flushes whatever spans are still buffered.
        if provider is not None:
            provider.shutdown()
        log.info("shutdown")

    return app
