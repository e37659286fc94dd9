from __future__ import annotations

from typing import Literal

from fastapi import Request
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest


# Fixed bucket boundaries; never derived from observed data.
HTTP_DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
SEARCH_RESULT_BUCKETS = (0, 1, 5, 10, 25, 50)

ItemOperation = Literal["read", "create"]
ItemOutcome = Literal["success", "bad_request", "not_found"]

_ITEM_OPERATIONS = frozenset({"read", "create"})
_ITEM_OUTCOMES = frozenset({"success", "bad_request", "not_found"})
_HTTP_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "CONNECT"})


def normalize_method(method: str | None) -> str:
    # Clients control the method token; anything non-standard shares one label value.
    upper = (method or "").upper()
    return upper if upper in _HTTP_METHODS else "OTHER"


class AppMetrics:
    """Process-wide metric series in a dedicated registry.

    prometheus_client guards every child metric with its own lock, so ``inc`` and
    ``observe`` are atomic and callers never synchronize.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()

        self.http_requests_total = Counter(
            "http_requests_total",
            "Total number of HTTP requests",
            labelnames=["method", "route", "status"],
            registry=self.registry,
        )
        self.http_request_duration_seconds = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            labelnames=["method", "route"],
            buckets=HTTP_DURATION_BUCKETS,
            registry=self.registry,
        )
        self.item_operations_total = Counter(
            "item_operations_total",
            "Total number of item operations",
            labelnames=["operation", "status"],
            registry=self.registry,
        )
        self.search_requests_total = Counter(
            "search_requests_total",
            "Total number of search requests",
            registry=self.registry,
        )
        self.search_results_count = Histogram(
            "search_results_count",
            "Histogram of the number of results returned by search",
            buckets=SEARCH_RESULT_BUCKETS,
            registry=self.registry,
        )

    def observe_http_request(self, *, method: str, route: str, status: int, duration_s: float) -> None:
        method_label = normalize_method(method)
        self.http_request_duration_seconds.labels(method=method_label, route=route).observe(max(duration_s, 0.0))
        self.http_requests_total.labels(method=method_label, route=route, status=str(status)).inc()

    def record_item_operation(self, operation: ItemOperation, status: ItemOutcome) -> None:
        if operation not in _ITEM_OPERATIONS or status not in _ITEM_OUTCOMES:
            raise ValueError(f"Unsupported item operation labels: {operation!r}/{status!r}")
        self.item_operations_total.labels(operation=operation, status=status).inc()

    def record_search_request(self) -> None:
        self.search_requests_total.inc()

    def record_search_results(self, result_count: int) -> None:
        self.search_results_count.observe(float(result_count))

    def render(self) -> tuple[bytes, str]:
        """Text exposition of every series, plus its content type."""

        return generate_latest(self.registry), CONTENT_TYPE_LATEST

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of one sample (0.0 when it has not been observed yet)."""

        value = self.registry.get_sample_value(name, labels or {})
        return 0.0 if value is None else value


def get_metrics(request: Request) -> AppMetrics:
    # Built once in create_app and shared by every request.
    return request.app.state.metrics
