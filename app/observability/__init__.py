"""Request-scoped observability: tracing, trace-correlated logging and Prometheus metrics.

Each request gets a span, a logger bound to that span's ids, and one metrics
observation. All three live on a per-request RequestContext; the metrics registry and
tracer are built once in ``app.main.create_app``.
"""
