from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, MutableMapping

from fastapi import Request
from opentelemetry.trace import INVALID_SPAN, Span

from app.observability.logging import get_logger


_STATE_KEY = "request_context"
UNMATCHED_ROUTE = "unmatched"


@dataclass
class RequestContext:
    """Ambient values for one inbound request.

    Lives in the request's ASGI scope and is dropped with it; nothing else holds a
    reference once the response is written.
    """

    span: Span = INVALID_SPAN
    logger: Any = field(default_factory=get_logger)
    route: str | None = None


def attach_request_context(scope: MutableMapping[str, Any], context: RequestContext) -> None:
    # Starlette's Request.state reads from scope["state"].
    scope.setdefault("state", {})[_STATE_KEY] = context


def request_context_from_scope(scope: MutableMapping[str, Any]) -> RequestContext | None:
    state = scope.get("state")
    if not isinstance(state, dict):
        return None
    return state.get(_STATE_KEY)


def route_template(scope: MutableMapping[str, Any]) -> str:
    """Matched route path template, or the ``unmatched`` sentinel.

    FastAPI records the matched route in ``scope["route"]`` while routing, so this is
    only meaningful after the downstream app has run.
    """

    route = scope.get("route")
    path = getattr(route, "path", None)
    return path if isinstance(path, str) and path else UNMATCHED_ROUTE


def get_request_context(request: Request) -> RequestContext:
    context = request_context_from_scope(request.scope)
    if context is None:
        # Outside the pipeline: hand out an empty context rather than failing.
        return RequestContext()
    return context


def get_request_logger(request: Request) -> Any:
    return get_request_context(request).logger
