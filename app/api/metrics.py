from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from app.observability.metrics import AppMetrics, get_metrics


METRICS_PATH = "/metrics"

router = APIRouter(tags=["metrics"])


@router.get(METRICS_PATH)
async def metrics(app_metrics: AppMetrics = Depends(get_metrics)) -> Response:
    body, content_type = app_metrics.render()
    return Response(content=body, media_type=content_type)
