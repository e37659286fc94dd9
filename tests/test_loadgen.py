from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from httpx import ASGITransport

from app.loadgen.runner import run_load
from app.loadgen.schemas import LoadRunReport


async def test_load_run_against_app_passes_all_checks(app, metrics, tmp_path: Path) -> None:
    out_path = tmp_path / "reports" / "load.json"
    report = await run_load(
        "http://test",
        virtual_users=2,
        iterations=3,
        pause_s=(0.0, 0.0),
        seed=7,
        transport=ASGITransport(app=app),
        out_path=str(out_path),
    )

    summary = report.summary
    assert summary.iterations == 6
    # Five mandatory requests per iteration, plus the occasional error endpoint.
    assert summary.requests >= 30
    assert summary.transport_errors == 0
    assert summary.failed_groups == 0
    assert summary.error_rate == 0.0

    checks = {check.name: check for check in report.checks}
    assert checks["search returns results"].passes == 6
    assert checks["item created successfully"].fails == 0

    loaded = LoadRunReport.model_validate_json(out_path.read_text(encoding="utf-8"))
    assert loaded.summary.requests == summary.requests

    # Traffic shows up in the service's own series.
    assert metrics.sample("search_requests_total") == 6
    assert metrics.sample("item_operations_total", {"operation": "create", "status": "success"}) == 6


async def test_load_run_counts_transport_failures() -> None:
    def _refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    report = await run_load(
        "http://unreachable",
        virtual_users=1,
        iterations=1,
        pause_s=(0.0, 0.0),
        seed=1,
        transport=httpx.MockTransport(_refuse),
    )

    assert report.summary.transport_errors == report.summary.requests
    assert report.summary.error_rate == 1.0
    assert report.summary.thresholds_passed is False


async def test_load_run_rejects_empty_runs() -> None:
    with pytest.raises(ValueError):
        await run_load("http://test", virtual_users=0)
