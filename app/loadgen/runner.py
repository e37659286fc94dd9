from __future__ import annotations

import asyncio
import math
import random
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter
from typing import Any, Callable

import httpx
import structlog

from app.loadgen.schemas import CheckResult, LatencySummary, LoadRunReport, LoadRunSummary, LoadThresholds


logger = structlog.get_logger("loadgen")

ITEM_IDS = (1, 2, 3)
ERROR_400_PROBABILITY = 0.1
ERROR_500_PROBABILITY = 0.05


class _Recorder:
    """Check/latency bookkeeping shared by all virtual users (single event loop)."""

    def __init__(self) -> None:
        self.checks: dict[str, list[int]] = defaultdict(lambda: [0, 0])
        self.durations_ms: list[float] = []
        self.requests = 0
        self.transport_errors = 0
        self.groups = 0
        self.failed_groups = 0

    def check(self, response: httpx.Response | None, checks: dict[str, Callable[[httpx.Response], bool]]) -> bool:
        all_ok = True
        for name, predicate in checks.items():
            ok = response is not None and _safe(predicate, response)
            self.checks[name][0 if ok else 1] += 1
            all_ok = all_ok and ok
        return all_ok

    def group(self, ok: bool) -> None:
        # A failed group counts once towards the error rate, like k6's `check(...) || errors.add(1)`.
        self.groups += 1
        if not ok:
            self.failed_groups += 1


def _safe(predicate: Callable[[httpx.Response], bool], response: httpx.Response) -> bool:
    try:
        return bool(predicate(response))
    except (ValueError, KeyError, TypeError, RuntimeError):
        return False


def _percentile(values: list[float], pct: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    index = max(math.ceil(pct / 100.0 * len(ordered)) - 1, 0)
    return ordered[index]


async def _request(
    client: httpx.AsyncClient, recorder: _Recorder, method: str, url: str, **kwargs: Any
) -> httpx.Response | None:
    recorder.requests += 1
    start = perf_counter()
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        recorder.transport_errors += 1
        logger.warning("loadgen_request_failed", method=method, url=url, error=str(exc))
        return None
    recorder.durations_ms.append((perf_counter() - start) * 1000.0)
    return response


async def run_iteration(client: httpx.AsyncClient, recorder: _Recorder, rng: random.Random, vu: int, iteration: int) -> None:
    res = await _request(client, recorder, "GET", "/")
    recorder.group(recorder.check(res, {"root status is 200": lambda r: r.status_code == 200}))

    res = await _request(client, recorder, "GET", "/status")
    recorder.group(
        recorder.check(
            res,
            {
                "status is healthy": lambda r: r.status_code == 200,
                "response time < 200ms": lambda r: r.elapsed.total_seconds() * 1000.0 < 200.0,
            },
        )
    )

    item_id = rng.choice(ITEM_IDS)
    res = await _request(client, recorder, "GET", f"/items/{item_id}")
    recorder.group(
        recorder.check(
            res,
            {
                "item retrieval status is 200": lambda r: r.status_code == 200,
                "item has name": lambda r: r.status_code == 200 and "name" in r.json(),
            },
        )
    )

    res = await _request(client, recorder, "GET", "/search/", params={"name": "laptop", "min_price": "100"})
    recorder.group(
        recorder.check(
            res,
            {
                "search status is 200": lambda r: r.status_code == 200,
                "search returns results": lambda r: r.status_code == 200 and len(r.json()["search_results"]) > 0,
            },
        )
    )

    payload = {
        "name": f"Test Item {vu}-{iteration}",
        "price": rng.random() * 1000,
        "is_offer": rng.random() > 0.5,
    }
    res = await _request(client, recorder, "POST", "/items/", json=payload)
    recorder.group(
        recorder.check(
            res,
            {
                "item creation status is 200": lambda r: r.status_code == 200,
                "item created successfully": lambda r: r.status_code == 200 and "successfully" in r.json()["message"],
            },
        )
    )

    # Error endpoints are checked but do not count towards the error rate.
    if rng.random() < ERROR_400_PROBABILITY:
        res = await _request(client, recorder, "GET", "/error-400")
        recorder.check(res, {"error 400 status is 400": lambda r: r.status_code == 400})

    if rng.random() < ERROR_500_PROBABILITY:
        res = await _request(client, recorder, "GET", "/error-500")
        recorder.check(res, {"error 500 status is 500": lambda r: r.status_code == 500})


async def _virtual_user(
    client: httpx.AsyncClient,
    recorder: _Recorder,
    vu: int,
    iterations: int,
    pause_s: tuple[float, float],
    rng: random.Random,
) -> None:
    for iteration in range(iterations):
        await run_iteration(client, recorder, rng, vu, iteration)
        low, high = pause_s
        if high > 0:
            await asyncio.sleep(rng.uniform(low, high))


async def run_load(
    base_url: str,
    *,
    virtual_users: int = 10,
    iterations: int = 10,
    pause_s: tuple[float, float] = (1.0, 3.0),
    seed: int | None = None,
    thresholds: LoadThresholds | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout_s: float = 10.0,
    out_path: str | None = None,
) -> LoadRunReport:
    """Drive synthetic traffic at the service and summarize the checks.

    Every virtual user runs ``iterations`` passes over the public endpoints, sleeping a
    random ``pause_s`` interval between passes.
    """

    if virtual_users <= 0 or iterations <= 0:
        raise ValueError("virtual_users and iterations must be positive")

    thresholds = thresholds or LoadThresholds()
    started_at = datetime.now(timezone.utc)
    recorder = _Recorder()
    base_rng = random.Random(seed)

    logger.info("loadgen_started", base_url=base_url, virtual_users=virtual_users, iterations=iterations)

    async with httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout_s) as client:
        await asyncio.gather(
            *(
                _virtual_user(client, recorder, vu, iterations, pause_s, random.Random(base_rng.random()))
                for vu in range(1, virtual_users + 1)
            )
        )

    finished_at = datetime.now(timezone.utc)
    durations = recorder.durations_ms
    latency = LatencySummary(
        count=len(durations),
        mean_ms=(sum(durations) / len(durations)) if durations else 0.0,
        p95_ms=_percentile(durations, 95.0),
        max_ms=max(durations) if durations else 0.0,
    )
    error_rate = (recorder.failed_groups / recorder.groups) if recorder.groups else 0.0

    report = LoadRunReport(
        summary=LoadRunSummary(
            base_url=base_url,
            started_at=started_at,
            finished_at=finished_at,
            virtual_users=virtual_users,
            iterations=virtual_users * iterations,
            requests=recorder.requests,
            transport_errors=recorder.transport_errors,
            failed_groups=recorder.failed_groups,
            error_rate=error_rate,
            latency=latency,
            thresholds=thresholds,
            thresholds_passed=latency.p95_ms < thresholds.p95_ms_below and error_rate < thresholds.error_rate_below,
        ),
        checks=[CheckResult(name=name, passes=counts[0], fails=counts[1]) for name, counts in recorder.checks.items()],
    )

    if out_path:
        out = Path(out_path)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(report.model_dump_json(indent=2), encoding="utf-8")

    logger.info(
        "loadgen_finished",
        requests=recorder.requests,
        error_rate=round(error_rate, 4),
        p95_ms=round(latency.p95_ms, 2),
        thresholds_passed=report.summary.thresholds_passed,
    )
    return report
