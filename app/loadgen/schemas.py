from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class CheckResult(BaseModel):
    name: str
    passes: int
    fails: int


class LatencySummary(BaseModel):
    count: int
    mean_ms: float
    p95_ms: float
    max_ms: float


class LoadThresholds(BaseModel):
    p95_ms_below: float = 500.0
    error_rate_below: float = 0.1


class LoadRunSummary(BaseModel):
    base_url: str
    started_at: datetime
    finished_at: datetime
    virtual_users: int
    iterations: int
    requests: int
    transport_errors: int
    failed_groups: int
    error_rate: float
    latency: LatencySummary
    thresholds: LoadThresholds
    thresholds_passed: bool


class LoadRunReport(BaseModel):
    summary: LoadRunSummary
    checks: list[CheckResult]
