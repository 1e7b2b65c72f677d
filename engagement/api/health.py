"""Health and readiness endpoints.

  /health  liveness plus dependency and SLO status.  Always 200; the
           "status" field says "degraded" when Redis is configured but
           not answering.  Restarting the process would not fix Redis.
  /ready   readiness.  Always 200: every engagement feature degrades to
           neutral values without its store, so an instance with Redis
           down can still serve traffic.
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import REGISTRY

from engagement.core.slo import (
    evaluate_availability,
    evaluate_latency,
    evaluate_scheduling,
)
from engagement.db.redis import redis_pool

router = APIRouter(tags=["health"])


def _sum_samples(sample_name: str, label_filter: dict | None = None) -> float:
    """Sum a metric's samples across every label combination that matches."""
    total = 0.0
    for metric in REGISTRY.collect():
        for sample in metric.samples:
            if sample.name != sample_name:
                continue
            if label_filter and not all(
                sample.labels.get(k) == v for k, v in label_filter.items()
            ):
                continue
            total += sample.value
    return total


@router.get("/health")
async def health() -> dict:
    checks: dict[str, str] = {}
    overall = "ok"

    if redis_pool is not None:
        try:
            await redis_pool.ping()  # type: ignore[misc]
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "degraded"
            overall = "degraded"
    else:
        checks["redis"] = "not_configured"

    # Per-process approximations; Prometheus aggregates across replicas.
    total_all = _sum_samples("http_requests_total")
    total_5xx = sum(
        _sum_samples("http_requests_total", {"status_code": str(code)})
        for code in range(500, 512)
    )

    # Crude p95 estimate from the histogram's sum and count.
    duration_sum = _sum_samples("http_request_duration_seconds_sum")
    duration_count = _sum_samples("http_request_duration_seconds_count")
    p95_estimate_ms = (
        (duration_sum / duration_count) * 1000 * 2.0 if duration_count > 0 else 0.0
    )

    scheduler_total = _sum_samples("scheduler_requests_total")
    scheduler_failed = _sum_samples("scheduler_requests_total", {"result": "error"})

    slos = {}
    for s in (
        evaluate_availability(int(total_all), int(total_5xx)),
        evaluate_latency(p95_estimate_ms),
        evaluate_scheduling(int(scheduler_total), int(scheduler_failed)),
    ):
        slos[s.slo.name] = {
            "current": s.current,
            "target": s.slo.target,
            "healthy": s.healthy,
        }

    return {"status": overall, "checks": checks, "slos": slos}


@router.get("/ready")
async def ready() -> Response:
    return Response(status_code=200)
