"""SLO (Service Level Objective) definitions for engagement-service.

Three objectives, each with a different failure cost:

  availability:        99.5% of HTTP requests answer with a non-5xx status.
  latency_p95:         95% of requests finish within 300ms.  Recording a
                       view sits on the page-load path, so the threshold
                       is tighter than a typical API budget.
  scheduling_success:  99% of scheduler publish/cancel calls succeed.  A
                       failed publish is a reminder the learner never
                       receives, which is why scheduling failures are
                       surfaced to callers instead of swallowed.

The evaluation functions are pure: callers (the /health endpoint) read
the numbers from Prometheus and pass them in.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class SLODefinition:
    """A single SLO target.

    target is a percentage (99.5 means 99.5%); window is the rolling
    evaluation window the target is agreed over.
    """

    name: str
    description: str
    target: float
    window: str


@dataclass(frozen=True, slots=True)
class SLOStatus:
    """Result of evaluating one SLO against current numbers."""

    slo: SLODefinition
    current: float
    budget_remaining: float
    healthy: bool


AVAILABILITY_SLO = SLODefinition(
    name="availability",
    description="Percentage of non-5xx responses",
    target=99.5,
    window="30d",
)

LATENCY_SLO = SLODefinition(
    name="latency_p95",
    description="95th percentile response time under 300ms",
    target=95.0,
    window="30d",
)

SCHEDULING_SLO = SLODefinition(
    name="scheduling_success",
    description="Scheduler publish and cancel calls that succeed",
    target=99.0,
    window="7d",
)

ALL_SLOS = [AVAILABILITY_SLO, LATENCY_SLO, SCHEDULING_SLO]

_LATENCY_THRESHOLD_MS = 300.0


def _status(slo: SLODefinition, current: float) -> SLOStatus:
    return SLOStatus(
        slo=slo,
        current=round(current, 3),
        budget_remaining=round(current - slo.target, 3),
        healthy=current >= slo.target,
    )


def _success_ratio(total: int, failed: int) -> float:
    # No traffic yet counts as fully healthy.
    if total <= 0:
        return 100.0
    return ((total - failed) / total) * 100


def evaluate_availability(total_requests: int, error_requests: int) -> SLOStatus:
    """availability = (total - 5xx) / total × 100"""
    return _status(AVAILABILITY_SLO, _success_ratio(total_requests, error_requests))


def evaluate_latency(p95_ms: float) -> SLOStatus:
    """Map a p95 latency onto "percentage of requests under the threshold".

    At or below the threshold the value lands in [95, 100]; above it the
    value falls linearly toward 0, reaching 0 at twice the threshold.
    """
    if p95_ms <= _LATENCY_THRESHOLD_MS:
        current = 95.0 + (_LATENCY_THRESHOLD_MS - p95_ms) / _LATENCY_THRESHOLD_MS * 5.0
        current = min(current, 100.0)
    else:
        overshoot = (p95_ms - _LATENCY_THRESHOLD_MS) / _LATENCY_THRESHOLD_MS
        current = max(0.0, 95.0 - overshoot * 95.0)
    return _status(LATENCY_SLO, current)


def evaluate_scheduling(total_calls: int, failed_calls: int) -> SLOStatus:
    return _status(SCHEDULING_SLO, _success_ratio(total_calls, failed_calls))
