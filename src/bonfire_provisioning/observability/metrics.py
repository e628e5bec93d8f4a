"""Prometheus metrics for the provisioning workflow.

Usage::

    from bonfire_provisioning.observability.metrics import STEP_TRANSITIONS_TOTAL

    STEP_TRANSITIONS_TOTAL.labels(step="BurningToken").inc()
"""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

STEP_TRANSITIONS_TOTAL = Counter(
    "provisioning_step_transitions_total",
    "Workflow transitions into each step.",
    labelnames=["step"],
    registry=REGISTRY,
)

STEP_RETRIES_TOTAL = Counter(
    "provisioning_step_retries_total",
    "Retries of a step after a retryable failure.",
    labelnames=["step", "kind"],
    registry=REGISTRY,
)

WORKFLOWS_TERMINAL_TOTAL = Counter(
    "provisioning_workflows_terminal_total",
    "Workflows reaching a terminal state, by outcome and failure kind.",
    labelnames=["outcome", "kind"],
    registry=REGISTRY,
)

STEP_DURATION_SECONDS = Histogram(
    "provisioning_step_duration_seconds",
    "Wall time spent in a step, retries included.",
    labelnames=["step"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
