"""Observability infrastructure for the provisioning workflow.

Provides structured logging with workflow and step correlation and Prometheus
metrics for step transitions, retries and terminal outcomes.

Quick start::

    from bonfire_provisioning.observability import configure_logging, get_logger

    configure_logging()
    logger = get_logger(__name__)
    logger.info("workflow_step_started", step="PublishingContent")
"""

from .logging import bind_step, configure_logging, get_logger, workflow_id_ctx
from .metrics import metrics_text

__all__ = [
    "bind_step",
    "configure_logging",
    "get_logger",
    "metrics_text",
    "workflow_id_ctx",
]
