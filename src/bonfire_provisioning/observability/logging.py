"""Structured logging for the provisioning workflow.

Every entry emitted while a workflow is being driven carries its
``workflow_id`` and, inside a step, the ``step`` name and workflow
``attempt``. Credentials and signed payloads are masked before rendering.

Usage::

    from bonfire_provisioning.observability.logging import bind_step, get_logger

    logger = get_logger(__name__)
    with bind_step("BurningToken", attempt=2):
        logger.info("burn_submitted", tx_hash=tx_hash)
"""

from __future__ import annotations

import contextlib
import logging
import sys
from contextvars import ContextVar
from typing import Iterator

import structlog

# Set by the orchestrator for the duration of one workflow run.
workflow_id_ctx: ContextVar[str | None] = ContextVar("workflow_id", default=None)
_step_ctx: ContextVar[tuple[str, int] | None] = ContextVar("workflow_step", default=None)

REDACTED = "[redacted]"

_SECRET_KEYS = frozenset(
    {
        "api_key",
        "authorization",
        "backend_api_key",
        "jwt",
        "pinata_jwt",
        "signed_tx",
    }
)

_configured = False


@contextlib.contextmanager
def bind_step(step: str, attempt: int) -> Iterator[None]:
    """Tag log entries emitted inside the block with ``step`` and ``attempt``."""
    token = _step_ctx.set((step, attempt))
    try:
        yield
    finally:
        _step_ctx.reset(token)


def add_workflow_context(logger, method_name: str, event_dict: dict) -> dict:
    wid = workflow_id_ctx.get()
    if wid is not None:
        event_dict.setdefault("workflow_id", wid)
    current = _step_ctx.get()
    if current is not None:
        step, attempt = current
        event_dict.setdefault("step", step)
        event_dict.setdefault("workflow_attempt", attempt)
    return event_dict


def redact_secrets(logger, method_name: str, event_dict: dict) -> dict:
    """Mask credential-bearing keys; an empty value stays as is."""
    for key, value in event_dict.items():
        if value and key.lower() in _SECRET_KEYS:
            event_dict[key] = REDACTED
    return event_dict


def workflow_processors() -> list:
    """Processors shared by structlog loggers and foreign stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        add_workflow_context,
        redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]


def configure_logging(*, level: str = "INFO", json_output: bool = True) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Only the first call takes effect, so app factories may call it freely.
    """
    global _configured
    if _configured:
        return
    _configured = True

    shared = workflow_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Both log every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
