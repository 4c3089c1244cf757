"""
Logging configuration with Wide Events / Canonical Log Lines pattern.

Every pipeline controller invocation builds one comprehensive event
(job id, step, outcome, duration, retry bookkeeping) and emits it once
at the end, instead of scattering partial lines across the step.

References:
- https://charity.wtf/2019/02/05/logs-vs-structured-events/
- Stripe's "canonical log lines" pattern
"""

import logging
import os
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import Processor

# Context variables for the invocation-scoped wide event
_job_event: ContextVar[dict[str, Any] | None] = ContextVar("job_event", default=None)
_job_start: ContextVar[float] = ContextVar("job_start", default=0.0)


def get_job_event() -> dict[str, Any]:
    """Get the current invocation's wide event for enrichment."""
    return _job_event.get() or {}


def enrich_event(**kwargs: Any) -> None:
    """
    Add fields to the current invocation's wide event.

        enrich_event(step="analyze", outcome="retry", retry={"attempt": 3})

    Dotted keys ("retry.delay_seconds") create nested objects.
    """
    event = _job_event.get()
    if event is None:
        return
    for key, value in kwargs.items():
        if "." in key:
            parts = key.split(".")
            target = event
            for part in parts[:-1]:
                target = target.setdefault(part, {})
            target[parts[-1]] = value
        else:
            event[key] = value


def init_job_event(job_id: int, tick_id: str | None = None) -> dict[str, Any]:
    """Initialize a new wide event for one controller invocation."""
    event = {
        "invocation_id": str(uuid.uuid4())[:8],
        "tick_id": tick_id,
        "job_id": job_id,
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S.000Z", time.gmtime()),
        "service": {
            "name": "citescan-engine",
            "version": os.environ.get("APP_VERSION", "dev"),
            "environment": os.environ.get("ENVIRONMENT", "development"),
        },
    }
    _job_event.set(event)
    _job_start.set(time.time())
    return event


def finalize_job_event(error: Exception | None = None) -> dict[str, Any]:
    """Finalize and return the wide event for emission."""
    event = _job_event.get() or {}
    event["duration_ms"] = int((time.time() - _job_start.get()) * 1000)

    if error:
        event["error"] = {
            "type": type(error).__name__,
            "message": str(error)[:500],
        }
        if hasattr(error, "code"):
            event["error"]["code"] = error.code

    return event


def emit_job_event(event: dict[str, Any]) -> None:
    """Emit the canonical log line for a controller invocation."""
    logger = structlog.get_logger("wide_event")
    outcome = event.get("outcome")

    if outcome in ("failed", "error"):
        logger.error("job_invocation_completed", **event)
    elif outcome in ("retry", "lock_lost", "out_of_band"):
        logger.warning("job_invocation_completed", **event)
    else:
        logger.info("job_invocation_completed", **event)


def add_invocation_id(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Processor to add invocation_id to all log entries inside an invocation."""
    current_event = _job_event.get()
    if current_event and "invocation_id" in current_event:
        event_dict.setdefault("invocation_id", current_event["invocation_id"])
    return event_dict


def configure_logging(json_logs: bool = True, log_level: str = "INFO") -> None:
    """
    Configure structlog for wide events logging.

    Args:
        json_logs: If True, output JSON format (for production).
                   If False, output colored console format (for development).
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR).
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        add_invocation_id,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
