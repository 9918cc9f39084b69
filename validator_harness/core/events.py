"""
Structured lifecycle events.

Every state transition of a supervised process is logged through
log_event() so handlers (and tests) can filter on the ``lifecycle_event``
record attribute instead of parsing messages.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any


class LifecycleEvent(Enum):
    """Lifecycle transitions of a supervised service."""

    SPAWN = "spawn"
    SPAWN_FAILED = "spawn_failed"
    TERMINATE_REQUESTED = "terminate_requested"
    TERMINATE_RETRY = "terminate_retry"
    TERMINATE_WAIT_ERROR = "terminate_wait_error"
    TERMINATED = "terminated"
    ALREADY_STOPPED = "already_stopped"
    ESCALATED = "escalated"
    KILLED = "killed"
    READY = "ready"
    REUSED = "reused"
    READINESS_FAILED = "readiness_failed"
    DEPLOY_SKIPPED = "deploy_skipped"
    DEPLOY_STARTED = "deploy_started"
    DEPLOYED = "deployed"


def log_event(
    logger: logging.Logger,
    level: int,
    event: LifecycleEvent,
    message: str,
    **fields: Any,
) -> None:
    """Log ``message`` tagged with ``event`` and any extra ``fields``."""
    logger.log(level, message, extra={"lifecycle_event": event.value, **fields})
