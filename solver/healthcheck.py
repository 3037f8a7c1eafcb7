"""Startup connectivity check for the roles a run will call.

Each role gets one tiny blocking call. A role fails when the call raises,
exceeds the timeout, or comes back with no text at all.
"""

import asyncio
import logging
import time

from solver.invokers.base import ModelInvoker
from solver.models import HealthStatus, Prompt

logger = logging.getLogger(__name__)

PING_PROMPT = Prompt(text="Reply with the word OK only.")
HEALTH_TIMEOUT_SEC = 15.0


async def ping(role: str, invoker: ModelInvoker, timeout: float = HEALTH_TIMEOUT_SEC) -> HealthStatus:
    started = time.monotonic()
    error = ""
    try:
        response = await asyncio.wait_for(invoker.invoke(PING_PROMPT), timeout=timeout)
        if not (response.content or "").strip():
            error = "empty reply"
    except asyncio.TimeoutError:
        error = f"no reply within {timeout:g}s"
    except Exception as exc:
        error = str(exc) or type(exc).__name__
    latency = time.monotonic() - started

    if error:
        logger.debug("Health check failed for %s after %.2fs: %s", role, latency, error)
    else:
        logger.debug("Health check ok for %s in %.2fs", role, latency)
    return HealthStatus(
        role=role,
        model=invoker.model_string(),
        ok=not error,
        error=error,
        latency_sec=latency,
    )


async def run_health_checks(
    invokers: dict[str, ModelInvoker],
    timeout: float = HEALTH_TIMEOUT_SEC,
) -> dict[str, HealthStatus]:
    """Ping every role concurrently; the result is keyed by role."""
    statuses = await asyncio.gather(*(ping(role, inv, timeout) for role, inv in invokers.items()))
    return {status.role: status for status in statuses}


def failed_roles(statuses: dict[str, HealthStatus]) -> list[str]:
    return sorted(role for role, status in statuses.items() if not status.ok)
