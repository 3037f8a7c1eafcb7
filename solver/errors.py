"""Error kinds surfaced by the solver core."""

import asyncio


class SolveError(Exception):
    """A solve, debate or follow-up call failed. Message is user-facing."""


class SolveCancelled(Exception):
    """The caller's abort signal was triggered. Never retried."""

    def __init__(self, message: str = "Aborted") -> None:
        super().__init__(message)


def check_cancelled(signal: asyncio.Event | None) -> None:
    """Raise SolveCancelled if the abort signal is already set."""
    if signal is not None and signal.is_set():
        raise SolveCancelled()
