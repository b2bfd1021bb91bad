"""Generic retry helpers with optional cancellation."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

__all__ = ["with_retry", "with_retry_backoff"]


def _wait(stop: threading.Event | None, seconds: float) -> bool:
    """Sleep for ``seconds``; return True if ``stop`` was set meanwhile."""
    if stop is None:
        time.sleep(seconds)
        return False
    return stop.wait(seconds)


def with_retry(
    stop: threading.Event | None,
    max_retry_times: int,
    duration: float,
    func: Callable[[int], bool],
) -> None:
    """Call ``func(retried)`` until it returns True, retries run out or ``stop`` is set.

    Between attempts the function waits ``duration`` seconds.
    """
    for retried in range(max_retry_times + 1):
        if func(retried):
            return
        if retried < max_retry_times and _wait(stop, duration):
            return


def with_retry_backoff(
    stop: threading.Event | None,
    max_retry_times: int,
    first_duration: float,
    func: Callable[[int], bool],
) -> None:
    """Like :func:`with_retry`, but the wait doubles after every attempt."""
    duration = first_duration
    for retried in range(max_retry_times + 1):
        if func(retried):
            return
        if retried < max_retry_times:
            if _wait(stop, duration):
                return
            duration *= 2