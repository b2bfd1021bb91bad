"""A fixed-capacity token limiter for bounding concurrency."""

from __future__ import annotations

import threading

__all__ = ["RateLimit"]

_POLL_INTERVAL = 0.05


class RateLimit:
    """Hands out at most ``capacity`` tokens at a time."""

    def __init__(self, capacity: int) -> None:
        self._capacity = capacity
        self._in_use = 0
        self._cond = threading.Condition()

    @property
    def capacity(self) -> int:
        """The token capacity."""
        return self._capacity

    def get_token(self, done: threading.Event | None = None) -> bool:
        """Acquire a token, blocking while none is free.

        Returns True if ``done`` was set before a token could be taken,
        False once a token has been acquired.
        """
        with self._cond:
            while True:
                if done is not None and done.is_set():
                    return True
                if self._in_use < self._capacity:
                    self._in_use += 1
                    return False
                self._cond.wait(_POLL_INTERVAL if done is not None else None)

    def put_token(self) -> None:
        """Return a token; raises RuntimeError if none is held."""
        with self._cond:
            if self._in_use == 0:
                raise RuntimeError("put a redundant token")
            self._in_use -= 1
            self._cond.notify()