"""An in-memory HTTP response writer."""

from __future__ import annotations

__all__ = ["ResponseWriter"]


class ResponseWriter:
    """Collects a response's status code, headers and body in memory."""

    def __init__(self, headers: dict[str, list[str]] | None = None) -> None:
        self.headers: dict[str, list[str]] = headers if headers is not None else {}
        self.body = bytearray()
        self.code = 200

    def write(self, data: bytes) -> int:
        """Append ``data`` to the body and return the number of bytes written."""
        self.body.extend(data)
        return len(data)

    def write_header(self, status_code: int) -> None:
        """Set the response status code."""
        self.code = status_code