"""The HTTP service exposing health and configuration endpoints."""

from __future__ import annotations

import json
import logging
import socket
import sys
import threading
from collections.abc import Callable, Iterable
from http import HTTPStatus
from socketserver import ThreadingMixIn
from typing import Any, TextIO
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from .config import Config
from .config_service import handle_get_config, handle_post_config
from .docdb import DocDB
from .misc import go_with_recovery

__all__ = ["make_wsgi_app", "HTTPService"]

logger = logging.getLogger(__name__)

_JSON_TYPE = "application/json; charset=utf-8"
_TEXT_TYPE = "text/plain; charset=utf-8"
_NOT_FOUND = b"404 page not found"

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _encode_json(payload: Any) -> bytes:
    text = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    for char, escaped in _HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    return text.encode("utf-8")


def _read_body(environ: dict[str, Any]) -> bytes:
    try:
        length = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        length = 0
    if length <= 0:
        return b""
    return environ["wsgi.input"].read(length)


def _status_line(code: int) -> str:
    return f"{code} {HTTPStatus(code).phrase}"


def make_wsgi_app(db: DocDB) -> Callable[..., Iterable[bytes]]:
    """A WSGI application serving ``/health`` and ``/config``."""

    def route(environ: dict[str, Any]) -> tuple[int, str, bytes]:
        method = environ.get("REQUEST_METHOD", "GET")
        path = environ.get("PATH_INFO") or "/"
        if path == "/health" and method == "GET":
            return 200, _JSON_TYPE, _encode_json({"health": True})
        if path == "/config" and method == "GET":
            status, payload = handle_get_config()
            return status, _JSON_TYPE, _encode_json(payload)
        if path == "/config" and method == "POST":
            status, payload = handle_post_config(_read_body(environ), db)
            return status, _JSON_TYPE, _encode_json(payload)
        return 404, _TEXT_TYPE, _NOT_FOUND

    def app(
        environ: dict[str, Any], start_response: Callable[..., Any]
    ) -> Iterable[bytes]:
        try:
            status, content_type, body = route(environ)
        except Exception:
            logger.exception("panic while handling request")
            status, content_type, body = 500, _TEXT_TYPE, b""
        start_response(
            _status_line(status),
            [("Content-Type", content_type), ("Content-Length", str(len(body)))],
        )
        return [body]

    return app


class _ThreadingServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True
    access_log: TextIO = sys.stdout
    access_log_lock = threading.Lock()


class _ThreadingServerV6(_ThreadingServer):
    address_family = socket.AF_INET6


class _AccessLogHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:
        server = self.server
        line = f"{self.address_string()} - [{self.log_date_time_string()}] {format % args}\n"
        with server.access_log_lock:  # type: ignore[attr-defined]
            stream = server.access_log  # type: ignore[attr-defined]
            stream.write(line)
            stream.flush()


def _split_listen_address(address: str) -> tuple[str, int]:
    host, sep, port = address.strip().rpartition(":")
    if not sep:
        raise ValueError(f"address {address}: missing port in address")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, int(port)


class HTTPService:
    """Serves the application on the configured address in a background thread."""

    def __init__(self, config: Config, db: DocDB) -> None:
        self.config = config
        self.db = db
        self._server: _ThreadingServer | None = None
        self._thread: threading.Thread | None = None
        self._log_file: TextIO | None = None

    def start(self) -> None:
        """Bind the listening socket and begin serving."""
        if self._server is not None:
            raise RuntimeError("http service already started")
        host, port = _split_listen_address(self.config.address)
        server_class = _ThreadingServerV6 if ":" in host else _ThreadingServer
        server = make_server(
            host,
            port,
            make_wsgi_app(self.db),
            server_class=server_class,
            handler_class=_AccessLogHandler,
        )
        if self.config.log.path:
            self._log_file = open(
                f"{self.config.log.path.rstrip('/')}/service.log", "a", encoding="utf-8"
            )
            server.access_log = self._log_file
        else:
            server.access_log = sys.stdout
        self._server = server
        self._thread = threading.Thread(
            target=go_with_recovery, args=(server.serve_forever,), daemon=True
        )
        self._thread.start()
        logger.info("starting http service address=%s", self.config.address)

    def stop(self) -> None:
        """Shut the server down; does nothing if it is not running."""
        if self._server is None:
            return
        logger.info("shutting down http server")
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join()
        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None
        self._server = None
        self._thread = None
        logger.info("http server is down")

    def address(self) -> str:
        """The ``host:port`` the server is actually listening on."""
        if self._server is None:
            raise RuntimeError("http service is not running")
        host, port = self._server.server_address[:2]
        if ":" in host:
            return f"[{host}]:{port}"
        return f"{host}:{port}"