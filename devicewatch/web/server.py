"""The HTTP application: middleware, error handling, routes and the server around it."""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import timedelta
from typing import Any, Optional, Union

from flask import Blueprint, Flask, Response, g, request
from werkzeug.exceptions import HTTPException, NotFound
from werkzeug.serving import BaseWSGIServer, make_server

from .common import ApiError, json_response
from .devices import create_devices_blueprint
from .messages import MetricsRegistry, create_messages_blueprint
from .reports import create_reports_blueprint
from .tags import create_tags_blueprint

_REQUEST_ID_HEADER = "X-Request-ID"
_API_PREFIX = "/monolith/v1"

Timeout = Union[None, float, int, timedelta]


def _seconds(timeout: Timeout) -> Optional[float]:
    if timeout is None:
        return None
    if isinstance(timeout, timedelta):
        return timeout.total_seconds()
    return float(timeout)


def create_app(jwt_key: str, log_queries: bool, devices_service: Any, tags_service: Any,
               messages_service: Any, device_registry: Any, log: logging.Logger,
               registry: MetricsRegistry) -> Flask:
    """Build the API application with every route under /monolith/v1."""
    app = Flask("devicewatch")

    @app.before_request
    def assign_request_id() -> None:
        g.request_id = str(uuid.uuid4())
        if log_queries:
            log.info(
                "Request",
                extra={"fields": {"req": f"{request.method} {request.full_path.rstrip('?')}"}},
            )

    @app.after_request
    def decorate_response(response: Response) -> Response:
        response.headers["Content-Type"] = "application/json"
        response.headers[_REQUEST_ID_HEADER] = g.get("request_id", "")
        return response

    @app.errorhandler(Exception)
    def handle_error(exc: Exception) -> Response:
        status = 500
        data = str(exc)
        if isinstance(exc, ApiError):
            status, data = exc.status, exc.message
        elif isinstance(exc, NotFound):
            status, data = 404, f"Cannot {request.method} {request.path}"
        elif isinstance(exc, HTTPException):
            status, data = exc.code or 500, exc.description or str(exc)
        log.error(
            data,
            extra={
                "fields": {
                    "request_id": g.get("request_id", ""),
                    "method": request.method,
                    "path": request.path,
                    "status": status,
                }
            },
        )
        return json_response({"error": True, "data": data}, status)

    api = Blueprint("v1", __name__, url_prefix=_API_PREFIX)
    api.register_blueprint(
        create_devices_blueprint(devices_service, messages_service, device_registry, jwt_key)
    )
    api.register_blueprint(create_tags_blueprint(tags_service, messages_service, jwt_key))
    api.register_blueprint(create_reports_blueprint(messages_service, jwt_key))
    api.register_blueprint(
        create_messages_blueprint(messages_service, device_registry, registry)
    )
    app.register_blueprint(api)
    return app


class Server:
    """Serves a WSGI application on ``host:port`` until stopped."""

    def __init__(self, app: Any, addr: str) -> None:
        host, separator, port = addr.rpartition(":")
        if not separator:
            raise ValueError(f"invalid listen address {addr!r}: missing port")
        try:
            self._port = int(port)
        except ValueError as exc:
            raise ValueError(f"invalid listen address {addr!r}: bad port") from exc
        if not 0 <= self._port <= 65535:
            raise ValueError(f"invalid listen address {addr!r}: port out of range")
        self._host = host.strip("[]") or "0.0.0.0"
        self.app = app
        self.addr = addr
        self._lock = threading.Lock()
        self._server: Optional[BaseWSGIServer] = None
        self._stopping = False

    @property
    def port(self) -> Optional[int]:
        """The bound port once serving, else None."""
        with self._lock:
            return None if self._server is None else self._server.server_port

    def run(self) -> None:
        """Bind and serve until ``stop`` is called; binding errors propagate."""
        with self._lock:
            if self._stopping:
                return
            self._server = make_server(self._host, self._port, self.app, threaded=True)
            server = self._server
        server.serve_forever()

    def stop(self, timeout: Timeout = None) -> None:
        """Stop serving; raise TimeoutError if that takes longer than ``timeout``."""
        with self._lock:
            self._stopping = True
            server = self._server
        if server is None:
            return
        worker = threading.Thread(target=server.shutdown, daemon=True)
        worker.start()
        worker.join(_seconds(timeout))
        if worker.is_alive():
            raise TimeoutError(f"server on {self.addr} did not stop in time")
        server.server_close()