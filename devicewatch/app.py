"""Service start-up, wiring and graceful shutdown."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from datetime import timedelta
from typing import Any, Optional, Sequence

from flask import Flask, Response

from .closer import Closer, ShutdownError
from .config import ConfigError, get_config
from .database import Database
from .device_registry import DeviceRegistry
from .devices_repo import DevicesRepo
from .devices_service import DevicesService
from .logger import new_logger
from .messages_repo import MessagesRepo
from .messages_service import MessagesService
from .repository import RepositoryError
from .tags_repo import TagsRepo
from .tags_service import TagsService
from .web.messages import MetricsRegistry
from .web.server import Server, create_app

METRICS_ADDR = ":9081"


def _seconds(value: Any) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _metrics_app(registry: MetricsRegistry) -> Flask:
    app = Flask("devicewatch-metrics")

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(registry.render(), content_type="text/plain; version=0.0.4; charset=utf-8")

    return app


def _serve(server: Server, log: logging.Logger, stop_event: threading.Event) -> None:
    try:
        server.run()
    except Exception as exc:
        log.error(f"error occurred while running HTTP server on {server.addr}: {exc}")
        stop_event.set()


def run(config: Any, stop_event: threading.Event) -> bool:
    """Start the service, block until ``stop_event`` is set, then shut down.

    Start-up failures are logged and raised; returns whether shutdown went cleanly.
    """
    log = new_logger(config.logger.log_level, config.logger.service_name, config.logger.log_path)

    try:
        database = Database(config.database.data_source, config.database.application_schema)
    except RepositoryError as exc:
        log.critical("init database error", extra={"fields": {"error": str(exc)}})
        raise
    try:
        database.run_migrations(config.database.path_to_migrations)
    except RepositoryError as exc:
        log.critical("migration error", extra={"fields": {"error": str(exc)}})
        database.close()
        raise

    devices_repo = DevicesRepo(database, log)
    tags_repo = TagsRepo(database, log)
    messages_repo = MessagesRepo(database, log)

    devices_service = DevicesService(devices_repo)
    messages_service = MessagesService(
        messages_repo, tags_repo, devices_repo, log, config.service.notification_period
    )
    tags_service = TagsService(tags_repo, messages_service)
    device_registry = DeviceRegistry(devices_repo)

    metrics = MetricsRegistry()
    app = create_app(
        config.server.jwt_key,
        config.server.log_queries,
        devices_service,
        tags_service,
        messages_service,
        device_registry,
        log,
        metrics,
    )
    http_server = Server(app, config.server.addr)
    metrics_server = Server(_metrics_app(metrics), METRICS_ADDR)

    for server in (http_server, metrics_server):
        threading.Thread(target=_serve, args=(server, log, stop_event), daemon=True).start()

    log.info("start http server", extra={"fields": {"listen_on": config.server.addr}})

    stop_event.wait()
    log.info("Shutdown start")

    timeout = _seconds(config.app.shutdown_timeout)
    closer = Closer()
    closer.add(lambda *_args, **_kwargs: http_server.stop(timeout))
    try:
        closer.close(timeout)
    except ShutdownError as exc:
        log.error("Closer", extra={"fields": {"error": str(exc)}})
        return False
    finally:
        try:
            metrics_server.stop(timeout)
        except Exception as exc:
            log.error("metrics server stop", extra={"fields": {"error": str(exc)}})
        database.close()

    log.info("Shutdown success")
    return True


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the service until SIGTERM, SIGINT or SIGQUIT arrives."""
    parser = argparse.ArgumentParser(
        prog="devicewatch",
        description="Collect device messages, match them against tags and serve reports.",
    )
    parser.parse_args(argv)

    stop_event = threading.Event()

    def on_signal(_signum: int, _frame: Any) -> None:
        stop_event.set()

    for name in ("SIGTERM", "SIGINT", "SIGQUIT"):
        signum = getattr(signal, name, None)
        if signum is not None:
            signal.signal(signum, on_signal)

    try:
        config = get_config()
    except ConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 1

    try:
        clean = run(config, stop_event)
    except RepositoryError:
        return 1
    return 0 if clean else 1


if __name__ == "__main__":
    raise SystemExit(main())