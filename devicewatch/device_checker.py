"""Periodic health checks of registered devices."""

from __future__ import annotations

import http.client
import logging
import threading
import urllib.error
import urllib.request
from http import HTTPStatus
from typing import Any, Optional

from .models import Message

_OPENER = urllib.request.build_opener(urllib.request.ProxyHandler({}))


def _healthcheck_status(ip: str) -> int:
    try:
        with _OPENER.open(f"http://{ip}/healthcheck") as response:
            response.read()
            return response.status
    except urllib.error.HTTPError as exc:
        exc.close()
        return exc.code


class DeviceChecker:
    """Polls ``http://<ip>/healthcheck`` of every known device every ``period`` seconds."""

    def __init__(self, device_registry: Any, messages_service: Any, period: int,
                 log: logging.Logger) -> None:
        self._registry = device_registry
        self._messages = messages_service
        self.period = int(period)
        self._log = log
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def check_once(self) -> None:
        """Check every device once, recording an error message for each failure.

        An unreachable device ends the round.
        """
        for ip in self._registry.get_device_ips():
            device_id = self._registry.get_device_id_by_ip(ip)
            if device_id is None:
                self._log.warning("device not found", extra={"fields": {"ip": ip}})
                continue
            try:
                status = _healthcheck_status(ip)
            except (OSError, http.client.HTTPException):
                self._report(device_id, f"unable to connect to device {ip}")
                return
            if status != HTTPStatus.OK:
                self._report(device_id, f"device {ip} status is not OK")

    def _report(self, device_id: int, text: str) -> None:
        message = Message(
            device_id=device_id,
            message=text,
            message_type="error",
            component="General",
        )
        # A failed report must not stop the health checks.
        try:
            self._messages.create(message)
        except Exception as exc:
            self._log.error("messages_service.create", extra={"fields": {"error": str(exc)}})

    def start(self) -> None:
        """Run checks in a background thread; an invalid period is logged and ignored."""
        if self.period <= 0:
            self._log.error(
                "error adding device checker to cron",
                extra={"fields": {"error": f"invalid period {self.period}"}},
            )
            return
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="device-checker", daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        while not self._stop_event.wait(self.period):
            self.check_once()

    def stop(self) -> None:
        """Stop the background checks and wait for the current round to end."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None