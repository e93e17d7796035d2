"""Intake endpoint for device messages, with request counters."""

from __future__ import annotations

import ipaddress
import json
import threading
from typing import Any

from flask import Blueprint, Response, request

from ..models import Message

_FIELDS = (
    ("message", "Message"),
    ("message_type", "MessageType"),
    ("component", "Component"),
    ("address", "Address"),
)
_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


class Counter:
    """A monotonically increasing metric."""

    def __init__(self, name: str, help_text: str) -> None:
        self.name = name
        self.help_text = help_text
        self._lock = threading.Lock()
        self._value = 0

    def inc(self) -> None:
        with self._lock:
            self._value += 1

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class MetricsRegistry:
    """Named counters rendered in the Prometheus text exposition format."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, Counter] = {}

    def register(self, counter: Counter) -> None:
        """Add a counter; a second counter with the same name is an error."""
        with self._lock:
            if counter.name in self._counters:
                raise ValueError(
                    f"duplicate metrics collector registration attempted: {counter.name}"
                )
            self._counters[counter.name] = counter

    def render(self) -> str:
        with self._lock:
            counters = sorted(self._counters.values(), key=lambda c: c.name)
        lines = []
        for counter in counters:
            help_text = counter.help_text.replace("\\", "\\\\").replace("\n", "\\n")
            lines.append(f"# HELP {counter.name} {help_text}")
            lines.append(f"# TYPE {counter.name} counter")
            lines.append(f"{counter.name} {counter.value}")
        return "".join(line + "\n" for line in lines)


class _BindError(Exception):
    pass


def _is_ip(value: str) -> bool:
    if "%" in value:
        return False
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def _bind_body() -> dict[str, str]:
    if request.is_json:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise _BindError("request body is not a JSON object")
    elif request.mimetype in _FORM_TYPES:
        payload = request.form.to_dict()
    else:
        raise _BindError(f"unsupported content type {request.mimetype!r}")

    body: dict[str, str] = {}
    for key, _ in _FIELDS:
        value: Any = payload.get(key)
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise _BindError(f"field {key!r} must be a string")
        body[key] = value

    problems = [
        f"Field validation for '{label}' failed on the 'required' tag"
        for key, label in _FIELDS
        if body[key] == ""
    ]
    if body["address"] and not _is_ip(body["address"]):
        problems.append("Field validation for 'Address' failed on the 'ip' tag")
    if problems:
        raise _BindError("\n".join(problems))
    return body


def _error(status: int, text: str) -> Response:
    body = json.dumps({"error": True, "data": text}, separators=(",", ":"))
    return Response(body, status=status, mimetype="application/json")


def create_messages_blueprint(messages_service: Any, device_registry: Any,
                              registry: MetricsRegistry) -> Blueprint:
    """Routes under /messages; registers its request counters in ``registry``."""
    ingress = Counter("ingress_requests_total", "Total incoming requests")
    egress = Counter("egress_responses_total", "Total async responses sent")
    registry.register(egress)
    registry.register(ingress)

    blueprint = Blueprint("messages", __name__, url_prefix="/messages")

    @blueprint.post("/send_msg")
    def send_msg() -> Response:
        ingress.inc()
        try:
            body = _bind_body()
        except _BindError as exc:
            return _error(422, f"bind body: {exc}")

        device_id = device_registry.get_device_id_by_ip(body["address"])
        try:
            messages_service.create(
                Message(
                    message=body["message"],
                    message_type=body["message_type"],
                    component=body["component"],
                    device_id=0 if device_id is None else device_id,
                )
            )
        except Exception as exc:
            return _error(500, f"create message: {exc}")

        response = Response(json.dumps(202), status=200, mimetype="application/json")
        egress.inc()
        return response

    return blueprint