import logging
import threading
import time
import urllib.request
import uuid
import json

import jwt
import pytest

from devicewatch.models import Device
from devicewatch.web.messages import MetricsRegistry
from devicewatch.web.server import Server, create_app

JWT_KEY = "secret"


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class FakeDevices:
    def __init__(self):
        self.device = Device(
            id=1, name="edge", device_type="router", address="10.0.0.1", responsible=[4]
        )

    def read(self):
        return [self.device]


class FakeTags:
    def read(self):
        return []


class FakeMessages:
    def __init__(self):
        self.created = []

    def update_devices(self):
        pass

    def update_tags(self):
        pass

    def create(self, message):
        self.created.append(message)

    def month_report(self):
        return []


class FakeRegistry:
    def get_device_id_by_ip(self, address):
        return 3

    def update_devices(self):
        pass


def _logger(name):
    log = logging.getLogger(name)
    log.setLevel(logging.DEBUG)
    log.propagate = False
    handler = ListHandler()
    log.handlers = [handler]
    return log, handler


def _build(log_queries=False, name="test-server"):
    log, handler = _logger(name)
    messages = FakeMessages()
    metrics = MetricsRegistry()
    app = create_app(
        JWT_KEY, log_queries, FakeDevices(), FakeTags(), messages, FakeRegistry(), log, metrics
    )
    return app, handler, messages, metrics


def _auth():
    return {"Authorization": "Bearer " + jwt.encode({"localID": 1}, JWT_KEY, algorithm="HS256")}


def test_unknown_route_returns_json_error():
    app, handler, _, _ = _build(name="test-server-404")
    response = app.test_client().get("/nope")
    assert response.status_code == 404
    assert response.get_json() == {"error": True, "data": "Cannot GET /nope"}
    assert response.headers["Content-Type"] == "application/json"
    errors = [r for r in handler.records if r.levelno == logging.ERROR]
    assert errors and errors[-1].fields["status"] == 404


def test_request_id_header_is_a_fresh_uuid():
    app, _, _, _ = _build()
    client = app.test_client()
    first = client.get("/nope").headers["X-Request-ID"]
    second = client.get("/nope").headers["X-Request-ID"]
    assert uuid.UUID(first).version == 4
    assert uuid.UUID(second).version == 4
    assert first != second


def test_devices_routes_mounted_and_protected():
    app, _, _, _ = _build()
    client = app.test_client()
    assert client.get("/monolith/v1/devices/read").status_code == 401
    response = client.get("/monolith/v1/devices/read", headers=_auth())
    assert response.status_code == 200
    assert response.get_json() == {"data": {"Devices": [FakeDevices().device.to_dict()]}}


def test_tags_and_reports_routes_mounted():
    app, _, _, _ = _build()
    client = app.test_client()
    tags = client.get("/monolith/v1/tags/read", headers=_auth())
    assert tags.get_json() == {"data": {"Tags": []}}
    report = client.get("/monolith/v1/reports/month_report", headers=_auth())
    assert report.get_json() == {"data": []}


def test_send_message_counts_requests():
    app, _, messages, metrics = _build()
    response = app.test_client().post(
        "/monolith/v1/messages/send_msg",
        json={"message": "m", "message_type": "error", "component": "General",
              "address": "10.0.0.5"},
    )
    assert response.status_code == 200
    assert response.get_json() == 202
    assert messages.created[0].device_id == 3
    rendered = metrics.render()
    assert "ingress_requests_total 1" in rendered
    assert "egress_responses_total 1" in rendered


def test_log_queries_logs_each_request():
    app, handler, _, _ = _build(log_queries=True, name="test-server-queries")
    app.test_client().get("/monolith/v1/reports/month_report", headers=_auth())
    requests = [r for r in handler.records if r.getMessage() == "Request"]
    assert len(requests) == 1
    assert "/monolith/v1/reports/month_report" in requests[0].fields["req"]


def test_no_request_log_by_default():
    app, handler, _, _ = _build(name="test-server-quiet")
    app.test_client().get("/monolith/v1/reports/month_report", headers=_auth())
    assert [r for r in handler.records if r.getMessage() == "Request"] == []


def test_run_serves_until_stopped():
    app, _, _, _ = _build()
    server = Server(app, "127.0.0.1:0")
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()
    deadline = time.monotonic() + 5
    while server.port is None and time.monotonic() < deadline:
        time.sleep(0.01)
    assert server.port is not None
    req = urllib.request.Request(
        f"http://127.0.0.1:{server.port}/monolith/v1/reports/month_report", headers=_auth()
    )
    with urllib.request.urlopen(req, timeout=5) as response:
        assert json.loads(response.read()) == {"data": []}
    server.stop(5)
    thread.join(5)
    assert not thread.is_alive()


def test_stop_before_run_makes_run_return():
    app, _, _, _ = _build()
    server = Server(app, "127.0.0.1:0")
    server.stop(1)
    server.run()
    assert server.port is None


@pytest.mark.parametrize("addr", ["8080", "host:port", "127.0.0.1:70000"])
def test_invalid_address(addr):
    with pytest.raises(ValueError):
        Server(object(), addr)