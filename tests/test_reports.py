from datetime import datetime, timezone

import jwt
import pytest
from flask import Flask

from devicewatch.messages_service import CountReport, MessageReport
from devicewatch.models import MonthReportRow
from devicewatch.web.reports import create_reports_blueprint

JWT_KEY = "secret"


class FakeMessages:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []
        self.report = MessageReport(
            device_id=7,
            name="router",
            device_type="switch",
            address="10.0.0.7",
            responsible=[1, 2],
            got_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            message="link down",
            message_type="error",
        )
        self.count = CountReport(
            device_id=7, name="router", device_type="switch",
            address="10.0.0.7", responsible=[1], count=12,
        )
        self.row = MonthReportRow(
            device_id=7, message_type="error", active_days=3, total_messages=150,
            avg_daily_messages=50.0, max_daily_messages=70, median_daily_messages=40.0,
            total_critical=3, max_daily_critical=2, max_daily_components=1,
            most_active_component="General", first_critical_time=None,
            last_critical_time=None, avg_critical_interval_sec=None,
            critical_percentage=2.0, overall_volume_rank=1,
        )

    def _check(self):
        if self.fail:
            raise RuntimeError("storage unavailable")

    def get_all_by_device_id(self, device_id):
        self._check()
        self.calls.append(("device", device_id))
        return [self.report]

    def get_all_by_period(self, start, end):
        self._check()
        self.calls.append(("period", start, end))
        return [self.report]

    def get_count_by_message_type(self, message_type):
        self._check()
        self.calls.append(("count", message_type))
        return [self.count]

    def month_report(self):
        self._check()
        return [self.row]


def _client(service):
    app = Flask(__name__)
    app.register_blueprint(create_reports_blueprint(service, JWT_KEY))
    return app.test_client()


def _auth():
    encoded = jwt.encode({"localID": 5}, JWT_KEY, algorithm="HS256")
    return {"Authorization": "Bearer " + encoded}


def test_missing_token_is_unauthorized():
    response = _client(FakeMessages()).get("/reports/month_report")
    assert response.status_code == 401
    assert response.get_json()["error"] is True


def test_bad_token_is_unauthorized():
    response = _client(FakeMessages()).get(
        "/reports/month_report", headers={"Authorization": "Bearer token"}
    )
    assert response.status_code == 401


def test_get_all_by_device_id():
    service = FakeMessages()
    response = _client(service).get(
        "/reports/get_all_by_device_id", json={"device_id": 7}, headers=_auth()
    )
    assert response.status_code == 200
    assert service.calls == [("device", 7)]
    assert response.get_json() == {"data": [service.report.to_dict()]}


def test_get_all_by_device_id_requires_device():
    service = FakeMessages()
    response = _client(service).get("/reports/get_all_by_device_id", json={}, headers=_auth())
    assert response.status_code == 422
    assert service.calls == []


def test_get_all_by_period_parses_times():
    service = FakeMessages()
    response = _client(service).get(
        "/reports/get_all_by_period",
        json={"start_time": "2024-01-01T00:00:00Z", "end_time": "2024-02-01T10:30:00+03:00"},
        headers=_auth(),
    )
    assert response.status_code == 200
    kind, start, end = service.calls[0]
    assert kind == "period"
    assert start == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert end == datetime(2024, 2, 1, 7, 30, tzinfo=timezone.utc)
    assert response.get_json()["data"] == [service.report.to_dict()]


@pytest.mark.parametrize(
    "payload",
    [
        {"start_time": "2024-01-01T00:00:00", "end_time": "2024-01-02T00:00:00Z"},
        {"start_time": "yesterday", "end_time": "2024-01-02T00:00:00Z"},
        {"end_time": "2024-01-02T00:00:00Z"},
    ],
)
def test_get_all_by_period_rejects_bad_times(payload):
    service = FakeMessages()
    response = _client(service).get("/reports/get_all_by_period", json=payload, headers=_auth())
    assert response.status_code == 422
    assert service.calls == []


def test_get_count_by_message_type():
    service = FakeMessages()
    response = _client(service).get(
        "/reports/get_count_by_message_type", json={"message_type": "error"}, headers=_auth()
    )
    assert response.status_code == 200
    assert service.calls == [("count", "error")]
    assert response.get_json() == {"data": [service.count.to_dict()]}


def test_month_report():
    service = FakeMessages()
    response = _client(service).get("/reports/month_report", headers=_auth())
    assert response.status_code == 200
    assert response.get_json() == {"data": [service.row.to_dict()]}


def test_service_failure_is_internal_error():
    response = _client(FakeMessages(fail=True)).get("/reports/month_report", headers=_auth())
    assert response.status_code == 500
    body = response.get_json()
    assert body["error"] is True
    assert "storage unavailable" in body["data"]