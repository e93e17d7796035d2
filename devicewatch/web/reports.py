"""Report endpoints over stored messages."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from flask import Blueprint, Response

from .common import (
    ApiError,
    _bind_body,
    _error_response,
    _Field,
    _Kind,
    json_response,
    require_token,
)

_DEVICE_FIELDS = (_Field("device_id", "DeviceID", _Kind.INT, required=True),)
_PERIOD_FIELDS = (
    _Field("start_time", "StartTime", _Kind.STR, required=True),
    _Field("end_time", "EndTime", _Kind.STR, required=True),
)
_COUNT_FIELDS = (_Field("message_type", "MessageType", _Kind.STR, required=True),)


def _parse_time(key: str, text: str) -> datetime:
    """Parse an RFC 3339 timestamp; a time without an offset is rejected."""
    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        moment = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ApiError(422, f"bind body: field {key!r} must be an RFC 3339 time") from exc
    if moment.tzinfo is None:
        raise ApiError(422, f"bind body: field {key!r} must be an RFC 3339 time")
    return moment


def create_reports_blueprint(messages_service: Any, jwt_key: str) -> Blueprint:
    """Routes under /reports; every route needs a valid bearer token."""
    blueprint = Blueprint("reports", __name__, url_prefix="/reports")
    blueprint.before_request(require_token(jwt_key))
    blueprint.register_error_handler(ApiError, _error_response)

    @blueprint.get("/get_all_by_device_id")
    def get_all_by_device_id() -> Response:
        body = _bind_body(_DEVICE_FIELDS)
        try:
            reports = messages_service.get_all_by_device_id(body["device_id"])
        except Exception as exc:
            raise ApiError(500, f"get messages by device: {exc}") from exc
        return json_response({"data": [report.to_dict() for report in reports]}, 200)

    @blueprint.get("/get_all_by_period")
    def get_all_by_period() -> Response:
        body = _bind_body(_PERIOD_FIELDS)
        start = _parse_time("start_time", body["start_time"])
        end = _parse_time("end_time", body["end_time"])
        try:
            reports = messages_service.get_all_by_period(start, end)
        except Exception as exc:
            raise ApiError(500, f"get messages by period: {exc}") from exc
        return json_response({"data": [report.to_dict() for report in reports]}, 200)

    @blueprint.get("/get_count_by_message_type")
    def get_count_by_message_type() -> Response:
        body = _bind_body(_COUNT_FIELDS)
        try:
            counts = messages_service.get_count_by_message_type(body["message_type"])
        except Exception as exc:
            raise ApiError(500, f"count messages by type: {exc}") from exc
        return json_response({"data": [count.to_dict() for count in counts]}, 200)

    @blueprint.get("/month_report")
    def month_report() -> Response:
        try:
            rows = messages_service.month_report()
        except Exception as exc:
            raise ApiError(500, f"month report: {exc}") from exc
        return json_response({"data": [row.to_dict() for row in rows]}, 200)

    return blueprint