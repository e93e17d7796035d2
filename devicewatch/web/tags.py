"""Tag management endpoints."""

from __future__ import annotations

from typing import Any

from flask import Blueprint, Response

from ..models import Tag, UpdateTagOpts
from .common import (
    ApiError,
    _bind_body,
    _error_response,
    _Field,
    _Kind,
    _require_user,
    json_response,
    require_token,
)

_COMPARE_TYPES = ("<", ">", "=")

_CREATE_FIELDS = (
    _Field("name", "Name", _Kind.STR, required=True),
    _Field("device_id", "DeviceID", _Kind.INT, required=True),
    _Field("regexp", "Regexp", _Kind.STR, required=True),
    _Field("compare_type", "CompareType", _Kind.STR, required=True, choices=_COMPARE_TYPES),
    _Field("value", "Value", _Kind.STR, required=True),
    _Field("array_index", "ArrayIndex", _Kind.INT, required=True),
    _Field("subject", "Subject", _Kind.STR, required=True),
    _Field("severity_level", "SeverityLevel", _Kind.STR),
)
_UPDATE_FIELDS = (
    _Field("id", "ID", _Kind.INT, required=True),
    _Field("name", "Name", _Kind.STR),
    _Field("device_id", "DeviceID", _Kind.INT),
    _Field("regexp", "Regexp", _Kind.STR),
    _Field("compare_type", "CompareType", _Kind.STR, choices=_COMPARE_TYPES),
    _Field("value", "Value", _Kind.STR),
    _Field("array_index", "ArrayIndex", _Kind.INT),
    _Field("subject", "Subject", _Kind.STR),
    _Field("severity_level", "SeverityLevel", _Kind.STR),
)
_DELETE_FIELDS = (_Field("id", "ID", _Kind.INT, required=True),)
_UPDATABLE = tuple(f.key for f in _UPDATE_FIELDS if f.key != "id")


def create_tags_blueprint(tags_service: Any, messages_service: Any, jwt_key: str) -> Blueprint:
    """Routes under /tags; every route needs a valid bearer token."""
    blueprint = Blueprint("tags", __name__, url_prefix="/tags")
    blueprint.before_request(require_token(jwt_key))
    blueprint.register_error_handler(ApiError, _error_response)

    @blueprint.post("/create")
    def create() -> Response:
        body = _bind_body(_CREATE_FIELDS)
        try:
            tag = tags_service.create(Tag(**body))
        except Exception as exc:
            raise ApiError(500, f"create tag: {exc}") from exc
        messages_service.update_tags()
        return json_response({"data": tag.to_dict()}, 200)

    @blueprint.get("/read")
    def read() -> Response:
        _require_user()
        try:
            tags = tags_service.read()
        except Exception as exc:
            raise ApiError(500, f"read tags: {exc}") from exc
        return json_response({"data": {"Tags": [t.to_dict() for t in tags]}}, 200)

    @blueprint.put("/update")
    def update() -> Response:
        _require_user()
        body = _bind_body(_UPDATE_FIELDS)
        if not any(body[key] for key in _UPDATABLE):
            raise ApiError(400, "nothing to update: every tag field is empty")
        failure = None
        try:
            tags_service.update(UpdateTagOpts(**body))
        except Exception as exc:
            failure = exc
        messages_service.update_tags()
        if failure is not None:
            raise ApiError(500, f"update tag: {failure}") from failure
        return json_response({"data": 200}, 200)

    @blueprint.delete("/delete")
    def delete() -> Response:
        _require_user()
        body = _bind_body(_DELETE_FIELDS)
        try:
            tags_service.delete(body["id"])
        except Exception as exc:
            raise ApiError(500, f"delete tag: {exc}") from exc
        messages_service.update_tags()
        return json_response({"data": 200}, 200)

    return blueprint