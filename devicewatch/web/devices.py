"""Device management endpoints."""

from __future__ import annotations

from typing import Any

from flask import Blueprint, Response

from ..models import Device, UpdateDeviceOpts
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

_CREATE_FIELDS = (
    _Field("name", "Name", _Kind.STR, required=True),
    _Field("device_type", "DeviceType", _Kind.STR, required=True),
    _Field("address", "Address", _Kind.STR, required=True, ip=True),
    _Field("responsible", "Responsible", _Kind.INT_LIST, required=True),
)
_UPDATE_FIELDS = (
    _Field("id", "ID", _Kind.INT, required=True),
    _Field("name", "Name", _Kind.STR),
    _Field("device_type", "DeviceType", _Kind.STR),
    _Field("address", "Address", _Kind.STR, ip=True),
    _Field("responsible", "Responsible", _Kind.INT_LIST),
)
_DELETE_FIELDS = (_Field("id", "ID", _Kind.INT, required=True),)


def create_devices_blueprint(devices_service: Any, messages_service: Any,
                             device_registry: Any, jwt_key: str) -> Blueprint:
    """Routes under /devices; every route needs a valid bearer token."""
    blueprint = Blueprint("devices", __name__, url_prefix="/devices")
    blueprint.before_request(require_token(jwt_key))
    blueprint.register_error_handler(ApiError, _error_response)

    def refresh() -> None:
        messages_service.update_devices()
        if device_registry is not None:
            device_registry.update_devices()

    @blueprint.post("/create")
    def create() -> Response:
        body = _bind_body(_CREATE_FIELDS)
        try:
            device = devices_service.create(
                Device(
                    name=body["name"],
                    device_type=body["device_type"],
                    address=body["address"],
                    responsible=body["responsible"],
                )
            )
        except Exception as exc:
            raise ApiError(500, f"create device: {exc}") from exc
        refresh()
        return json_response({"data": device.to_dict()}, 200)

    @blueprint.get("/read")
    def read() -> Response:
        _require_user()
        try:
            devices = devices_service.read()
        except Exception as exc:
            raise ApiError(500, f"read devices: {exc}") from exc
        return json_response({"data": {"Devices": [d.to_dict() for d in devices]}}, 200)

    @blueprint.put("/update")
    def update() -> Response:
        _require_user()
        body = _bind_body(_UPDATE_FIELDS)
        if not (body["name"] or body["device_type"] or body["address"] or body["responsible"]):
            raise ApiError(
                400, "nothing to update: name, device_type, address and responsible are empty"
            )
        try:
            devices_service.update(
                UpdateDeviceOpts(
                    id=body["id"],
                    name=body["name"],
                    device_type=body["device_type"],
                    address=body["address"],
                    responsible=body["responsible"],
                )
            )
        except Exception as exc:
            raise ApiError(500, f"update device: {exc}") from exc
        refresh()
        return json_response({"data": 200}, 200)

    @blueprint.delete("/delete")
    def delete() -> Response:
        _require_user()
        body = _bind_body(_DELETE_FIELDS)
        try:
            devices_service.delete(body["id"])
        except Exception as exc:
            raise ApiError(500, f"delete device: {exc}") from exc
        refresh()
        return json_response({"data": 200}, 200)

    return blueprint