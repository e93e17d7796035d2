"""Shared pieces of the HTTP API: token checks, JSON responses and body binding."""

from __future__ import annotations

import enum
import json
import math
from dataclasses import dataclass
from typing import Any, Callable

import jwt
from flask import Response, g, request

from ..validation import is_ip

_LOCAL_ID = "localID"
_ALGORITHMS = ["HS256", "HS384", "HS512"]
_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_MISSING = object()
_BEARER_PREFIX = "Bearer "


class ApiError(Exception):
    """An error answered with ``{"error": true, "data": message}`` and a status code."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


def parse_token(header: str, jwt_key: str) -> int:
    """Return the user id carried by a bearer token signed with ``jwt_key``."""
    if not header:
        raise ApiError(401, "token is empty")
    encoded = header.replace(_BEARER_PREFIX, "")
    try:
        claims = jwt.decode(
            encoded, jwt_key, algorithms=_ALGORITHMS, options={"verify_iat": False}
        )
    except jwt.PyJWTError as exc:
        raise ApiError(401, f"parse token: {exc}") from exc
    if not isinstance(claims, dict):
        raise ApiError(401, "token claims: invalid token")
    user_id = claims.get(_LOCAL_ID)
    if isinstance(user_id, bool) or not isinstance(user_id, (int, float)):
        raise ApiError(401, f"claims[{_LOCAL_ID}]: invalid token")
    if isinstance(user_id, float) and not math.isfinite(user_id):
        raise ApiError(401, f"claims[{_LOCAL_ID}]: invalid token")
    return int(user_id)


def require_token(jwt_key: str) -> Callable[[], None]:
    """A before-request hook that stores the caller's id in ``flask.g.user_id``."""

    def check() -> None:
        g.user_id = parse_token(request.headers.get("Authorization", ""), jwt_key)

    return check


def json_response(payload: Any, status: int = 200) -> Response:
    """Serialise ``payload`` as compact JSON."""
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return Response(body, status=status, mimetype="application/json")


def _error_response(exc: ApiError) -> Response:
    return json_response({"error": True, "data": exc.message}, exc.status)


def _require_user() -> int:
    user_id = g.get("user_id")
    if not isinstance(user_id, int):
        raise ApiError(401, "user id: invalid token")
    return user_id


class _Kind(enum.Enum):
    STR = "string"
    INT = "integer"
    INT_LIST = "list of integers"


@dataclass(frozen=True)
class _Field:
    """How one request field is read and validated."""

    key: str
    label: str
    kind: _Kind
    required: bool = False
    ip: bool = False
    choices: tuple[str, ...] = ()


def _bind_error(text: str) -> ApiError:
    return ApiError(422, f"bind body: {text}")


def _to_int(field: _Field, value: Any, from_form: bool) -> int:
    if from_form and isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError as exc:
            raise _bind_error(f"field {field.key!r} must be an integer") from exc
    if isinstance(value, bool) or not isinstance(value, int):
        raise _bind_error(f"field {field.key!r} must be an integer")
    if not _INT32_MIN <= value <= _INT32_MAX:
        raise _bind_error(f"field {field.key!r} is out of range")
    return value


def _convert(field: _Field, value: Any, from_form: bool) -> Any:
    if value is _MISSING:
        return {_Kind.STR: "", _Kind.INT: 0, _Kind.INT_LIST: []}[field.kind]
    if value is None:
        return {_Kind.STR: "", _Kind.INT: 0, _Kind.INT_LIST: None}[field.kind]
    if field.kind is _Kind.STR:
        if not isinstance(value, str):
            raise _bind_error(f"field {field.key!r} must be a string")
        return value
    if field.kind is _Kind.INT:
        return _to_int(field, value, from_form)
    if not isinstance(value, list):
        raise _bind_error(f"field {field.key!r} must be a list of integers")
    return [_to_int(field, item, from_form) for item in value]


def _raw_values(fields: tuple[_Field, ...]) -> tuple[dict[str, Any], bool]:
    if request.is_json:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise _bind_error("request body is not a JSON object")
        return {f.key: payload.get(f.key, _MISSING) for f in fields}, False
    if request.mimetype in _FORM_TYPES:
        form = request.form
        raw: dict[str, Any] = {}
        for f in fields:
            if f.key not in form:
                raw[f.key] = _MISSING
            elif f.kind is _Kind.INT_LIST:
                raw[f.key] = form.getlist(f.key)
            else:
                raw[f.key] = form.get(f.key)
        return raw, True
    raise _bind_error(f"unsupported content type {request.mimetype!r}")


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, int) and value == 0)


def _bind_body(fields: tuple[_Field, ...]) -> dict[str, Any]:
    """Read and validate the request body; failures raise a 422 ApiError."""
    raw, from_form = _raw_values(fields)
    body = {f.key: _convert(f, raw[f.key], from_form) for f in fields}

    problems = []
    for f in fields:
        value = body[f.key]
        if f.required and _is_empty(value):
            problems.append(f"Field validation for '{f.label}' failed on the 'required' tag")
            continue
        if f.kind is not _Kind.STR or value == "":
            continue
        if f.ip and not is_ip(value):
            problems.append(f"Field validation for '{f.label}' failed on the 'ip' tag")
        if f.choices and value not in f.choices:
            problems.append(f"Field validation for '{f.label}' failed on the 'oneof' tag")
    if problems:
        raise _bind_error("\n".join(problems))
    return body