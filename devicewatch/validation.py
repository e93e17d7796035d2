"""Binding and validation of JSON request bodies."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping

_MISSING = object()
_SUPPORTED_KINDS = (str, int, list, datetime)
_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(\.\d+)?([Zz]|[+-]\d{2}:\d{2})"
)


class ValidationError(ValueError):
    """A request body field is missing, mistyped or invalid."""

    def __init__(self, field: str, rule: str, detail: str | None = None) -> None:
        self.field = field
        self.rule = rule
        super().__init__(detail or f"field '{field}' failed on the '{rule}' rule")


@dataclass(frozen=True)
class Field:
    """One expected body field.

    ``kind`` is str, int, list (of 32-bit ints) or datetime; ``bits`` bounds ints.
    Fields left at their zero value skip all checks except ``required``.
    """

    name: str
    kind: type = str
    required: bool = False
    ip: bool = False
    one_of: tuple = ()
    bits: int = 32

    def __post_init__(self) -> None:
        if self.kind not in _SUPPORTED_KINDS:
            raise TypeError(f"unsupported field kind {self.kind!r}")


def is_ip(value: Any) -> bool:
    """True for a plain IPv4 or IPv6 address."""
    if not isinstance(value, str) or "%" in value:
        return False
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def _lookup(payload: Mapping[str, Any], name: str) -> Any:
    if name in payload:
        return payload[name]
    folded = name.casefold()
    for key, value in payload.items():
        if isinstance(key, str) and key.casefold() == folded:
            return value
    return _MISSING


def _check_int(field: Field, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field.name, "type", f"field '{field.name}' must be an integer")
    limit = 2 ** (field.bits - 1)
    if not -limit <= value < limit:
        raise ValidationError(field.name, "type", f"field '{field.name}' is out of range")
    return value


def _parse_time(field: Field, value: Any) -> datetime:
    match = _RFC3339.fullmatch(value) if isinstance(value, str) else None
    if match is None:
        raise ValidationError(field.name, "type", f"field '{field.name}' must be an RFC 3339 time")
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    if zone in ("Z", "z"):
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
        tz = timezone(sign * offset)
    micros = int((fraction[1:] + "000000")[:6]) if fraction else 0
    try:
        return datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second), micros, tzinfo=tz
        )
    except ValueError as exc:
        raise ValidationError(field.name, "type", f"field '{field.name}': {exc}") from exc


def _convert(field: Field, raw: Any) -> Any:
    if raw is _MISSING or raw is None:
        if field.kind is str:
            return ""
        if field.kind is int:
            return 0
        if field.kind is list:
            return [] if raw is _MISSING else None
        return None
    if field.kind is str:
        if not isinstance(raw, str):
            raise ValidationError(field.name, "type", f"field '{field.name}' must be a string")
        return raw
    if field.kind is int:
        return _check_int(field, raw)
    if field.kind is list:
        if not isinstance(raw, list):
            raise ValidationError(field.name, "type", f"field '{field.name}' must be an array")
        item_field = Field(field.name, int, bits=32)
        return [_check_int(item_field, item) for item in raw]
    return _parse_time(field, raw)


def _is_zero(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, int) and value == 0)


def bind(payload: Any, fields: Iterable[Field]) -> dict[str, Any]:
    """Read the given fields from a decoded JSON object and validate them."""
    if not isinstance(payload, Mapping):
        raise ValidationError("body", "type", "request body must be a JSON object")
    values: dict[str, Any] = {}
    for field in fields:
        value = _convert(field, _lookup(payload, field.name))
        if _is_zero(value):
            if field.required:
                raise ValidationError(field.name, "required")
        else:
            if field.ip and not is_ip(value):
                raise ValidationError(field.name, "ip")
            if field.one_of and value not in field.one_of:
                raise ValidationError(field.name, "oneof")
        values[field.name] = value
    return values