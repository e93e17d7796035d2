"""Domain records shared by the repositories, services and HTTP layer."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1

Comparator = Callable[[str, str], bool]


def _format_time(moment: Optional[datetime]) -> Optional[str]:
    """Render a timestamp the way the API has always sent it (RFC 3339)."""
    if moment is None:
        return None
    text = moment.isoformat()
    if "." in text:
        head, _, tail = text.partition(".")
        digits = tail.rstrip("0123456789")
        fraction = tail[: len(tail) - len(digits)].rstrip("0")
        text = f"{head}.{fraction}{digits}" if fraction else f"{head}{digits}"
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def encode_int_array(values: Optional[list[int]]) -> bytes:
    """Encode a list of ids as the compact JSON stored in a jsonb column."""
    if values is None:
        return b"null"
    return json.dumps([int(v) for v in values], separators=(",", ":")).encode("utf-8")


def decode_int_array(raw: Any) -> list[int]:
    """Decode a jsonb column holding a list of 32-bit ids."""
    if isinstance(raw, (bytes, bytearray, memoryview)):
        text = bytes(raw).decode("utf-8")
    elif isinstance(raw, str):
        text = raw
    else:
        raise ValueError("int array: item not created")
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"int array: {exc}") from exc
    if decoded is None:
        return []
    if not isinstance(decoded, list):
        raise ValueError("int array: value is not a JSON array")
    result = []
    for item in decoded:
        if isinstance(item, bool) or not isinstance(item, int):
            raise ValueError(f"int array: {item!r} is not an integer")
        if not _INT32_MIN <= item <= _INT32_MAX:
            raise ValueError(f"int array: {item} is out of range")
        result.append(item)
    return result


@dataclass
class Device:
    """A monitored device and the users responsible for it."""

    id: int = 0
    name: str = ""
    device_type: str = ""
    address: str = ""
    responsible: list[int] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ID": self.id,
            "Name": self.name,
            "DeviceType": self.device_type,
            "Address": self.address,
            "Responsible": None if self.responsible is None else list(self.responsible),
            "CreatedAt": _format_time(self.created_at),
            "UpdatedAt": _format_time(self.updated_at),
        }


@dataclass
class Tag:
    """A rule matched against incoming device messages."""

    id: int = 0
    name: str = ""
    device_id: int = 0
    regexp: str = ""
    compare_type: str = ""
    value: str = ""
    array_index: int = 0
    subject: str = ""
    severity_level: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    compare_func: Optional[Comparator] = field(default=None, repr=False, compare=False)
    compiled_regexp: Optional[re.Pattern] = field(default=None, repr=False, compare=False)

    def compare(self, value: str) -> bool:
        """Compare a captured value with the tag's threshold."""
        if self.compare_func is None:
            raise TypeError(f"tag {self.id} has no comparator")
        return self.compare_func(value, self.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ID": self.id,
            "Name": self.name,
            "DeviceId": self.device_id,
            "Regexp": self.regexp,
            "CompareType": self.compare_type,
            "Value": self.value,
            "ArrayIndex": self.array_index,
            "Subject": self.subject,
            "SeverityLevel": self.severity_level,
            "CreatedAt": _format_time(self.created_at),
            "UpdatedAt": _format_time(self.updated_at),
        }


@dataclass
class Message:
    """A message reported by a device."""

    id: int = 0
    got_at: Optional[datetime] = None
    device_id: int = 0
    message: str = ""
    message_type: str = ""
    severity_level: str = ""
    component: str = ""
    device_ip: str = ""


@dataclass
class CountByDeviceID:
    device_id: int = 0
    count: int = 0


@dataclass
class SentNotification:
    message: str
    device_id: int
    expired_at: datetime


@dataclass
class MonthReportRow:
    """One row of the thirty-day activity report."""

    device_id: int = 0
    message_type: str = ""
    active_days: int = 0
    total_messages: int = 0
    avg_daily_messages: float = 0.0
    max_daily_messages: int = 0
    median_daily_messages: float = 0.0
    total_critical: int = 0
    max_daily_critical: int = 0
    max_daily_components: int = 0
    most_active_component: Optional[str] = None
    first_critical_time: Optional[datetime] = None
    last_critical_time: Optional[datetime] = None
    avg_critical_interval_sec: Optional[float] = None
    critical_percentage: float = 0.0
    overall_volume_rank: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "DeviceID": self.device_id,
            "MessageType": self.message_type,
            "ActiveDays": self.active_days,
            "TotalMessages": self.total_messages,
            "AvgDailyMessages": self.avg_daily_messages,
            "MaxDailyMessages": self.max_daily_messages,
            "MedianDailyMessages": self.median_daily_messages,
            "TotalCritical": self.total_critical,
            "MaxDailyCritical": self.max_daily_critical,
            "MaxDailyComponents": self.max_daily_components,
            "MostActiveComponent": self.most_active_component,
            "FirstCriticalTime": _format_time(self.first_critical_time),
            "LastCriticalTime": _format_time(self.last_critical_time),
            "AvgCriticalIntervalSec": self.avg_critical_interval_sec,
            "CriticalPercentage": self.critical_percentage,
            "OverallVolumeRank": self.overall_volume_rank,
        }


@dataclass
class UpdateDeviceOpts:
    """Partial device update; None leaves a column unchanged."""

    id: int
    name: Optional[str] = None
    device_type: Optional[str] = None
    address: Optional[str] = None
    responsible: Optional[list[int]] = None


@dataclass
class UpdateTagOpts:
    """Partial tag update; None leaves a column unchanged."""

    id: int
    name: Optional[str] = None
    device_id: Optional[int] = None
    regexp: Optional[str] = None
    compare_type: Optional[str] = None
    value: Optional[str] = None
    array_index: Optional[int] = None
    subject: Optional[str] = None
    severity_level: Optional[str] = None