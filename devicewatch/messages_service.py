"""Message intake, tag matching and the reports built over stored messages."""

from __future__ import annotations

import dataclasses
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from .models import Comparator, Device, Message, MonthReportRow, Tag, _format_time
from .repository import RepositoryError

_module_log = logging.getLogger(__name__)

_DEFAULT_DEVICE = Device(
    id=-1,
    name="unknown device",
    device_type="unknown device",
    address="unknown device",
    responsible=[],
)

_REVERSIBLE = (">", "<")
_FLIPPED = {">": "<", "<": ">"}


def _parse_number(text: str) -> float:
    """Parse a decimal number; anything unparsable counts as zero and is logged."""
    try:
        if text != text.strip() or "_" in text:
            raise ValueError(f"invalid syntax: {text!r}")
        return float(text)
    except ValueError as exc:
        _module_log.error("parse float", extra={"fields": {"error": str(exc)}})
        return 0.0


def make_comparator(compare_type: str) -> Comparator:
    """Return the comparison for a tag's compare type: "=", "<" or ">".

    "=" compares text; "<" and ">" compare the values as numbers.
    """
    if compare_type == "=":
        return lambda found, expected: found == expected
    if compare_type == "<":
        return lambda found, expected: _parse_number(found) < _parse_number(expected)
    if compare_type == ">":
        return lambda found, expected: _parse_number(found) > _parse_number(expected)
    raise ValueError(f"unknown compare type {compare_type!r}")


def _submatches(pattern: re.Pattern, text: str) -> Optional[list[str]]:
    """The leftmost match and its groups; groups that did not take part are empty."""
    match = pattern.search(text)
    if match is None:
        return None
    return [match.group(0)] + [group or "" for group in match.groups()]


@dataclass(frozen=True)
class CreateMessageResult:
    """What a stored message asks for: a notification text and subject, if any."""

    text: str = ""
    subject: str = ""
    need_notify: bool = False


@dataclass
class MessageReport:
    """A stored message joined with the device that sent it."""

    device_id: int
    name: str
    device_type: str
    address: str
    responsible: Optional[list[int]]
    got_at: Optional[datetime]
    message: str
    message_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "DeviceID": self.device_id,
            "Name": self.name,
            "DeviceType": self.device_type,
            "Address": self.address,
            "Responsible": None if self.responsible is None else list(self.responsible),
            "GotAt": _format_time(self.got_at),
            "Message": self.message,
            "MessageType": self.message_type,
        }


@dataclass
class CountReport:
    """The number of messages of one type from a device, with the device's details."""

    device_id: int
    name: str
    device_type: str
    address: str
    responsible: Optional[list[int]]
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "DeviceID": self.device_id,
            "Name": self.name,
            "DeviceType": self.device_type,
            "Address": self.address,
            "Responsible": None if self.responsible is None else list(self.responsible),
            "Count": self.count,
        }


@dataclass(frozen=True)
class _Handled:
    text: str
    subject: str
    need_notify: bool
    message: Message


class MessagesService:
    """Matches incoming messages against tags, stores them and builds reports."""

    def __init__(self, message_repo: Any, tag_repo: Any, devices_repo: Any,
                 log: logging.Logger, notification_period: timedelta = timedelta(0)) -> None:
        self._message_repo = message_repo
        self._tag_repo = tag_repo
        self._devices_repo = devices_repo
        self._log = log
        self.notification_period = notification_period
        self._lock = threading.Lock()
        self._devices: dict[int, Device] = {}
        self._tags: dict[int, list[Tag]] = {}
        self.update_tags()

    def set_devices(self, devices: list[Device]) -> None:
        """Replace the known devices."""
        by_id = {device.id: device for device in devices}
        with self._lock:
            self._devices = by_id
        self._log.debug("set devices", extra={"fields": {"devices": by_id}})

    def update_devices(self) -> None:
        """Reload the known devices from the devices repository."""
        try:
            tx = self._devices_repo.begin()
        except RepositoryError as exc:
            self._log.error("tx.BeginTx", extra={"fields": {"error": str(exc)}})
            return
        devices: list[Device] = []
        with tx:
            try:
                devices = tx.read()
            except RepositoryError as exc:
                self._log.error("tx.Read", extra={"fields": {"error": str(exc)}})
            try:
                tx.commit()
            except RepositoryError as exc:
                self._log.error("tx.Commit", extra={"fields": {"error": str(exc)}})
        self.set_devices(devices)

    def update_tags(self) -> None:
        """Reload tags; tags with an unknown compare type or a bad pattern are skipped.

        If the tags cannot be read, no tag is left active.
        """
        try:
            tx = self._tag_repo.begin()
        except RepositoryError as exc:
            self._log.error("tx.BeginTx", extra={"fields": {"error": str(exc)}})
            return
        with tx:
            try:
                db_tags = tx.read()
            except RepositoryError as exc:
                with self._lock:
                    self._tags = {}
                self._log.error("tags read", extra={"fields": {"error": str(exc)}})
                return

        by_device: dict[int, list[Tag]] = {}
        for db_tag in db_tags:
            try:
                comparator = make_comparator(db_tag.compare_type)
            except ValueError:
                self._log.error(
                    "unknown compare type",
                    extra={"fields": {"compare type": db_tag.compare_type}},
                )
                continue
            try:
                pattern = re.compile(db_tag.regexp)
            except re.error as exc:
                self._log.error("regexp compile", extra={"fields": {"error": str(exc)}})
                continue
            tag = dataclasses.replace(db_tag, compare_func=comparator, compiled_regexp=pattern)
            by_device.setdefault(tag.device_id, []).append(tag)

        with self._lock:
            self._tags = by_device

    def create(self, message: Message) -> CreateMessageResult:
        """Match a message against its device's tags, then store it."""
        handled = self._handle_message(message)
        with self._message_repo.begin() as tx:
            tx.create(handled.message)
            tx.commit()
        return CreateMessageResult(
            text=handled.text, subject=handled.subject, need_notify=handled.need_notify
        )

    def _handle_message(self, message: Message) -> _Handled:
        with self._lock:
            tags = list(self._tags.get(message.device_id, ()))
        for tag in tags:
            found = _submatches(tag.compiled_regexp, message.message)
            if found is None:
                continue
            if not 0 <= tag.array_index < len(found):
                raise ValueError(
                    f"tag {tag.id}: array index {tag.array_index} is out of range "
                    f"for {len(found)} submatches"
                )
            stored = message
            if tag.compare(found[tag.array_index]):
                if tag.compare_type in _REVERSIBLE:
                    self._handle_reversed_tag(tag)
                stored = dataclasses.replace(message, severity_level=tag.severity_level)
            return _Handled(
                text=message.message, subject=tag.subject, need_notify=True, message=stored
            )
        return _Handled(text="", subject="", need_notify=False, message=message)

    def _handle_reversed_tag(self, tag: Tag) -> None:
        """A fired threshold tag arms its opposite "OK" tag; a fired "OK" tag is removed."""
        try:
            with self._tag_repo.begin() as tx:
                if tag.subject == "OK":
                    tx.delete(tag.id)
                else:
                    reversed_tag = dataclasses.replace(
                        tag,
                        subject="OK",
                        severity_level="info",
                        compare_type=_FLIPPED.get(tag.compare_type, tag.compare_type),
                        compare_func=None,
                        compiled_regexp=None,
                    )
                    tx.create(reversed_tag)
                tx.commit()
        except RepositoryError as exc:
            self._log.error(
                "reverse tag", extra={"fields": {"error": str(exc), "tag id": tag.id}}
            )

    def _device_for(self, device_id: int) -> Device:
        with self._lock:
            return self._devices.get(device_id, _DEFAULT_DEVICE)

    def _message_report(self, message: Message) -> MessageReport:
        device = self._device_for(message.device_id)
        return MessageReport(
            device_id=message.device_id,
            name=device.name,
            device_type=device.device_type,
            address=device.address,
            responsible=None if device.responsible is None else list(device.responsible),
            got_at=message.got_at,
            message=message.message,
            message_type=message.message_type,
        )

    def get_all_by_period(self, start: datetime, end: datetime) -> list[MessageReport]:
        """Messages received between start and end, newest first."""
        with self._message_repo.begin() as tx:
            messages = tx.get_all_by_period(start, end)
            tx.commit()
        return [self._message_report(message) for message in messages]

    def get_all_by_device_id(self, device_id: int) -> list[MessageReport]:
        """Messages from one device, newest first."""
        with self._message_repo.begin() as tx:
            messages = tx.get_all_by_device_id(device_id)
            tx.commit()
        return [self._message_report(message) for message in messages]

    def get_count_by_message_type(self, message_type: str) -> list[CountReport]:
        """Per-device counts of messages of one type."""
        with self._message_repo.begin() as tx:
            counts = tx.get_count_by_message_type(message_type)
            tx.commit()
        reports = []
        for count in counts:
            device = self._device_for(count.device_id)
            reports.append(
                CountReport(
                    device_id=count.device_id,
                    name=device.name,
                    device_type=device.device_type,
                    address=device.address,
                    responsible=None if device.responsible is None else list(device.responsible),
                    count=count.count,
                )
            )
        return reports

    def month_report(self) -> list[MonthReportRow]:
        """The thirty-day activity report."""
        with self._message_repo.begin() as tx:
            rows = tx.month_report()
            tx.commit()
        return rows