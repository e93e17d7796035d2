"""Repository errors and the transaction interfaces the services rely on."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from .models import (
    CountByDeviceID,
    Device,
    Message,
    MonthReportRow,
    Tag,
    UpdateDeviceOpts,
    UpdateTagOpts,
)


class RepositoryError(Exception):
    """Base class for errors reported by a repository."""

    default_message = "repository error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class DeviceExistsError(RepositoryError):
    default_message = "device already exists"


class DeviceNotFoundError(RepositoryError):
    default_message = "device not found"


@runtime_checkable
class DevicesTransactionProtocol(Protocol):
    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def create(self, device: Device) -> Device: ...

    def read(self) -> list[Device]: ...

    def update(self, opts: UpdateDeviceOpts) -> None: ...

    def delete(self, device_id: int) -> None: ...

    def get_responsible(self, device_id: int) -> list[int]: ...


@runtime_checkable
class TagsTransactionProtocol(Protocol):
    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def create(self, tag: Tag) -> Tag: ...

    def read(self) -> list[Tag]: ...

    def update(self, opts: UpdateTagOpts) -> None: ...

    def delete(self, tag_id: int) -> None: ...


@runtime_checkable
class MessagesTransactionProtocol(Protocol):
    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def create(self, message: Message) -> None: ...

    def get_all_by_period(self, start: datetime, end: datetime) -> list[Message]: ...

    def get_all_by_device_id(self, device_id: int) -> list[Message]: ...

    def get_count_by_message_type(self, message_type: str) -> list[CountByDeviceID]: ...

    def month_report(self, now: datetime) -> list[MonthReportRow]: ...