"""Device storage."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any, Optional

from .database import Database
from .models import Device, UpdateDeviceOpts, decode_int_array, encode_int_array
from .repository import DeviceExistsError, DeviceNotFoundError, RepositoryError

_COLUMNS = 'id, device_type, "name", address, responsible, created_at, updated_at'

_INSERT = """
insert into devices (device_type, "name", address, responsible, created_at)
values (:device_type, :name, :address, :responsible, :created_at)
"""
_SELECT_BY_ID = f"select {_COLUMNS} from devices where id = :id"
_READ = f"select {_COLUMNS} from devices where deleted_at is null"
_UPDATE = """
update devices
set name = coalesce(:name, name),
    device_type = coalesce(:device_type, device_type),
    address = coalesce(:address, address),
    responsible = coalesce(:responsible, responsible),
    updated_at = :updated_at
where id = :id and deleted_at is null
"""
_DELETE = "delete from devices where id = :id and deleted_at is null"
_GET_RESPONSIBLE = "select responsible from devices where id = :id and deleted_at is null"


def _now() -> str:
    return datetime.now().astimezone().isoformat()


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _encode(values: Optional[list[int]]) -> str:
    return encode_int_array(values).decode("utf-8")


def _device_from_row(row: sqlite3.Row) -> Device:
    try:
        responsible = decode_int_array(row["responsible"])
    except ValueError as exc:
        raise RepositoryError(f"scan responsible: {exc}") from exc
    return Device(
        id=row["id"],
        name=row["name"],
        device_type=row["device_type"],
        address=row["address"],
        responsible=responsible,
        created_at=_to_datetime(row["created_at"]),
        updated_at=_to_datetime(row["updated_at"]),
    )


class DevicesTransaction:
    """Device operations inside one database transaction."""

    def __init__(self, handle: Any, log: logging.Logger) -> None:
        self._tx = handle
        self._log = log

    def __enter__(self) -> DevicesTransaction:
        return self

    def __exit__(self, *exc_info: Any) -> bool:
        if self._tx.active:
            self._tx.rollback()
        return False

    def commit(self) -> None:
        self._tx.commit()

    def rollback(self) -> None:
        self._tx.rollback()

    def create(self, device: Device) -> Device:
        """Insert a device and return it as stored."""
        params = {
            "name": device.name,
            "device_type": device.device_type,
            "address": device.address,
            "responsible": _encode(device.responsible),
            "created_at": _now(),
        }
        try:
            cursor = self._tx.execute(_INSERT, params)
            row = self._tx.execute(_SELECT_BY_ID, {"id": cursor.lastrowid}).fetchone()
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise DeviceExistsError() from exc
            raise RepositoryError(f"insert device: {exc}") from exc
        except sqlite3.Error as exc:
            raise RepositoryError(f"insert device: {exc}") from exc
        if row is None:
            raise DeviceNotFoundError()
        return _device_from_row(row)

    def read(self) -> list[Device]:
        """Return every device that has not been deleted."""
        try:
            rows = self._tx.execute(_READ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(f"read devices: {exc}") from exc
        return [_device_from_row(row) for row in rows]

    def update(self, opts: UpdateDeviceOpts) -> None:
        """Change the given columns; None (or an empty responsible list) keeps a column."""
        responsible = _encode(opts.responsible) if opts.responsible else None
        params = {
            "id": opts.id,
            "name": opts.name,
            "device_type": opts.device_type,
            "address": opts.address,
            "responsible": responsible,
            "updated_at": _now(),
        }
        try:
            self._tx.execute(_UPDATE, params)
        except sqlite3.Error as exc:
            raise RepositoryError(f"update device: {exc}") from exc

    def delete(self, device_id: int) -> None:
        try:
            self._tx.execute(_DELETE, {"id": device_id})
        except sqlite3.Error as exc:
            raise RepositoryError(f"delete device: {exc}") from exc

    def get_responsible(self, device_id: int) -> list[int]:
        """Return the ids of the users responsible for a device."""
        try:
            row = self._tx.execute(_GET_RESPONSIBLE, {"id": device_id}).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError(f"get responsible: {exc}") from exc
        if row is None:
            raise DeviceNotFoundError()
        try:
            return decode_int_array(row["responsible"])
        except ValueError as exc:
            raise RepositoryError(f"scan responsible: {exc}") from exc


class DevicesRepo:
    """Opens device transactions on a database."""

    def __init__(self, database: Database, log: logging.Logger) -> None:
        self._database = database
        self._log = log

    def begin(self) -> DevicesTransaction:
        return DevicesTransaction(self._database.transaction(), self._log)