"""Tag storage."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any, Optional

from .database import Database
from .models import Tag, UpdateTagOpts
from .repository import DeviceExistsError, DeviceNotFoundError, RepositoryError

_COLUMNS = (
    'id, "name", device_id, regexp, compare_type, value, array_index, '
    "subject, severity_level, created_at, updated_at"
)

_INSERT = """
insert into tags (name, device_id, regexp, compare_type, value, array_index, subject,
                  severity_level, created_at)
values (:name, :device_id, :regexp, :compare_type, :value, :array_index, :subject,
        :severity_level, :created_at)
"""
_SELECT_BY_ID = f"select {_COLUMNS} from tags where id = :id"
_READ = f"select {_COLUMNS} from tags where deleted_at is null"
_UPDATE = """
update tags
set name = coalesce(:name, name),
    device_id = coalesce(:device_id, device_id),
    regexp = coalesce(:regexp, regexp),
    compare_type = coalesce(:compare_type, compare_type),
    value = coalesce(:value, value),
    array_index = coalesce(:array_index, array_index),
    subject = coalesce(:subject, subject),
    severity_level = coalesce(:severity_level, severity_level),
    updated_at = :updated_at
where id = :id and deleted_at is null
"""
_DELETE = "delete from tags where id = :id and deleted_at is null"


def _now() -> str:
    return datetime.now().astimezone().isoformat()


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _tag_from_row(row: sqlite3.Row) -> Tag:
    return Tag(
        id=row["id"],
        name=row["name"],
        device_id=row["device_id"],
        regexp=row["regexp"],
        compare_type=row["compare_type"],
        value=row["value"],
        array_index=row["array_index"],
        subject=row["subject"],
        severity_level=row["severity_level"],
        created_at=_to_datetime(row["created_at"]),
        updated_at=_to_datetime(row["updated_at"]),
    )


class TagsTransaction:
    """Tag operations inside one database transaction."""

    def __init__(self, handle: Any, log: logging.Logger) -> None:
        self._tx = handle
        self._log = log

    def __enter__(self) -> TagsTransaction:
        return self

    def __exit__(self, *exc_info: Any) -> bool:
        if self._tx.active:
            self._tx.rollback()
        return False

    def commit(self) -> None:
        self._tx.commit()

    def rollback(self) -> None:
        self._tx.rollback()

    def create(self, tag: Tag) -> Tag:
        """Insert a tag and return it as stored.

        A unique-constraint violation is reported as DeviceExistsError.
        """
        params = {
            "name": tag.name,
            "device_id": tag.device_id,
            "regexp": tag.regexp,
            "compare_type": tag.compare_type,
            "value": tag.value,
            "array_index": tag.array_index,
            "subject": tag.subject,
            "severity_level": tag.severity_level,
            "created_at": _now(),
        }
        try:
            cursor = self._tx.execute(_INSERT, params)
            row = self._tx.execute(_SELECT_BY_ID, {"id": cursor.lastrowid}).fetchone()
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise DeviceExistsError() from exc
            raise RepositoryError(f"insert tag: {exc}") from exc
        except sqlite3.Error as exc:
            raise RepositoryError(f"insert tag: {exc}") from exc
        if row is None:
            raise DeviceNotFoundError()
        return _tag_from_row(row)

    def read(self) -> list[Tag]:
        """Return every tag that has not been deleted."""
        try:
            rows = self._tx.execute(_READ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(f"read tags: {exc}") from exc
        return [_tag_from_row(row) for row in rows]

    def update(self, opts: UpdateTagOpts) -> None:
        """Change the given columns; None keeps a column."""
        params = {
            "id": opts.id,
            "name": opts.name,
            "device_id": opts.device_id,
            "regexp": opts.regexp,
            "compare_type": opts.compare_type,
            "value": opts.value,
            "array_index": opts.array_index,
            "subject": opts.subject,
            "severity_level": opts.severity_level,
            "updated_at": _now(),
        }
        try:
            self._tx.execute(_UPDATE, params)
        except sqlite3.Error as exc:
            raise RepositoryError(f"update tag: {exc}") from exc

    def delete(self, tag_id: int) -> None:
        try:
            self._tx.execute(_DELETE, {"id": tag_id})
        except sqlite3.Error as exc:
            raise RepositoryError(f"delete tag: {exc}") from exc


class TagsRepo:
    """Opens tag transactions on a database."""

    def __init__(self, database: Database, log: logging.Logger) -> None:
        self._database = database
        self._log = log

    def begin(self) -> TagsTransaction:
        return TagsTransaction(self._database.transaction(), self._log)