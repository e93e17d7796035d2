"""SQLite-backed storage: connection, explicit transactions and schema migrations."""

from __future__ import annotations

import os
import re
import sqlite3
import threading
from typing import Any, Mapping, Optional, Sequence, Union

from .repository import RepositoryError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_UP_MIGRATION = re.compile(r"^(\d+)_(.+)\.up\.sql$")
_FILE_SCHEME = "file://"

Params = Union[Sequence[Any], Mapping[str, Any]]


class _Transaction:
    """A transaction handle; nested handles become savepoints of the outer one."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._active = False
        database._lock.acquire()
        try:
            if database._conn is None:
                raise RepositoryError("begin transaction: database is closed")
            depth = database._depth
            self._savepoint: Optional[str] = None if depth == 0 else f"sp_{depth}"
            if self._savepoint is None:
                database._conn.execute("BEGIN")
            else:
                database._conn.execute(f"SAVEPOINT {self._savepoint}")
            database._depth += 1
        except sqlite3.Error as exc:
            database._lock.release()
            raise RepositoryError(f"begin transaction: {exc}") from exc
        except BaseException:
            database._lock.release()
            raise
        self._active = True

    def __enter__(self) -> _Transaction:
        return self

    def __exit__(self, *exc_info: Any) -> bool:
        if self._active:
            self.rollback()
        return False

    @property
    def active(self) -> bool:
        return self._active

    def _ensure_active(self) -> sqlite3.Connection:
        if not self._active or self._db._conn is None:
            raise RepositoryError("transaction has already been committed or rolled back")
        return self._db._conn

    def execute(self, sql: str, params: Params = ()) -> sqlite3.Cursor:
        """Run one statement inside the transaction; sqlite3 errors propagate."""
        return self._ensure_active().execute(sql, params)

    def commit(self) -> None:
        conn = self._ensure_active()
        try:
            if self._savepoint is None:
                conn.execute("COMMIT")
            else:
                conn.execute(f"RELEASE {self._savepoint}")
        except sqlite3.Error as exc:
            self._undo(conn)
            self._finish()
            raise RepositoryError(f"commit: {exc}") from exc
        self._finish()

    def rollback(self) -> None:
        conn = self._ensure_active()
        try:
            self._undo(conn, strict=True)
        except sqlite3.Error as exc:
            raise RepositoryError(f"rollback: {exc}") from exc
        finally:
            self._finish()

    def _undo(self, conn: sqlite3.Connection, strict: bool = False) -> None:
        try:
            if self._savepoint is None:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
            else:
                conn.execute(f"ROLLBACK TO {self._savepoint}")
                conn.execute(f"RELEASE {self._savepoint}")
        except sqlite3.Error:
            if strict:
                raise

    def _finish(self) -> None:
        self._active = False
        self._db._depth -= 1
        self._db._lock.release()


class Database:
    """A database connection shared by the repositories."""

    def __init__(self, data_source: str, application_schema: str) -> None:
        if not isinstance(application_schema, str) or not _IDENTIFIER.match(application_schema):
            raise RepositoryError(f"create schema: invalid schema name {application_schema!r}")
        try:
            conn = sqlite3.connect(
                data_source,
                uri=data_source.startswith("file:"),
                check_same_thread=False,
                isolation_level=None,
            )
        except sqlite3.Error as exc:
            raise RepositoryError(f"connect: {exc}") from exc
        conn.row_factory = sqlite3.Row
        self.data_source = data_source
        self.application_schema = application_schema
        self._conn: Optional[sqlite3.Connection] = conn
        self._lock = threading.RLock()
        self._depth = 0

    def transaction(self) -> _Transaction:
        """Begin a transaction; commit or roll it back, or use it in a with block."""
        return _Transaction(self)

    def run_migrations(self, path: str) -> int:
        """Apply pending ``<version>_<title>.up.sql`` files; return the resulting version."""
        directory = path[len(_FILE_SCHEME):] if path.startswith(_FILE_SCHEME) else path
        try:
            names = os.listdir(directory)
        except OSError as exc:
            raise RepositoryError(f"create migrate instance: {exc}") from exc

        migrations: dict[int, str] = {}
        for name in names:
            match = _UP_MIGRATION.match(name)
            if match is None:
                continue
            version = int(match.group(1))
            if version in migrations:
                raise RepositoryError(f"create migrate instance: duplicate migration version {version}")
            migrations[version] = os.path.join(directory, name)

        with self._lock:
            if self._conn is None:
                raise RepositoryError("run migrations: database is closed")
            if self._depth:
                raise RepositoryError("run migrations: a transaction is in progress")
            conn = self._conn
            try:
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS schema_migrations "
                    "(version INTEGER NOT NULL PRIMARY KEY, dirty INTEGER NOT NULL)"
                )
                row = conn.execute("SELECT version, dirty FROM schema_migrations LIMIT 1").fetchone()
            except sqlite3.Error as exc:
                raise RepositoryError(f"create driver with instance: {exc}") from exc

            current: Optional[int] = None if row is None else int(row["version"])
            if row is not None and row["dirty"]:
                raise RepositoryError(
                    f"up migrations: Dirty database version {current}. Fix and force version."
                )
            if current is not None and current not in migrations:
                raise RepositoryError(f"up migrations: no migration found for version {current}")

            for version in sorted(migrations):
                if current is not None and version <= current:
                    continue
                filename = migrations[version]
                try:
                    with open(filename, encoding="utf-8") as handle:
                        script = handle.read()
                except OSError as exc:
                    raise RepositoryError(f"up migrations: {exc}") from exc
                self._set_version(version, dirty=True)
                try:
                    conn.executescript(script)
                except sqlite3.Error as exc:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise RepositoryError(
                        f"up migrations: migration failed in {os.path.basename(filename)}: {exc}"
                    ) from exc
                self._set_version(version, dirty=False)
                current = version
            return current or 0

    def _set_version(self, version: int, dirty: bool) -> None:
        assert self._conn is not None
        try:
            self._conn.execute("DELETE FROM schema_migrations")
            self._conn.execute(
                "INSERT INTO schema_migrations (version, dirty) VALUES (?, ?)",
                (version, int(dirty)),
            )
        except sqlite3.Error as exc:
            raise RepositoryError(f"up migrations: {exc}") from exc

    def close(self) -> None:
        """Close the connection; later transactions fail."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None