import sqlite3
import threading
from datetime import timedelta
from types import SimpleNamespace

import pytest

from devicewatch.app import run
from devicewatch.repository import RepositoryError

SCHEMA = """
create table devices (
    id integer primary key autoincrement,
    name text not null,
    device_type text not null,
    address text not null unique,
    responsible text,
    created_at text,
    updated_at text,
    deleted_at text
);
create table tags (
    id integer primary key autoincrement,
    name text not null,
    device_id integer not null,
    regexp text not null,
    compare_type text not null,
    value text not null,
    array_index integer not null,
    subject text not null,
    severity_level text,
    created_at text,
    updated_at text,
    deleted_at text
);
create table messages (
    id integer primary key autoincrement,
    got_at text not null,
    device_id integer not null,
    message text not null,
    message_type text not null,
    severity_level text,
    component text
);
"""


def _config(tmp_path, migrations):
    return SimpleNamespace(
        logger=SimpleNamespace(
            log_level="info", service_name="devicewatch", log_path=str(tmp_path / "logs")
        ),
        app=SimpleNamespace(shutdown_timeout=timedelta(seconds=5)),
        server=SimpleNamespace(
            jwt_key="secret", addr="127.0.0.1:0", token_life_time=timedelta(hours=1),
            log_queries=False,
        ),
        database=SimpleNamespace(
            data_source=str(tmp_path / "app.db"),
            path_to_migrations=str(migrations),
            application_schema="public",
        ),
        service=SimpleNamespace(notification_period=timedelta(0)),
    )


@pytest.fixture
def migrations(tmp_path):
    directory = tmp_path / "migrations"
    directory.mkdir()
    (directory / "1_init.up.sql").write_text(SCHEMA, encoding="utf-8")
    (directory / "1_init.down.sql").write_text("drop table messages;", encoding="utf-8")
    return directory


def test_run_migrates_and_shuts_down(tmp_path, migrations):
    config = _config(tmp_path, migrations)
    stop_event = threading.Event()
    stop_event.set()

    assert run(config, stop_event) is True

    with sqlite3.connect(config.database.data_source) as conn:
        tables = {row[0] for row in conn.execute("select name from sqlite_master where type='table'")}
        version = conn.execute("select version, dirty from schema_migrations").fetchone()
    assert {"devices", "tags", "messages"} <= tables
    assert version == (1, 0)


def test_run_stops_when_event_is_set_later(tmp_path, migrations):
    config = _config(tmp_path, migrations)
    stop_event = threading.Event()
    outcome = []
    worker = threading.Thread(target=lambda: outcome.append(run(config, stop_event)), daemon=True)
    worker.start()
    worker.join(0.5)
    assert worker.is_alive()
    stop_event.set()
    worker.join(10)
    assert not worker.is_alive()
    assert outcome == [True]


def test_run_fails_on_missing_migrations(tmp_path):
    config = _config(tmp_path, tmp_path / "absent")
    stop_event = threading.Event()
    with pytest.raises(RepositoryError):
        run(config, stop_event)
    assert not stop_event.is_set()


def test_run_fails_on_bad_schema_name(tmp_path, migrations):
    config = _config(tmp_path, migrations)
    config.database.application_schema = "bad schema"
    with pytest.raises(RepositoryError):
        run(config, threading.Event())