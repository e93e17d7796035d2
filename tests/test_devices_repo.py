import logging

import pytest

from devicewatch.database import Database
from devicewatch.devices_repo import DevicesRepo
from devicewatch.models import Device, UpdateDeviceOpts
from devicewatch.repository import DeviceExistsError, DeviceNotFoundError

DDL = """
CREATE TABLE devices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    device_type TEXT NOT NULL,
    address TEXT NOT NULL UNIQUE,
    responsible TEXT NOT NULL,
    created_at TEXT,
    updated_at TEXT,
    deleted_at TEXT
);
"""


@pytest.fixture
def database(tmp_path):
    directory = tmp_path / "migrations"
    directory.mkdir()
    (directory / "1_devices.up.sql").write_text(DDL, encoding="utf-8")
    db = Database(str(tmp_path / "devices.db"), "monitoring")
    db.run_migrations(str(directory))
    yield db
    db.close()


@pytest.fixture
def repo(database):
    return DevicesRepo(database, logging.getLogger("test"))


def sample(address="10.0.0.1", responsible=(1, 2)):
    return Device(name="router", device_type="switch", address=address, responsible=list(responsible))


def create(repo, device):
    with repo.begin() as tx:
        stored = tx.create(device)
        tx.commit()
    return stored


def read_all(repo):
    with repo.begin() as tx:
        devices = tx.read()
        tx.commit()
    return devices


def test_create_returns_stored_device(repo):
    stored = create(repo, sample())
    assert stored.id > 0
    assert (stored.name, stored.device_type, stored.address) == ("router", "switch", "10.0.0.1")
    assert stored.responsible == [1, 2]
    assert stored.created_at is not None
    assert stored.updated_at is None


def test_read_round_trips_created_devices(repo):
    first = create(repo, sample("10.0.0.1"))
    second = create(repo, sample("10.0.0.2", responsible=()))
    assert read_all(repo) == [first, second]


def test_read_skips_soft_deleted_devices(repo, database):
    kept = create(repo, sample("10.0.0.1"))
    gone = create(repo, sample("10.0.0.2"))
    with database.transaction() as tx:
        tx.execute("UPDATE devices SET deleted_at = 'x' WHERE id = :id", {"id": gone.id})
        tx.commit()
    assert [d.id for d in read_all(repo)] == [kept.id]


def test_duplicate_address_raises_device_exists(repo):
    create(repo, sample())
    with pytest.raises(DeviceExistsError):
        create(repo, sample())


def test_rolled_back_create_is_not_visible(repo):
    with repo.begin() as tx:
        tx.create(sample())
        tx.rollback()
    assert read_all(repo) == []


def test_update_changes_only_given_fields(repo):
    stored = create(repo, sample())
    with repo.begin() as tx:
        tx.update(UpdateDeviceOpts(id=stored.id, name="core", responsible=[]))
        tx.commit()
    (updated,) = read_all(repo)
    assert updated.name == "core"
    assert updated.device_type == stored.device_type
    assert updated.address == stored.address
    assert updated.responsible == stored.responsible
    assert updated.updated_at is not None


def test_update_replaces_non_empty_responsible(repo):
    stored = create(repo, sample())
    with repo.begin() as tx:
        tx.update(UpdateDeviceOpts(id=stored.id, responsible=[7]))
        tx.commit()
    assert read_all(repo)[0].responsible == [7]


def test_delete_removes_device(repo):
    stored = create(repo, sample())
    with repo.begin() as tx:
        tx.delete(stored.id)
        tx.commit()
    assert read_all(repo) == []


def test_get_responsible_returns_ids(repo):
    stored = create(repo, sample(responsible=(3, 4)))
    with repo.begin() as tx:
        assert tx.get_responsible(stored.id) == [3, 4]


def test_get_responsible_of_unknown_device_raises(repo):
    with repo.begin() as tx:
        with pytest.raises(DeviceNotFoundError):
            tx.get_responsible(42)