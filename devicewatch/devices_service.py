"""Device management on top of the devices repository."""

from __future__ import annotations

from typing import Any

from .models import Device, UpdateDeviceOpts


class DevicesService:
    """Runs each device operation in its own committed transaction."""

    def __init__(self, repo: Any) -> None:
        self._repo = repo

    def create(self, device: Device) -> Device:
        """Store a device and return it as stored."""
        with self._repo.begin() as tx:
            created = tx.create(device)
            tx.commit()
        return created

    def read(self) -> list[Device]:
        """Return every device that has not been deleted."""
        with self._repo.begin() as tx:
            devices = tx.read()
            tx.commit()
        return devices

    def update(self, params: UpdateDeviceOpts) -> None:
        """Apply a partial update to a device."""
        with self._repo.begin() as tx:
            tx.update(params)
            tx.commit()

    def delete(self, device_id: int) -> None:
        with self._repo.begin() as tx:
            tx.delete(device_id)
            tx.commit()

    def get_responsible(self, device_id: int) -> list[int]:
        """Return the ids of the users responsible for a device."""
        with self._repo.begin() as tx:
            responsible = tx.get_responsible(device_id)
            tx.commit()
        return responsible