"""In-memory lookup of known devices by network address."""

from __future__ import annotations

import threading
from typing import Any, Optional

from .models import Device
from .repository import RepositoryError


class DeviceRegistry:
    """Caches devices keyed by address; refreshed from the devices repository."""

    def __init__(self, devices_repo: Any) -> None:
        self._repo = devices_repo
        self._lock = threading.Lock()
        self._by_ip: dict[str, Device] = {}
        self.update_devices()

    def update_devices(self) -> None:
        """Reload devices; on a repository failure the previous cache is kept."""
        try:
            with self._repo.begin() as tx:
                devices = tx.read()
                tx.commit()
        except RepositoryError:
            return
        by_ip = {device.address: device for device in devices}
        with self._lock:
            self._by_ip = by_ip

    def get_device_id_by_ip(self, address: str) -> Optional[int]:
        """Return the id of the device at an address, or None when unknown."""
        with self._lock:
            device = self._by_ip.get(address)
        return None if device is None else device.id

    def get_device_ips(self) -> list[str]:
        with self._lock:
            return list(self._by_ip)