"""Who to notify about each device."""

from __future__ import annotations

from typing import Mapping


class NotificationService:
    """Holds the recipients responsible for each device."""

    def __init__(self) -> None:
        self._responsibles: dict[int, list[str]] = {}

    def set_responsibles(self, mapping: Mapping[int, list[str]]) -> None:
        """Replace the whole device-to-recipients mapping."""
        self._responsibles = {device_id: list(people) for device_id, people in mapping.items()}

    def get_responsibles(self, device_id: int) -> list[str]:
        """Return the recipients for a device; empty when none are known."""
        return list(self._responsibles.get(device_id, []))