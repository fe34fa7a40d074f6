"""Shared protocol for weather cache backends."""

from typing import Optional, Protocol

from app.app_types import WeatherRecord


class WeatherCache(Protocol):
    """Keyed store of weather records with sliding expiration."""

    def get(self, key: str) -> Optional[WeatherRecord]:
        """Return the cached record and extend its lifetime, or None if missing/expired."""

    def set(self, key: str, record: WeatherRecord) -> None:
        """Store a record under `key`, replacing any previous value."""

    def clear(self) -> None:
        """Drop every cached record."""
