"""Interfaces and helpers for weather data sources."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Callable, Protocol

from app.app_types import WeatherRecord


class WeatherDataSource(Protocol):
    """Interface for anything that can provide current and point-in-time weather."""

    def fetch_current(self, latitude: float, longitude: float) -> WeatherRecord:
        """Return the latest observation for a coordinate."""
        ...

    def fetch_historical(self, latitude: float, longitude: float, when: dt.datetime) -> WeatherRecord:
        """Return the observation closest to `when` for a coordinate."""
        ...


@dataclass
class CallableWeatherDataSource:
    """Adapter that wraps plain callables to satisfy the WeatherDataSource protocol."""

    current: Callable[..., WeatherRecord]
    historical: Callable[..., WeatherRecord]

    def fetch_current(self, latitude: float, longitude: float) -> WeatherRecord:
        return self.current(latitude, longitude)

    def fetch_historical(self, latitude: float, longitude: float, when: dt.datetime) -> WeatherRecord:
        return self.historical(latitude, longitude, when)
