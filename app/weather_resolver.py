"""Pick the right weather source for an activity and cache the answer.

Source selection by age of the activity:

- <= 1 hour old:      current conditions
- 1 to 120 hours old: historical point-in-time lookup
- older:              current conditions as a degraded fallback

Lookups are cached under (lat, lon rounded to 4 decimals, start time floored
to 15 minutes, activity id) with a sliding 30 minute expiry.
"""
from __future__ import annotations

import dataclasses
import datetime as dt
import threading
from collections import defaultdict

from app.app_types import Clock, WeatherRecord, WeatherSource, utc_now
from app.constants import (
    COORDINATE_PRECISION,
    HISTORICAL_LIMIT_HOURS,
    RECENT_ACTIVITY_THRESHOLD_HOURS,
    TIME_ROUND_MINUTES,
)
from app.data_sources.base import WeatherDataSource
from app.weather_cache.base import WeatherCache
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="weather_resolver")


def select_source(hours_since_activity: float) -> WeatherSource:
    """Map the age of an activity to the weather source that should serve it."""
    if hours_since_activity <= RECENT_ACTIVITY_THRESHOLD_HOURS:
        return WeatherSource.CURRENT
    if hours_since_activity <= HISTORICAL_LIMIT_HOURS:
        return WeatherSource.HISTORICAL
    return WeatherSource.CURRENT_FALLBACK


def time_bucket(when: dt.datetime, minutes: int = TIME_ROUND_MINUTES) -> dt.datetime:
    """Floor a timestamp (as UTC) to the start of its bucket."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=dt.timezone.utc)
    when = when.astimezone(dt.timezone.utc)
    return when.replace(minute=(when.minute // minutes) * minutes, second=0, microsecond=0)


def round_coordinate(value: float, precision: int = COORDINATE_PRECISION) -> float:
    factor = 10 ** precision
    return round(value * factor) / factor


def cache_key(latitude: float, longitude: float, when: dt.datetime, activity_id: str) -> str:
    return (
        f"{round_coordinate(latitude)}:{round_coordinate(longitude)}:"
        f"{int(time_bucket(when).timestamp())}:{activity_id}"
    )


class WeatherResolver:
    """Resolve a WeatherRecord for an activity's start point and time."""

    def __init__(self, data_source: WeatherDataSource, cache: WeatherCache, *, clock: Clock = utc_now) -> None:
        self.data_source = data_source
        self.cache = cache
        self.clock = clock
        self._key_locks_guard = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)

    def _lock_for(self, key: str) -> threading.Lock:
        with self._key_locks_guard:
            return self._key_locks[key]

    def _release_lock(self, key: str) -> None:
        with self._key_locks_guard:
            self._key_locks.pop(key, None)

    def resolve(self, latitude: float, longitude: float, activity_time: dt.datetime, activity_id: str) -> WeatherRecord:
        """Return weather for the activity, hitting the provider at most once per bucket."""
        if activity_time.tzinfo is None:
            activity_time = activity_time.replace(tzinfo=dt.timezone.utc)
        key = cache_key(latitude, longitude, activity_time, activity_id)

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Weather cache hit for activity %s", activity_id)
            return cached

        # Concurrent lookups for the same bucket wait for the first one.
        try:
            with self._lock_for(key):
                cached = self.cache.get(key)
                if cached is not None:
                    return cached
                record = self._fetch(latitude, longitude, activity_time, activity_id)
                self.cache.set(key, record)
        finally:
            self._release_lock(key)

        logger.info(
            "Weather data retrieved for activity %s: %s°C, %s",
            activity_id, record.temperature, record.condition,
            extra={"source": record.source.value},
        )
        return record

    def _fetch(self, latitude: float, longitude: float, activity_time: dt.datetime, activity_id: str) -> WeatherRecord:
        hours_since = (self.clock() - activity_time).total_seconds() / 3600
        source = select_source(hours_since)
        logger.info(
            "Fetching weather for activity %s",
            activity_id,
            extra={"lat": latitude, "lon": longitude, "activity_time": activity_time.isoformat(),
                   "source": source.value},
        )

        if source is WeatherSource.HISTORICAL:
            return self.data_source.fetch_historical(latitude, longitude, activity_time)

        record = self.data_source.fetch_current(latitude, longitude)
        if source is WeatherSource.CURRENT_FALLBACK:
            logger.warning(
                "Activity outside historical range, using current weather (degraded)",
                extra={"activity_id": activity_id, "hours_since_activity": round(hours_since, 1)},
            )
            record = dataclasses.replace(record, source=WeatherSource.CURRENT_FALLBACK)
        return record
