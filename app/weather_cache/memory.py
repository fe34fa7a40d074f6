"""In-memory weather cache with sliding expiration."""

import threading
import time
from typing import Callable, Optional

from app.app_types import WeatherRecord
from app.weather_cache.base import WeatherCache
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="weather_cache/in_memory")


class InMemoryWeatherCache(WeatherCache):
    """Thread-safe, process-local cache; every hit pushes expiry out by the TTL."""

    def __init__(self, ttl_seconds: float = 1800, clock: Callable[[], float] = time.monotonic) -> None:
        logger.debug("Initializing InMemoryWeatherCache")
        self.ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[WeatherRecord, float]] = {}
        self._next_sweep = 0.0
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[WeatherRecord]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            record, expires_at = entry
            now = self._clock()
            if expires_at <= now:
                self._entries.pop(key, None)
                return None
            self._entries[key] = (record, now + self.ttl)
            return record

    def set(self, key: str, record: WeatherRecord) -> None:
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)
            self._entries[key] = (record, now + self.ttl)

    def _sweep(self, now: float) -> None:
        # Keys are per activity and rarely read twice, so expired entries are
        # dropped here at most once per TTL rather than waiting for a lookup.
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Evicted %d expired weather entries", len(expired))
        self._next_sweep = now + self.ttl

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
