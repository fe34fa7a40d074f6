"""Redis-backed weather cache with sliding TTL."""

import json
from typing import Optional

import redis

from app.app_types import WeatherRecord
from app.weather_cache.base import WeatherCache
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="weather_cache/redis")


class RedisWeatherCache(WeatherCache):
    """Shares weather lookups between workers. Records are stored as JSON."""

    def __init__(self, client, ttl_seconds: int = 1800, prefix: str = "weather:") -> None:
        logger.debug("Initializing RedisWeatherCache")
        self.client = client
        self.ttl = ttl_seconds
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[WeatherRecord]:
        redis_key = self._key(key)
        try:
            raw = self.client.get(redis_key)
        except redis.RedisError as exc:
            logger.error("Failed to read weather cache entry: %s", exc)
            return None
        if not raw:
            return None
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            record = WeatherRecord.from_dict(json.loads(raw))
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("Discarding corrupt weather cache entry: %s", exc, extra={"key": redis_key})
            return None
        try:
            self.client.expire(redis_key, self.ttl)
        except redis.RedisError as exc:
            logger.warning("Failed to refresh weather cache TTL: %s", exc)
        return record

    def set(self, key: str, record: WeatherRecord) -> None:
        try:
            self.client.setex(self._key(key), self.ttl, json.dumps(record.to_dict()).encode("utf-8"))
        except redis.RedisError as exc:
            logger.error("Failed to write weather cache entry: %s", exc)

    def clear(self) -> None:
        """Best-effort clear of all keys under the configured prefix."""
        try:
            for key in self.client.scan_iter(f"{self.prefix}*"):
                self.client.delete(key)
        except redis.RedisError as exc:
            logger.error("Failed to clear weather cache: %s", exc)
