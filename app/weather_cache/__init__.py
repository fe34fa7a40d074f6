"""Weather cache backends."""

import redis

from app.config import Settings
from utils.logging_utils import get_tagged_logger, mask_url

from .base import WeatherCache
from .memory import InMemoryWeatherCache
from .redis import RedisWeatherCache

logger = get_tagged_logger(__name__, tag="weather_cache")


def build_weather_cache(settings: Settings) -> WeatherCache:
    """Use Redis when configured and reachable, otherwise an in-process cache."""
    if settings.weather_cache_redis_url:
        try:
            client = redis.Redis.from_url(settings.weather_cache_redis_url)
            client.ping()
            logger.info("Using RedisWeatherCache", extra={"redis_url": mask_url(settings.weather_cache_redis_url)})
            return RedisWeatherCache(client, ttl_seconds=settings.weather_cache_ttl_seconds)
        except redis.RedisError as exc:
            logger.warning("Falling back to InMemoryWeatherCache (Redis unavailable)", extra={"error": str(exc)})
    return InMemoryWeatherCache(ttl_seconds=settings.weather_cache_ttl_seconds)


__all__ = [
    "WeatherCache",
    "InMemoryWeatherCache",
    "RedisWeatherCache",
    "build_weather_cache",
]
