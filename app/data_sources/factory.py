"""Factory helpers for choosing a weather data source at startup."""

from __future__ import annotations

from app import config
from app.data_sources.base import WeatherDataSource
from app.data_sources.openweather_client import OpenWeatherDataSource
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="data_sources/factory")


def build_weather_source(settings: config.Settings | None = None) -> WeatherDataSource:
    """Instantiate the configured weather data source."""
    settings = settings or config.settings
    if not settings.openweathermap_api_key:
        raise ValueError("openweathermap_api_key must be set for the OpenWeatherMap data source")

    logger.info("Using OpenWeatherMap data source", extra={"base_url": settings.openweathermap_base_url})
    return OpenWeatherDataSource(
        settings.openweathermap_api_key,
        base_url=settings.openweathermap_base_url,
        timeout=settings.http_timeout_seconds,
    )
