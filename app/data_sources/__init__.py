"""Weather data sources."""

from .base import CallableWeatherDataSource, WeatherDataSource
from .factory import build_weather_source
from .openweather_client import (
    OpenWeatherDataSource,
    fetch_current_payload,
    fetch_historical_payload,
    parse_current_payload,
    parse_historical_payload,
)

__all__ = [
    "build_weather_source",
    "CallableWeatherDataSource",
    "WeatherDataSource",
    "OpenWeatherDataSource",
    "fetch_current_payload",
    "fetch_historical_payload",
    "parse_current_payload",
    "parse_historical_payload",
]
