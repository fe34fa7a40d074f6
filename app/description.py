"""Weather line formatting and detection of already-enriched descriptions."""

from __future__ import annotations

import re
from typing import Optional

from app.app_types import WeatherRecord
from app.constants import COMPASS_POINTS

# Anything we have ever appended to a description matches at least one of these.
WEATHER_MARKERS = (
    re.compile(r"°C"),
    re.compile(r"°F"),
    re.compile(r"Feels like"),
    re.compile(r"Humidity"),
    re.compile(r"m/s from"),
    re.compile(r"Weather:"),
)


def has_weather_data(description: Optional[str]) -> bool:
    """True when a description already carries a weather line."""
    if not description:
        return False
    return any(pattern.search(description) for pattern in WEATHER_MARKERS)


def wind_direction_label(degrees: float) -> str:
    """16-point compass label for a wind bearing; 0 and 359 both read "N"."""
    normalized = degrees % 360
    return COMPASS_POINTS[int(round(normalized / 22.5)) % 16]


def _capitalize_first(text: str) -> str:
    return text[:1].upper() + text[1:] if text else text


def format_weather_line(weather: WeatherRecord) -> str:
    """e.g. "Light rain, 12°C, Feels like 10°C, Humidity 81%, Wind 4.1m/s from SW"."""
    parts = [
        _capitalize_first(weather.description),
        f"{weather.temperature}°C",
        f"Feels like {weather.feels_like}°C",
        f"Humidity {weather.humidity}%",
        f"Wind {weather.wind_speed:g}m/s from {wind_direction_label(weather.wind_direction)}",
    ]
    return ", ".join(part for part in parts if part)


def compose_description(existing: Optional[str], weather: WeatherRecord) -> str:
    """Append the weather line after a blank line, or use it alone."""
    weather_line = format_weather_line(weather)
    if existing:
        return f"{existing}\n\n{weather_line}"
    return weather_line
