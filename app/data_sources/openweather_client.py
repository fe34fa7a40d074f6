"""Helpers for fetching weather conditions from the OpenWeatherMap One Call 3.0 API.

Two endpoints are used and they return differently shaped payloads:

- current conditions:   {"current": {...}}
- historical (timemachine): {"data": [{...}]}

Each shape has its own parse function; both produce a `WeatherRecord`.
"""
from __future__ import annotations

import datetime as dt
import time
from typing import Any, Callable, Dict

import requests

from app.app_types import WeatherRecord, WeatherSource
from app.constants import DEFAULT_VISIBILITY_METERS
from app.errors import RateLimited, UpstreamError, UpstreamTimeout
from app.http_retry import send_with_retry
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="openweather_client")

session = requests.Session()

DEFAULT_BASE_URL = "https://api.openweathermap.org/data/3.0/onecall"
REQUEST_TIMEOUT_SECONDS = 10


def _round_tenth(value: float) -> float:
    return round(value * 10) / 10


def _to_weather_record(raw: Dict[str, Any], source: WeatherSource) -> WeatherRecord:
    """Normalize one provider observation block (metric units requested)."""
    condition = (raw.get("weather") or [{}])[0]
    gust = raw.get("wind_gust")
    visibility = raw.get("visibility")
    if visibility is None:
        visibility = DEFAULT_VISIBILITY_METERS
    return WeatherRecord(
        temperature=int(round(raw["temp"])),
        feels_like=int(round(raw["feels_like"])),
        humidity=int(raw.get("humidity", 0)),
        pressure=int(raw.get("pressure", 0)),
        wind_speed=_round_tenth(raw.get("wind_speed", 0.0)),
        wind_direction=int(raw.get("wind_deg", 0)),
        wind_gust=_round_tenth(gust) if gust is not None else None,
        cloud_cover=int(raw.get("clouds", 0)),
        visibility_km=int(round(visibility / 1000.0)),
        condition=condition.get("main", ""),
        description=condition.get("description", ""),
        icon=condition.get("icon", ""),
        uv_index=raw.get("uvi"),
        observed_at=dt.datetime.fromtimestamp(int(raw["dt"]), tz=dt.timezone.utc),
        source=source,
    )


def parse_current_payload(payload: Dict[str, Any]) -> WeatherRecord:
    """Parse a One Call `current` response."""
    return _to_weather_record(payload["current"], WeatherSource.CURRENT)


def parse_historical_payload(payload: Dict[str, Any]) -> WeatherRecord:
    """Parse a One Call `timemachine` response (first data point)."""
    data = payload.get("data") or []
    if not data:
        raise UpstreamError("Weather API returned no historical data points")
    return _to_weather_record(data[0], WeatherSource.HISTORICAL)


def _raise_for_weather_status(resp: requests.Response, api_name: str) -> None:
    """Translate a non-success response into a typed error."""
    if resp.ok:
        return
    body = (resp.text or "")[:200]
    logger.error("%s request failed: %d - %s", api_name, resp.status_code, body)
    if resp.status_code == 401:
        # Our API key, not the athlete's Strava credentials.
        raise UpstreamError("Weather API authentication failed", status_code=401)
    if resp.status_code == 429:
        raise RateLimited("Weather API rate limit exceeded", status_code=429)
    if resp.status_code == 408:
        raise UpstreamTimeout("Weather API request timeout", status_code=408)
    raise UpstreamError(f"Weather API error: {resp.status_code} - {body}", status_code=resp.status_code)


def _get(url: str, params: dict, *, api_name: str, timeout: float,
         sleep: Callable[[float], None]) -> Dict[str, Any]:
    logger.debug("Requesting %s", mask_url(requests.Request("GET", url, params=params).prepare().url or url))
    try:
        resp = send_with_retry(
            lambda: session.get(url, params=params, timeout=timeout),
            operation=api_name,
            sleep=sleep,
        )
    except requests.exceptions.Timeout as exc:
        raise UpstreamTimeout(f"{api_name} request timed out") from exc
    except requests.exceptions.RequestException as exc:
        raise UpstreamError(f"{api_name} request failed: {exc}") from exc
    _raise_for_weather_status(resp, api_name)
    return resp.json()


def fetch_current_payload(
    latitude: float,
    longitude: float,
    *,
    api_key: str,
    base_url: str = DEFAULT_BASE_URL,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Fetch the raw current-conditions payload for a coordinate."""
    params = {
        "lat": f"{latitude:.6f}",
        "lon": f"{longitude:.6f}",
        "appid": api_key,
        "units": "metric",
        "exclude": "minutely,hourly,daily,alerts",
    }
    return _get(base_url, params, api_name="One Call API", timeout=timeout, sleep=sleep)


def fetch_historical_payload(
    latitude: float,
    longitude: float,
    when: dt.datetime,
    *,
    api_key: str,
    base_url: str = DEFAULT_BASE_URL,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Fetch the raw point-in-time payload for a coordinate and timestamp."""
    params = {
        "lat": f"{latitude:.6f}",
        "lon": f"{longitude:.6f}",
        "dt": int(when.timestamp()),
        "appid": api_key,
        "units": "metric",
    }
    return _get(f"{base_url}/timemachine", params, api_name="Time Machine API", timeout=timeout, sleep=sleep)


class OpenWeatherDataSource:
    """WeatherDataSource backed by OpenWeatherMap."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._sleep = sleep

    def fetch_current(self, latitude: float, longitude: float) -> WeatherRecord:
        payload = fetch_current_payload(
            latitude, longitude, api_key=self.api_key, base_url=self.base_url,
            timeout=self.timeout, sleep=self._sleep,
        )
        return parse_current_payload(payload)

    def fetch_historical(self, latitude: float, longitude: float, when: dt.datetime) -> WeatherRecord:
        payload = fetch_historical_payload(
            latitude, longitude, when, api_key=self.api_key, base_url=self.base_url,
            timeout=self.timeout, sleep=self._sleep,
        )
        return parse_historical_payload(payload)
