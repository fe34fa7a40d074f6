"""Shared dataclasses and lightweight types used across modules."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from app.errors import ErrorKind

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class WeatherSource(str, Enum):
    """Which provider endpoint produced a weather record."""
    CURRENT = "current"
    HISTORICAL = "historical"
    CURRENT_FALLBACK = "current_fallback"

    @property
    def degraded(self) -> bool:
        """Current conditions substituted for an activity outside the historical window."""
        return self is WeatherSource.CURRENT_FALLBACK


@dataclass(frozen=True)
class WeatherRecord:
    """Canonical, unit-normalized weather observation (metric)."""
    temperature: int
    feels_like: int
    humidity: int
    pressure: int
    wind_speed: float
    wind_direction: int
    wind_gust: Optional[float]
    cloud_cover: int
    visibility_km: int
    condition: str
    description: str
    icon: str
    uv_index: Optional[float]
    observed_at: datetime  # timezone-aware UTC
    source: WeatherSource = WeatherSource.CURRENT

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe dict for API responses and cache storage."""
        data = asdict(self)
        data["observed_at"] = self.observed_at.isoformat()
        data["source"] = self.source.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WeatherRecord":
        """Inverse of to_dict()."""
        return cls(
            **{
                **data,
                "observed_at": datetime.fromisoformat(data["observed_at"]),
                "source": WeatherSource(data.get("source", WeatherSource.CURRENT.value)),
            }
        )


class SkipReason(str, Enum):
    """Why an activity ended without a description update."""
    ALREADY_ENRICHED = "Already has weather data"
    WEATHER_DISABLED = "Weather updates disabled"
    NO_COORDINATES = "No GPS coordinates"
    # The two below accompany failures rather than skips.
    USER_NOT_FOUND = "User not found"
    UPSTREAM_NOT_FOUND = "Activity not found on Strava"


@dataclass
class ProcessingResult:
    """Outcome of one enrichment attempt."""
    success: bool
    activity_id: str
    weather: Optional[WeatherRecord] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    skipped: bool = False
    reason: Optional[SkipReason] = None
    degraded: bool = False

    @classmethod
    def failed(
        cls,
        activity_id: str,
        error: str,
        kind: ErrorKind,
        reason: Optional[SkipReason] = None,
    ) -> "ProcessingResult":
        return cls(success=False, activity_id=activity_id, error=error, error_kind=kind, reason=reason)

    @classmethod
    def skip(cls, activity_id: str, reason: SkipReason, *, success: bool) -> "ProcessingResult":
        return cls(success=success, activity_id=activity_id, skipped=True, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activity_id": self.activity_id,
            "success": self.success,
            "skipped": self.skipped,
            "reason": self.reason.value if self.reason else None,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "degraded": self.degraded,
            "weather": self.weather.to_dict() if self.weather else None,
        }


@dataclass(frozen=True)
class TokenState:
    """Credential pair as handed back by the token manager (always encrypted)."""
    access_token: str
    refresh_token: str
    expires_at: datetime
    was_refreshed: bool = False
