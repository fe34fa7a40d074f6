"""Enrich one activity with a weather line.

Pipeline per activity:

    user lookup -> token check -> fetch activity -> idempotency check
    -> coordinate check -> weather resolve -> compose -> write back

Every outcome, including unexpected exceptions, comes back as a
`ProcessingResult`; nothing raised below this boundary escapes `process`.
"""

from __future__ import annotations

import dataclasses

from app.app_types import ProcessingResult, SkipReason
from app.description import compose_description, has_weather_data
from app.errors import ErrorKind, ServiceError
from app.strava_client import StravaClient
from app.token_manager import TokenManager, UserLocks
from app.user_store.base import User, UserStore
from app.weather_resolver import WeatherResolver
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="activity_processor")


class ActivityProcessor:
    """Coordinate token refresh, Strava reads/writes and weather resolution."""

    def __init__(
        self,
        users: UserStore,
        tokens: TokenManager,
        strava: StravaClient,
        weather: WeatherResolver,
        *,
        locks: UserLocks | None = None,
    ) -> None:
        self.users = users
        self.tokens = tokens
        self.strava = strava
        self.weather = weather
        self.locks = locks or UserLocks()

    def process(self, activity_id: str, user_id: str) -> ProcessingResult:
        activity_id = str(activity_id)
        try:
            return self._process(activity_id, user_id)
        except ServiceError as exc:
            logger.error(
                "Failed to process activity %s: %s", activity_id, exc,
                extra={"user_id": user_id, "error_kind": exc.kind.value},
            )
            reason = SkipReason.UPSTREAM_NOT_FOUND if exc.kind is ErrorKind.UPSTREAM_NOT_FOUND else None
            return ProcessingResult.failed(activity_id, str(exc), exc.kind, reason=reason)
        except Exception as exc:
            logger.exception("Unexpected error processing activity %s", activity_id, extra={"user_id": user_id})
            return ProcessingResult.failed(activity_id, str(exc) or exc.__class__.__name__, ErrorKind.INTERNAL)

    def _process(self, activity_id: str, user_id: str) -> ProcessingResult:
        logger.info("Processing activity %s for user %s", activity_id, user_id)

        user = self.users.find_by_id(user_id)
        if user is None:
            logger.warning("User %s not found", user_id)
            return ProcessingResult.failed(
                activity_id, "User not found", ErrorKind.USER_NOT_FOUND, reason=SkipReason.USER_NOT_FOUND
            )

        if not user.weather_enabled:
            logger.info("Weather updates disabled for user %s", user_id)
            return ProcessingResult.skip(activity_id, SkipReason.WEATHER_DISABLED, success=False)

        user = self._refresh_tokens(user)

        activity = self.strava.get_activity(activity_id, user.access_token)

        if has_weather_data(activity.description):
            logger.info("Activity %s already has weather data", activity_id)
            return ProcessingResult.skip(activity_id, SkipReason.ALREADY_ENRICHED, success=True)

        coordinates = activity.coordinates
        if coordinates is None:
            logger.info("Activity %s has no GPS coordinates", activity_id)
            return ProcessingResult.skip(activity_id, SkipReason.NO_COORDINATES, success=False)

        latitude, longitude = coordinates
        weather = self.weather.resolve(latitude, longitude, activity.start_date, activity_id)

        description = compose_description(activity.description, weather)
        self.strava.update_activity(activity_id, user.access_token, {"description": description})

        degraded = weather.source.degraded
        logger.info(
            "Successfully updated activity %s with weather data", activity_id,
            extra={"source": weather.source.value, "degraded": degraded},
        )
        return ProcessingResult(success=True, activity_id=activity_id, weather=weather, degraded=degraded)

    def _refresh_tokens(self, user: User) -> User:
        """Refresh at most once, holding the user's lock across check and save."""
        with self.locks.hold(user.id):
            # Another request may have refreshed while we waited for the lock.
            current = self.users.find_by_id(user.id) or user
            state = self.tokens.ensure_valid(current.access_token, current.refresh_token, current.token_expires_at)
            if not state.was_refreshed:
                return current
            refreshed = dataclasses.replace(
                current,
                access_token=state.access_token,
                refresh_token=state.refresh_token,
                token_expires_at=state.expires_at,
            )
            self.users.save(refreshed)
            logger.info("Saved refreshed tokens for user %s", user.id)
            return refreshed
