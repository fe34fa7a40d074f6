"""Authenticated calls against the Strava API.

Access tokens arrive encrypted and are decrypted only for the duration of
the request that needs them.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

import requests
from pydantic import BaseModel, ConfigDict

from app.credential_vault import CredentialVault
from app.errors import (
    CredentialInvalid,
    Forbidden,
    RateLimited,
    TokenRefreshError,
    UpstreamError,
    UpstreamNotFound,
    UpstreamTimeout,
)
from app.http_retry import send_with_retry
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="strava_client")


class StravaActivity(BaseModel):
    """Subset of the Strava detailed-activity payload used for enrichment."""
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str = ""
    type: str = ""
    start_date: datetime
    start_date_local: Optional[datetime] = None
    timezone: str = ""
    start_latlng: Optional[List[float]] = None
    end_latlng: Optional[List[float]] = None
    distance: float = 0.0
    moving_time: int = 0
    description: Optional[str] = None
    private: bool = False

    @property
    def coordinates(self) -> Optional[tuple[float, float]]:
        """(lat, lon) of the start point, or None when Strava has no GPS fix."""
        if not self.start_latlng or len(self.start_latlng) != 2:
            return None
        return self.start_latlng[0], self.start_latlng[1]


@dataclass(frozen=True)
class TokenGrant:
    """Plaintext token pair returned by the OAuth token endpoint."""
    access_token: str
    refresh_token: str
    expires_at: datetime


_STATUS_ERRORS = {
    401: (CredentialInvalid, "Strava access token expired or invalid"),
    403: (Forbidden, "Not authorized to perform this action"),
    404: (UpstreamNotFound, "Resource not found or not accessible"),
    429: (RateLimited, "Rate limit exceeded"),
}


class StravaClient:
    """Read/update activities and manage tokens against Strava."""

    def __init__(
        self,
        vault: CredentialVault,
        *,
        client_id: str | None,
        client_secret: str | None,
        api_base_url: str = "https://www.strava.com/api/v3",
        oauth_base_url: str = "https://www.strava.com/oauth",
        timeout: float = 10.0,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.vault = vault
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_base_url = api_base_url.rstrip("/")
        self.oauth_base_url = oauth_base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._sleep = sleep

    def _authorized_request(
        self, method: str, url: str, encrypted_access_token: str, *, operation: str, **kwargs
    ) -> requests.Response:
        access_token = self.vault.decrypt(encrypted_access_token)
        headers = {"Authorization": f"Bearer {access_token}"}

        def send() -> requests.Response:
            return self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)

        try:
            return send_with_retry(send, operation=operation, sleep=self._sleep)
        except requests.exceptions.Timeout as exc:
            raise UpstreamTimeout(f"Strava request timed out during {operation}") from exc
        except requests.exceptions.RequestException as exc:
            raise UpstreamError(f"Strava request failed during {operation}: {exc}") from exc

    @staticmethod
    def _raise_for_status(response: requests.Response, operation: str, **context) -> None:
        if response.ok:
            return
        status = response.status_code
        error_cls, message = _STATUS_ERRORS.get(
            status, (UpstreamError, f"Strava API error ({status}): {(response.text or '')[:200]}")
        )
        logger.error("%s failed: %s", operation, message, extra={"status": status, **context})
        raise error_cls(message, status_code=status)

    def get_activity(self, activity_id: str, encrypted_access_token: str) -> StravaActivity:
        """Fetch one activity; raises UpstreamNotFound when Strava does not (yet) know it."""
        logger.debug("Fetching activity %s from Strava", activity_id)
        response = self._authorized_request(
            "GET",
            f"{self.api_base_url}/activities/{activity_id}",
            encrypted_access_token,
            operation="GetActivity",
        )
        self._raise_for_status(response, "GetActivity", activity_id=activity_id)
        activity = StravaActivity.model_validate(response.json())
        logger.info("Activity retrieved: %s (%s)", activity_id, activity.name)
        return activity

    def update_activity(self, activity_id: str, encrypted_access_token: str, patch: dict) -> StravaActivity:
        """Apply a partial update (e.g. {"description": ...}) and return the updated activity."""
        logger.debug("Updating activity %s on Strava", activity_id)
        response = self._authorized_request(
            "PUT",
            f"{self.api_base_url}/activities/{activity_id}",
            encrypted_access_token,
            operation="UpdateActivity",
            json=patch,
        )
        self._raise_for_status(response, "UpdateActivity", activity_id=activity_id)
        logger.info("Activity updated: %s", activity_id)
        return StravaActivity.model_validate(response.json())

    def exchange_refresh_token(self, refresh_token: str) -> TokenGrant:
        """Trade a plaintext refresh token for a new pair. Not retried here."""
        logger.debug("Refreshing Strava access token")
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            response = self.session.post(f"{self.oauth_base_url}/token", data=data, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            raise TokenRefreshError(f"Token refresh failed: {exc}") from exc

        if not response.ok:
            logger.error("Token refresh failed: %d - %s", response.status_code, (response.text or "")[:200])
            raise TokenRefreshError(
                f"Token refresh failed ({response.status_code}): {(response.text or '')[:200]}",
                status_code=response.status_code,
            )

        payload = response.json()
        expires_at = datetime.fromtimestamp(int(payload["expires_at"]), tz=timezone.utc)
        logger.info("Access token refreshed, expires at %s", expires_at.isoformat())
        return TokenGrant(
            access_token=payload["access_token"],
            refresh_token=payload["refresh_token"],
            expires_at=expires_at,
        )

    def revoke_token(self, encrypted_access_token: str) -> None:
        """Deauthorize the application for this athlete."""
        logger.debug("Revoking Strava access token")
        access_token = self.vault.decrypt(encrypted_access_token)
        response = self.session.post(
            f"{self.oauth_base_url}/deauthorize",
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=self.timeout,
        )
        if not response.ok:
            logger.warning("Token revocation returned non-OK status: %d", response.status_code)
            return
        logger.info("Access token revoked")
