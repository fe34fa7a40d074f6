"""Credential lifecycle: proactive refresh, re-encryption and revocation."""

from __future__ import annotations

import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator

from app.app_types import Clock, TokenState, utc_now
from app.constants import TOKEN_REFRESH_BUFFER_MINUTES
from app.credential_vault import CredentialVault
from app.strava_client import StravaClient
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="token_manager")


class UserLocks:
    """One lock per user id so a user's refresh-then-save runs single-writer."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = defaultdict(threading.Lock)

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks[user_id]
        with lock:
            yield


class TokenManager:
    """Decide whether a credential pair needs refreshing and perform the refresh."""

    def __init__(
        self,
        vault: CredentialVault,
        strava: StravaClient,
        *,
        clock: Clock = utc_now,
        buffer: timedelta = timedelta(minutes=TOKEN_REFRESH_BUFFER_MINUTES),
    ) -> None:
        self.vault = vault
        self.strava = strava
        self.clock = clock
        self.buffer = buffer

    def needs_refresh(self, expires_at: datetime) -> bool:
        return _as_utc(expires_at) <= self.clock() + self.buffer

    def ensure_valid(self, encrypted_access: str, encrypted_refresh: str, expires_at: datetime) -> TokenState:
        """
        Return a usable encrypted pair.

        Refresh failures propagate as TokenRefreshError; retrying is the
        webhook retry controller's job.
        """
        if not self.needs_refresh(expires_at):
            logger.debug("Access token still valid, expires at %s", expires_at.isoformat())
            return TokenState(encrypted_access, encrypted_refresh, expires_at, was_refreshed=False)

        logger.info(
            "Access token expiring soon, refreshing",
            extra={"seconds_until_expiry": (_as_utc(expires_at) - self.clock()).total_seconds()},
        )
        grant = self.strava.exchange_refresh_token(self.vault.decrypt(encrypted_refresh))
        return TokenState(
            access_token=self.vault.encrypt(grant.access_token),
            refresh_token=self.vault.encrypt(grant.refresh_token),
            expires_at=grant.expires_at,
            was_refreshed=True,
        )

    def revoke(self, encrypted_access: str) -> bool:
        """Best-effort deauthorization; never raises. Returns True when the call went through."""
        try:
            self.strava.revoke_token(encrypted_access)
            return True
        except Exception as exc:
            logger.warning("Failed to revoke access token: %s", exc)
            return False


def _as_utc(value: datetime) -> datetime:
    """Stored expiries may come back naive from SQL; they are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
