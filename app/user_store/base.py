"""User record and the storage protocol the pipeline consumes."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from app.app_types import utc_now


@dataclass
class User:
    """An athlete who connected their Strava account.

    `access_token` and `refresh_token` hold vault ciphertext, never plaintext.
    """
    id: str
    strava_athlete_id: str
    access_token: str
    refresh_token: str
    token_expires_at: datetime
    weather_enabled: bool = True
    first_name: str = ""
    last_name: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


class UserStore(Protocol):
    """Protocol for user storage backends."""
    def find_by_id(self, user_id: str) -> Optional[User]:
        """Fetch a user by internal id, or None."""

    def find_by_athlete_id(self, athlete_id: str) -> Optional[User]:
        """Fetch a user by Strava athlete id (webhook owner id), or None."""

    def save(self, user: User) -> None:
        """Insert or replace a user."""

    def delete(self, user_id: str) -> bool:
        """Remove a user; returns False if it did not exist."""
