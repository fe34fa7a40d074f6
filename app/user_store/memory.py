"""In-memory user store, intended for development and tests."""

import dataclasses
import threading
from typing import Optional

from app.app_types import utc_now
from app.user_store.base import User, UserStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="user_store/in_memory")


class InMemoryUserStore(UserStore):
    """Thread-safe dict keyed by user id. Records are copied in and out."""

    def __init__(self) -> None:
        logger.debug("Initializing InMemoryUserStore")
        self._users: dict[str, User] = {}
        self._lock = threading.Lock()

    def find_by_id(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return dataclasses.replace(user) if user else None

    def find_by_athlete_id(self, athlete_id: str) -> Optional[User]:
        with self._lock:
            for user in self._users.values():
                if user.strava_athlete_id == str(athlete_id):
                    return dataclasses.replace(user)
            return None

    def save(self, user: User) -> None:
        with self._lock:
            self._users[user.id] = dataclasses.replace(user, updated_at=utc_now())

    def delete(self, user_id: str) -> bool:
        with self._lock:
            return self._users.pop(user_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._users)
