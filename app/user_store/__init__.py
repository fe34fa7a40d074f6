"""User storage backends."""

from app.config import Settings
from utils.logging_utils import get_tagged_logger

from .base import User, UserStore
from .memory import InMemoryUserStore
from .sql import SqlUserStore

logger = get_tagged_logger(__name__, tag="user_store")


def build_user_store(settings: Settings) -> UserStore:
    """SQL when a database URL is configured, otherwise an in-process store."""
    if settings.user_database_url:
        return SqlUserStore.from_url(settings.user_database_url)
    logger.warning("APP_USER_DATABASE_URL not set; users are kept in memory only")
    return InMemoryUserStore()


__all__ = [
    "User",
    "UserStore",
    "InMemoryUserStore",
    "SqlUserStore",
    "build_user_store",
]
