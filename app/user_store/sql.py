"""Relational user store on SQLAlchemy Core.

Works against any SQLAlchemy URL; tests use in-memory SQLite.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    select,
    update,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

from app.app_types import utc_now
from app.user_store.base import User, UserStore
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="user_store/sql")

metadata = MetaData()

users_table = Table(
    "users",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("strava_athlete_id", String(64), nullable=False, unique=True, index=True),
    Column("access_token", Text, nullable=False),
    Column("refresh_token", Text, nullable=False),
    Column("token_expires_at", DateTime(timezone=True), nullable=False),
    Column("weather_enabled", Boolean, nullable=False, default=True),
    Column("first_name", String(255), nullable=False, default=""),
    Column("last_name", String(255), nullable=False, default=""),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)


def _utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlUserStore(UserStore):
    """Persist users in a `users` table."""

    def __init__(self, engine: Engine, *, create_tables: bool = True) -> None:
        self.engine = engine
        if create_tables:
            metadata.create_all(engine)

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "SqlUserStore":
        """Create an engine from a URL and build the store."""
        engine_kwargs: dict[str, Any] = {"future": True}
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
            # One shared connection, otherwise every checkout sees an empty database.
            engine_kwargs.update(connect_args={"check_same_thread": False}, poolclass=StaticPool)
        logger.info("Connecting user store", extra={"database_url": mask_url(database_url)})
        return cls(create_engine(database_url, **engine_kwargs), **kwargs)

    @staticmethod
    def _row_to_user(row: Mapping) -> User:
        return User(
            id=row["id"],
            strava_athlete_id=row["strava_athlete_id"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            token_expires_at=_utc(row["token_expires_at"]),
            weather_enabled=bool(row["weather_enabled"]),
            first_name=row["first_name"] or "",
            last_name=row["last_name"] or "",
            created_at=_utc(row["created_at"]),
            updated_at=_utc(row["updated_at"]),
        )

    def _find_one(self, condition) -> Optional[User]:
        with self.engine.connect() as conn:
            row = conn.execute(select(users_table).where(condition)).mappings().first()
        return self._row_to_user(row) if row else None

    def find_by_id(self, user_id: str) -> Optional[User]:
        return self._find_one(users_table.c.id == user_id)

    def find_by_athlete_id(self, athlete_id: str) -> Optional[User]:
        return self._find_one(users_table.c.strava_athlete_id == str(athlete_id))

    def save(self, user: User) -> None:
        """Update the row if it exists, insert it otherwise."""
        values = {
            "strava_athlete_id": str(user.strava_athlete_id),
            "access_token": user.access_token,
            "refresh_token": user.refresh_token,
            "token_expires_at": user.token_expires_at,
            "weather_enabled": user.weather_enabled,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "updated_at": utc_now(),
        }
        with self.engine.begin() as conn:
            result = conn.execute(update(users_table).where(users_table.c.id == user.id).values(**values))
            if result.rowcount == 0:
                conn.execute(users_table.insert().values(id=user.id, created_at=user.created_at, **values))
        logger.debug("Saved user %s", user.id)

    def delete(self, user_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(delete(users_table).where(users_table.c.id == user_id))
        return result.rowcount > 0
