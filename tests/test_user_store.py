import datetime as dt
import unittest

from app.user_store import InMemoryUserStore, SqlUserStore, build_user_store
from app.user_store.base import User

EXPIRY = dt.datetime(2024, 5, 1, 18, 0, tzinfo=dt.timezone.utc)


def _user(**overrides):
    values = dict(
        id="user-1", strava_athlete_id="9001", access_token="enc-a", refresh_token="enc-r",
        token_expires_at=EXPIRY, first_name="Ada", last_name="Lovelace",
    )
    values.update(overrides)
    return User(**values)


class DummySettings:
    def __init__(self, user_database_url=None):
        self.user_database_url = user_database_url


class _UserStoreContract:
    """Behaviour every backend shares; mixed into a TestCase per backend."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()

    def test_save_and_find(self):
        self.store.save(_user())
        found = self.store.find_by_id("user-1")
        self.assertEqual(found.strava_athlete_id, "9001")
        self.assertEqual(found.token_expires_at, EXPIRY)
        self.assertTrue(found.weather_enabled)
        self.assertIsNone(self.store.find_by_id("missing"))

    def test_find_by_athlete_id(self):
        self.store.save(_user())
        self.assertEqual(self.store.find_by_athlete_id("9001").id, "user-1")
        self.assertEqual(self.store.find_by_athlete_id(9001).id, "user-1")
        self.assertIsNone(self.store.find_by_athlete_id("1"))

    def test_save_replaces_existing(self):
        self.store.save(_user())
        self.store.save(_user(access_token="enc-a2", weather_enabled=False))
        found = self.store.find_by_id("user-1")
        self.assertEqual(found.access_token, "enc-a2")
        self.assertFalse(found.weather_enabled)

    def test_delete(self):
        self.store.save(_user())
        self.assertTrue(self.store.delete("user-1"))
        self.assertFalse(self.store.delete("user-1"))
        self.assertIsNone(self.store.find_by_id("user-1"))


class TestInMemoryUserStore(_UserStoreContract, unittest.TestCase):
    def make_store(self):
        return InMemoryUserStore()

    def test_returned_users_are_copies(self):
        self.store.save(_user())
        found = self.store.find_by_id("user-1")
        found.access_token = "mutated"
        self.assertEqual(self.store.find_by_id("user-1").access_token, "enc-a")


class TestSqlUserStore(_UserStoreContract, unittest.TestCase):
    def make_store(self):
        return SqlUserStore.from_url("sqlite://")


class TestBuildUserStore(unittest.TestCase):
    def test_defaults_to_memory(self):
        self.assertIsInstance(build_user_store(DummySettings()), InMemoryUserStore)

    def test_uses_sql_when_configured(self):
        self.assertIsInstance(build_user_store(DummySettings("sqlite://")), SqlUserStore)


if __name__ == "__main__":
    unittest.main()
