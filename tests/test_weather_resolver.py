import dataclasses
import datetime as dt
import threading
import time
import unittest

from app.app_types import WeatherRecord, WeatherSource
from app.data_sources.base import CallableWeatherDataSource
from app.weather_cache.memory import InMemoryWeatherCache
from app.weather_resolver import WeatherResolver, cache_key, select_source, time_bucket

NOW = dt.datetime(2024, 5, 10, 12, 0, tzinfo=dt.timezone.utc)


def _record(source=WeatherSource.CURRENT):
    return WeatherRecord(
        temperature=12, feels_like=10, humidity=80, pressure=1012, wind_speed=4.1,
        wind_direction=225, wind_gust=None, cloud_cover=75, visibility_km=10, condition="Rain",
        description="light rain", icon="10d", uv_index=None, observed_at=NOW, source=source,
    )


class RecordingSource:
    def __init__(self, delay=0.0):
        self.current_calls = []
        self.historical_calls = []
        self.delay = delay

    def current(self, lat, lon):
        time.sleep(self.delay)
        self.current_calls.append((lat, lon))
        return _record(WeatherSource.CURRENT)

    def historical(self, lat, lon, when):
        self.historical_calls.append((lat, lon, when))
        return _record(WeatherSource.HISTORICAL)


class TestSourceSelection(unittest.TestCase):
    def test_select_source_by_age(self):
        self.assertIs(select_source(0.5), WeatherSource.CURRENT)
        self.assertIs(select_source(1), WeatherSource.CURRENT)
        self.assertIs(select_source(10), WeatherSource.HISTORICAL)
        self.assertIs(select_source(120), WeatherSource.HISTORICAL)
        self.assertIs(select_source(200), WeatherSource.CURRENT_FALLBACK)
        self.assertTrue(WeatherSource.CURRENT_FALLBACK.degraded)
        self.assertFalse(WeatherSource.HISTORICAL.degraded)

    def test_time_bucket_floors_to_quarter_hour(self):
        when = dt.datetime(2024, 5, 1, 7, 29, 59, 999, tzinfo=dt.timezone.utc)
        self.assertEqual(time_bucket(when), dt.datetime(2024, 5, 1, 7, 15, tzinfo=dt.timezone.utc))

    def test_cache_key_coalesces_nearby_points(self):
        t1 = dt.datetime(2024, 5, 1, 7, 16, tzinfo=dt.timezone.utc)
        t2 = dt.datetime(2024, 5, 1, 7, 29, tzinfo=dt.timezone.utc)
        self.assertEqual(cache_key(51.50071, -0.12461, t1, "1"), cache_key(51.50074, -0.12459, t2, "1"))
        self.assertNotEqual(cache_key(51.5007, -0.1246, t1, "1"), cache_key(51.5007, -0.1246, t1, "2"))
        self.assertNotEqual(
            cache_key(51.5007, -0.1246, t1, "1"),
            cache_key(51.5007, -0.1246, t1 + dt.timedelta(minutes=15), "1"),
        )


class TestWeatherResolver(unittest.TestCase):
    def _resolver(self, source, cache=None):
        data_source = CallableWeatherDataSource(current=source.current, historical=source.historical)
        return WeatherResolver(data_source, cache or InMemoryWeatherCache(), clock=lambda: NOW)

    def test_recent_activity_uses_current(self):
        source = RecordingSource()
        record = self._resolver(source).resolve(51.5, -0.12, NOW - dt.timedelta(minutes=30), "1")
        self.assertIs(record.source, WeatherSource.CURRENT)
        self.assertEqual(len(source.current_calls), 1)
        self.assertEqual(source.historical_calls, [])

    def test_ten_hour_old_activity_uses_historical(self):
        source = RecordingSource()
        when = NOW - dt.timedelta(hours=10)
        record = self._resolver(source).resolve(51.5, -0.12, when, "1")
        self.assertIs(record.source, WeatherSource.HISTORICAL)
        self.assertEqual(source.historical_calls, [(51.5, -0.12, when)])

    def test_old_activity_falls_back_to_degraded_current(self):
        source = RecordingSource()
        with self.assertLogs("app.weather_resolver", level="WARNING") as logs:
            record = self._resolver(source).resolve(51.5, -0.12, NOW - dt.timedelta(hours=200), "1")
        self.assertIs(record.source, WeatherSource.CURRENT_FALLBACK)
        self.assertTrue(record.source.degraded)
        self.assertEqual(len(source.current_calls), 1)
        self.assertTrue(any("degraded" in line for line in logs.output))

    def test_same_bucket_hits_upstream_once(self):
        source = RecordingSource()
        resolver = self._resolver(source)
        base = NOW - dt.timedelta(hours=10)
        first = resolver.resolve(51.50071, -0.12461, base.replace(minute=1), "1")
        second = resolver.resolve(51.50074, -0.12459, base.replace(minute=14), "1")
        self.assertEqual(first, second)
        self.assertEqual(len(source.historical_calls), 1)

        resolver.resolve(51.50071, -0.12461, base.replace(minute=1), "2")
        self.assertEqual(len(source.historical_calls), 2)

    def test_concurrent_lookups_share_one_fetch(self):
        source = RecordingSource(delay=0.05)
        resolver = self._resolver(source)
        when = NOW - dt.timedelta(minutes=10)
        results = []

        threads = [
            threading.Thread(target=lambda: results.append(resolver.resolve(51.5, -0.12, when, "1")))
            for _ in range(5)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(results), 5)
        self.assertEqual(len(source.current_calls), 1)

    def test_expired_entry_is_fetched_again(self):
        class Clock:
            now = 0.0

            def __call__(self):
                return self.now

        clock = Clock()
        source = RecordingSource()
        resolver = self._resolver(source, cache=InMemoryWeatherCache(ttl_seconds=1800, clock=clock))
        when = NOW - dt.timedelta(minutes=10)

        resolver.resolve(51.5, -0.12, when, "1")
        clock.now = 1801
        resolver.resolve(51.5, -0.12, when, "1")
        self.assertEqual(len(source.current_calls), 2)

    def test_naive_activity_time_is_utc(self):
        source = RecordingSource()
        naive = (NOW - dt.timedelta(hours=10)).replace(tzinfo=None)
        record = self._resolver(source).resolve(51.5, -0.12, naive, "1")
        self.assertIs(record.source, WeatherSource.HISTORICAL)

    def test_records_are_immutable(self):
        with self.assertRaises(dataclasses.FrozenInstanceError):
            _record().temperature = 30


if __name__ == "__main__":
    unittest.main()
