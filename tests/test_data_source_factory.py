import unittest

from app.data_sources.factory import build_weather_source
from app.data_sources.openweather_client import OpenWeatherDataSource


class DummySettings:
    def __init__(self, **kwargs):
        self.openweathermap_api_key = None
        self.openweathermap_base_url = "https://api.openweathermap.org/data/3.0/onecall"
        self.http_timeout_seconds = 10.0
        for k, v in kwargs.items():
            setattr(self, k, v)


class TestDataSourceFactory(unittest.TestCase):
    def test_build_openweather_source(self):
        ds = build_weather_source(DummySettings(openweathermap_api_key="k", http_timeout_seconds=3.0))
        self.assertIsInstance(ds, OpenWeatherDataSource)
        self.assertEqual(ds.api_key, "k")
        self.assertEqual(ds.timeout, 3.0)

    def test_missing_api_key_raises(self):
        with self.assertRaises(ValueError):
            build_weather_source(DummySettings())


if __name__ == "__main__":
    unittest.main()
