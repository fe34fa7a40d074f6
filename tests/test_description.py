import datetime as dt
import unittest

from app.app_types import WeatherRecord
from app.description import compose_description, format_weather_line, has_weather_data, wind_direction_label


def _record(**overrides):
    values = dict(
        temperature=12, feels_like=10, humidity=81, pressure=1012, wind_speed=4.1,
        wind_direction=225, wind_gust=None, cloud_cover=75, visibility_km=10, condition="Rain",
        description="light rain", icon="10d", uv_index=None,
        observed_at=dt.datetime(2024, 5, 1, 12, tzinfo=dt.timezone.utc),
    )
    values.update(overrides)
    return WeatherRecord(**values)


class TestWindDirection(unittest.TestCase):
    def test_compass_labels(self):
        self.assertEqual(wind_direction_label(0), "N")
        self.assertEqual(wind_direction_label(22.5), "NNE")
        self.assertEqual(wind_direction_label(359), "N")
        self.assertEqual(wind_direction_label(90), "E")
        self.assertEqual(wind_direction_label(225), "SW")
        self.assertEqual(wind_direction_label(-90), "W")
        self.assertEqual(wind_direction_label(720), "N")


class TestWeatherMarkers(unittest.TestCase):
    def test_detects_previous_weather_lines(self):
        for text in (
            "Great ride\n\nLight rain, 12°C, Feels like 10°C, Humidity 81%, Wind 4.1m/s from SW",
            "Hot one, 90°F",
            "feels fine. Feels like summer",
            "Humidity was brutal",
            "Wind 3m/s from N",
            "🌤️ Weather: sunny",
        ):
            self.assertTrue(has_weather_data(text), text)

    def test_plain_descriptions_are_not_marked(self):
        for text in (None, "", "Easy spin with friends", "Felt like flying"):
            self.assertFalse(has_weather_data(text), text)


class TestCompose(unittest.TestCase):
    def test_format_weather_line(self):
        self.assertEqual(
            format_weather_line(_record()),
            "Light rain, 12°C, Feels like 10°C, Humidity 81%, Wind 4.1m/s from SW",
        )

    def test_whole_number_wind_speed(self):
        self.assertIn("Wind 3m/s from N", format_weather_line(_record(wind_speed=3.0, wind_direction=0)))

    def test_appends_after_blank_line(self):
        composed = compose_description("Morning loop", _record())
        self.assertTrue(composed.startswith("Morning loop\n\nLight rain, 12°C"))

    def test_standalone_when_no_description(self):
        self.assertEqual(compose_description(None, _record()), format_weather_line(_record()))
        self.assertEqual(compose_description("", _record()), format_weather_line(_record()))

    def test_composed_description_is_detected_as_enriched(self):
        self.assertTrue(has_weather_data(compose_description("Ride", _record())))


if __name__ == "__main__":
    unittest.main()
