"""Tests for the weather context lookup."""

import httpx
import pytest

from pulsemix.config import WeatherConfig
from pulsemix.context import WeatherService


def service_for(handler):
    config = WeatherConfig(location="Omaha,NE", latitude=41.0, longitude=-96.0)
    return WeatherService(config, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


async def test_current_conditions():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"current": {
            "temperature_2m": 48.6,
            "relative_humidity_2m": 81,
            "precipitation": 0.4,
            "weather_code": 61,
            "cloud_cover": 90,
            "wind_speed_10m": 12.2,
        }})

    weather = await service_for(handler).fetch_current()

    assert weather.to_dict() == {
        "location": "Omaha,NE",
        "temperature": "49°F",
        "condition": "Slight rain",
        "description": "slight rain",
        "wind": "12 mph",
        "humidity": "81%",
        "precipitation": "0.4 mm",
        "isRaining": True,
        "isOvercast": True,
        "source": "open-meteo",
    }
    assert seen[0].url.params["temperature_unit"] == "fahrenheit"


@pytest.mark.parametrize("response", [
    httpx.Response(200, json={"current": None}),
    httpx.Response(200, json={"current": "sunny"}),
    httpx.Response(200, json=[1, 2]),
    httpx.Response(200, json={"current": {"weather_code": 0}}),
    httpx.Response(200, text="<html>"),
    httpx.Response(503, json={}),
])
async def test_bad_responses_fall_back(response):
    weather = await service_for(lambda request: response).fetch_current()

    assert weather.source == "fallback"
    assert weather.temperature == "62°F"
