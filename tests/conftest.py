"""Shared fixtures and builders for the trailsafe test suite."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from trailsafe.models import AvalancheBulletin

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def square_feature(feature_id, lat_min, lat_max, lon_min, lon_max, **props):
    """GeoJSON polygon feature covering a lat/lon box."""
    ring = [
        [lon_min, lat_min],
        [lon_max, lat_min],
        [lon_max, lat_max],
        [lon_min, lat_max],
        [lon_min, lat_min],
    ]
    return {
        "type": "Feature",
        "id": feature_id,
        "geometry": {"type": "Polygon", "coordinates": [ring]},
        "properties": props,
    }


def make_transport(routes: dict) -> httpx.MockTransport:
    """
    MockTransport that answers by URL substring.

    Values may be a dict/list (JSON body), a str (text body), an int (bare
    status), an Exception instance (raised) or a callable taking the request.
    Longer keys are matched first; unmatched URLs get a 404.
    """
    keys = sorted(routes, key=len, reverse=True)

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        for key in keys:
            if key in url:
                value = routes[key]
                if callable(value):
                    return value(request)
                if isinstance(value, Exception):
                    raise value
                if isinstance(value, int):
                    return httpx.Response(value)
                if isinstance(value, str):
                    return httpx.Response(200, text=value)
                return httpx.Response(200, json=value)
        return httpx.Response(404, text="not found")

    return httpx.MockTransport(handler)


def trend_rows(hours=12, start=None, **overrides):
    start = start or NOW
    rows = []
    for i in range(hours):
        row = {
            "time": (start + timedelta(hours=i)).isoformat(),
            "temp": 45,
            "feels_like": 45,
            "wind": 5,
            "gust": 10,
            "precip_chance": 10,
            "humidity": 50,
            "cloud_cover": 30,
            "condition": "Sunny",
            "is_daytime": True,
        }
        row.update(overrides)
        rows.append(row)
    return rows


def weather_snapshot(**overrides):
    """Calm, dry, daytime snapshot issued one hour before NOW."""
    snapshot = {
        "temp": 45,
        "feels_like": 45,
        "dew_point": 30,
        "wind_speed": 5,
        "wind_gust": 10,
        "wind_direction": "NW",
        "precip_chance": 10,
        "humidity": 50,
        "cloud_cover": 30,
        "pressure": 1015,
        "description": "Sunny",
        "is_daytime": True,
        "elevation_ft": 5000,
        "issued_time": (NOW - timedelta(hours=1)).isoformat(),
        "timezone": "America/Denver",
        "forecast_start_time": (NOW + timedelta(hours=1)).isoformat(),
        "forecast_end_time": (NOW + timedelta(hours=13)).isoformat(),
        "forecast_date": "2025-01-15",
        "forecast_date_range": {"start": "2025-01-15", "end": "2025-01-21"},
        "trend": trend_rows(start=NOW + timedelta(hours=1)),
        "visibility_risk": {"score": 0, "level": "Minimal", "active_hours": 0, "factors": []},
        "source_details": {"primary": "NOAA/NWS", "blended": False, "field_sources": {}},
    }
    snapshot.update(overrides)
    return snapshot


def bulletin(**overrides):
    """Reported, fresh bulletin at level 2 that is relevant to the objective."""
    values = {
        "center": "Utah Avalanche Center",
        "center_id": "UAC",
        "zone": "Salt Lake",
        "risk": "Moderate",
        "danger_level": 2,
        "danger_unknown": False,
        "coverage_status": "reported",
        "published_time": (NOW - timedelta(hours=6)).isoformat(),
        "relevant": True,
    }
    values.update(overrides)
    return AvalancheBulletin(**values)


def ok_feeds():
    """Healthy secondary feeds with nothing hazardous in them."""
    return {
        "alerts": {"status": "none", "active_count": 0, "alerts": [], "highest_severity": "Unknown"},
        "air_quality": {"status": "ok", "us_aqi": 20, "category": "Good"},
        "fire_risk": {"status": "ok", "level": 0, "label": "Low", "source": "Derived"},
        "heat_risk": {"status": "ok", "level": 0, "label": "Low"},
        "rainfall": {
            "status": "ok",
            "fallback_mode": None,
            "anchor_time": NOW.isoformat(),
            "totals": {"rain_past_24h_in": 0.0, "snow_past_24h_in": 0.0},
            "expected": {"window_hours": 12, "rain_window_in": 0.0, "snow_window_in": 0.0},
        },
    }


@pytest.fixture
def now():
    return NOW


MOUNTAIN = timezone(timedelta(hours=-7))
HOURLY_URL = "https://api.weather.gov/gridpoints/SLC/100,170/forecast/hourly"


def nws_periods(hours=48, **overrides):
    start = datetime(2025, 1, 15, 0, 0, tzinfo=MOUNTAIN)
    periods = []
    for i in range(hours):
        t = start + timedelta(hours=i)
        period = {
            "startTime": t.isoformat(),
            "endTime": (t + timedelta(hours=1)).isoformat(),
            "temperature": 30,
            "windSpeed": "10 mph",
            "windGust": None,
            "windDirection": "NW",
            "probabilityOfPrecipitation": {"unitCode": "wmoUnit:percent", "value": 20},
            "relativeHumidity": {"unitCode": "wmoUnit:percent", "value": 60},
            "dewpoint": {"unitCode": "wmoUnit:degC", "value": -5},
            "shortForecast": "Mostly Sunny",
            "isDaytime": 6 <= t.hour < 18,
        }
        period.update(overrides)
        periods.append(period)
    return periods


def nws_routes(periods=None):
    return {
        "api.weather.gov/points": {
            "properties": {"forecastHourly": HOURLY_URL, "timeZone": "America/Denver"},
        },
        "forecast/hourly": {
            "properties": {
                "updateTime": "2025-01-15T04:00:00+00:00",
                "elevation": {"unitCode": "wmoUnit:m", "value": 2500},
                "periods": periods if periods is not None else nws_periods(),
            }
        },
    }


def open_meteo_payload(hours=48):
    times = [(datetime(2025, 1, 15) + timedelta(hours=i)).strftime("%Y-%m-%dT%H:%M") for i in range(hours)]
    return {
        "timezone": "America/Denver",
        "utc_offset_seconds": -25200,
        "elevation": 2400,
        "hourly": {
            "time": times,
            "temperature_2m": [28.0] * hours,
            "dew_point_2m": [20.0] * hours,
            "relative_humidity_2m": [70] * hours,
            "precipitation_probability": [40] * hours,
            "weather_code": [71] * hours,
            "cloud_cover": [40] * hours,
            "surface_pressure": [1012.4] * hours,
            "wind_speed_10m": [8.0] * hours,
            "wind_gusts_10m": [15.0] * hours,
            "wind_direction_10m": [315] * hours,
            "is_day": [1] * hours,
        },
    }
