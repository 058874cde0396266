import httpx
import pytest

from conftest import make_transport, nws_periods, nws_routes, open_meteo_payload, trend_rows, weather_snapshot
from trailsafe.weather import (
    ForecastRangeError,
    WeatherReconciler,
    cardinal_from_degrees,
    compute_feels_like,
    compute_visibility_risk,
    estimate_gust,
    parse_wind_mph,
    select_start_index,
    trend_series,
)


async def get_weather(routes, selected_date="2025-01-15", start="06:00", window=12):
    async with httpx.AsyncClient(transport=make_transport(routes)) as client:
        return await WeatherReconciler(client).get_weather(40.6, -111.7, selected_date, start, window)


def test_feels_like_uses_wind_chill_only_when_cold_and_windy():
    assert compute_feels_like(60, 20) == 60
    assert compute_feels_like(30, 2) == 30
    assert compute_feels_like(30, 10) < 30
    assert compute_feels_like(None, 10) is None


def test_gust_and_wind_parsing():
    assert estimate_gust(10) == 14
    assert estimate_gust(None) is None
    assert parse_wind_mph("5 to 15 mph") == 5
    assert parse_wind_mph("calm") is None
    assert cardinal_from_degrees(350) == "N"
    assert cardinal_from_degrees(315) == "NW"
    assert cardinal_from_degrees("x") is None


def test_select_start_index_rules():
    times = [p["startTime"] for p in nws_periods(hours=48)]
    assert select_start_index(times, "2025-01-15", None) == 0
    assert select_start_index(times, "2025-01-15", "07:30") == 8
    assert select_start_index(times, "2025-01-16", "6:00 AM") == 30
    assert select_start_index(times, "2025-01-15", "23:59") == 23


def test_select_start_index_outside_range():
    times = [p["startTime"] for p in nws_periods(hours=48)]
    with pytest.raises(ForecastRangeError) as info:
        select_start_index(times, "2025-02-01", None)
    assert info.value.available == {"start": "2025-01-15", "end": "2025-01-16"}


def test_visibility_risk_blizzard_is_extreme():
    weather = weather_snapshot(
        description="Blizzard", precip_chance=90, wind_speed=40, wind_gust=55,
        trend=trend_rows(condition="Blizzard", precip_chance=90, wind=40, gust=55),
    )
    risk = compute_visibility_risk(weather)
    assert risk["level"] == "Extreme"
    assert risk["active_hours"] == 12


def test_visibility_risk_calm_is_minimal():
    risk = compute_visibility_risk(weather_snapshot())
    assert risk == {"score": 0, "level": "Minimal", "active_hours": 0, "factors": []}


def test_trend_series_drops_missing_values():
    rows = [{"gust": 10}, {"gust": None}, {"gust": 30}, {"gust": True}]
    assert trend_series(rows, "gust").tolist() == [10.0, 30.0]


@pytest.mark.asyncio
async def test_nws_snapshot_without_fallback():
    weather = await get_weather(nws_routes())

    assert weather["source_details"]["primary"] == "NOAA/NWS"
    assert weather["source_details"]["blended"] is False
    assert weather["forecast_start_time"] == "2025-01-15T06:00:00-07:00"
    assert len(weather["trend"]) == 12
    assert weather["temp"] == 30
    assert weather["feels_like"] < 30
    assert weather["wind_gust"] == 14
    assert weather["source_details"]["field_sources"]["wind_gust"] == "Estimated from NWS sustained wind"
    assert weather["dew_point"] == 23
    assert weather["elevation_ft"] == 8202
    assert weather["pressure"] is None
    assert weather["visibility_risk"]["level"] == "Minimal"


@pytest.mark.asyncio
async def test_nws_gaps_are_filled_from_open_meteo():
    routes = nws_routes()
    routes["api.open-meteo.com/v1/forecast"] = open_meteo_payload()
    weather = await get_weather(routes)

    details = weather["source_details"]
    assert details["primary"] == "NOAA/NWS"
    assert details["blended"] is True
    assert weather["temp"] == 30
    assert weather["pressure"] == 1012
    assert weather["cloud_cover"] == 40
    assert details["field_sources"]["pressure"] == "Open-Meteo"
    assert details["field_sources"]["temp"] == "NOAA/NWS"
    assert all(row["cloud_cover"] == 40 for row in weather["trend"])
    assert details["field_sources"]["trend.cloud_cover"] == "Open-Meteo"


@pytest.mark.asyncio
async def test_null_nws_core_fields_are_filled_per_field():
    periods = nws_periods(
        temperature=None,
        probabilityOfPrecipitation={"unitCode": "wmoUnit:percent", "value": None},
        shortForecast=None,
    )
    routes = nws_routes(periods=periods)
    routes["api.open-meteo.com/v1/forecast"] = open_meteo_payload()
    weather = await get_weather(routes)

    details = weather["source_details"]
    assert details["primary"] == "NOAA/NWS"
    assert details["blended"] is True
    assert weather["temp"] == 28
    assert weather["precip_chance"] == 40
    assert weather["feels_like"] is not None
    assert weather["description"] == "Light Snow"
    assert weather["wind_speed"] == 10
    for key in ("temp", "feels_like", "precip_chance", "description"):
        assert details["field_sources"][key] == "Open-Meteo"
    assert details["field_sources"]["wind_speed"] == "NOAA/NWS"

    assert all(row["temp"] == 28 for row in weather["trend"])
    assert all(row["precip_chance"] == 40 for row in weather["trend"])
    assert all(row["wind"] == 10 for row in weather["trend"])
    assert details["field_sources"]["trend.temp"] == "Open-Meteo"
    assert details["field_sources"]["trend.precip_chance"] == "Open-Meteo"


@pytest.mark.asyncio
async def test_null_nws_temperature_without_fallback_is_not_credited():
    weather = await get_weather(nws_routes(periods=nws_periods(temperature=None)))

    assert weather["temp"] is None
    assert "temp" not in weather["source_details"]["field_sources"]


@pytest.mark.asyncio
async def test_short_nws_trend_is_replaced():
    routes = nws_routes(periods=nws_periods(hours=9))
    routes["api.open-meteo.com/v1/forecast"] = open_meteo_payload()
    weather = await get_weather(routes)

    assert len(weather["trend"]) == 12
    assert weather["source_details"]["field_sources"]["trend"] == "Open-Meteo"


@pytest.mark.asyncio
async def test_open_meteo_takes_over_when_nws_fails():
    routes = {
        "api.weather.gov": 500,
        "api.open-meteo.com/v1/forecast": open_meteo_payload(),
    }
    weather = await get_weather(routes)

    assert weather["source_details"]["primary"] == "Open-Meteo"
    assert weather["description"] == "Light Snow"
    assert weather["wind_direction"] == "NW"
    assert weather["issued_time"] is not None
    assert weather["forecast_start_time"] == "2025-01-15T06:00:00-07:00"
    assert weather["elevation_ft"] == 7874


@pytest.mark.asyncio
async def test_both_providers_down_returns_sentinel():
    weather = await get_weather({"api.weather.gov": 503, "api.open-meteo.com": httpx.ConnectError("down")})

    assert weather["description"] == "Weather data unavailable"
    assert weather["temp"] is None
    assert weather["trend"] == []
    assert weather["visibility_risk"] is None
    assert weather["source_details"]["primary"] == "Unavailable"


@pytest.mark.asyncio
async def test_date_outside_forecast_range_raises():
    with pytest.raises(ForecastRangeError):
        await get_weather(nws_routes(), selected_date="2025-03-01")
