"""Request validation and the end-to-end safety report pipeline."""

import logging
from datetime import datetime
from typing import Optional

import httpx

import config
from .avalanche import assess_avalanche, unknown_bulletin
from .classifiers import build_fire_risk, build_heat_risk, unavailable_fire_risk, unavailable_heat_risk
from .feeds import (
    SnotelStationCache,
    fetch_air_quality,
    fetch_alerts,
    fetch_rainfall,
    fetch_snowpack,
    fetch_solar,
    unavailable_air_quality,
    unavailable_alerts,
    unavailable_snowpack,
    unavailable_solar,
    zeroed_rainfall,
)
from .fetch import settle_all
from .geo import MapLayerCache
from .relevance import evaluate_relevance
from .scoring import SafetyScoreEngine
from .terrain import classify_terrain
from .timeutil import hours_between, is_valid_date, parse_clock_minutes, parse_iso, utcnow
from .weather import ForecastRangeError, WeatherReconciler, clamp_window_hours, unavailable_weather

logger = logging.getLogger(__name__)


class InvalidRequest(ValueError):
    """Caller input that fails validation before any upstream call is made."""


def validate_request(lat, lon, date: Optional[str] = None, start: Optional[str] = None,
                     travel_window_hours=None, today: Optional[str] = None) -> dict:
    """
    Normalize and validate request parameters.

    Raises:
        InvalidRequest: on missing or malformed coordinates, date or start time.
    """
    if lat in (None, "") or lon in (None, ""):
        raise InvalidRequest("Latitude and longitude are required")
    try:
        lat_value = float(lat)
        lon_value = float(lon)
    except (TypeError, ValueError):
        raise InvalidRequest("Latitude/longitude must be valid decimal coordinates.") from None
    if not (-90 <= lat_value <= 90 and -180 <= lon_value <= 180):
        raise InvalidRequest("Latitude/longitude must be valid decimal coordinates.")

    if date in (None, ""):
        date = today or utcnow().strftime("%Y-%m-%d")
    elif not is_valid_date(str(date)):
        raise InvalidRequest("Invalid date format. Use YYYY-MM-DD.")

    if start not in (None, "") and parse_clock_minutes(start) is None:
        raise InvalidRequest("Invalid start time. Use HH:MM.")

    return {
        "lat": lat_value,
        "lon": lon_value,
        "date": str(date),
        "start": start or None,
        "travel_window_hours": clamp_window_hours(
            travel_window_hours if travel_window_hours not in (None, "") else config.DEFAULT_TRAVEL_WINDOW_HOURS
        ),
    }


def _selected_start(weather: dict, selected_date: str, start_clock: Optional[str]) -> Optional[datetime]:
    start = parse_iso(weather.get("forecast_start_time"))
    if start is not None:
        return start
    minutes = parse_clock_minutes(start_clock) or 0
    return parse_iso(f"{selected_date}T{minutes // 60:02d}:{minutes % 60:02d}:00+00:00")


def _settled(result, name: str, fallback, degraded: list):
    if isinstance(result, Exception):
        logger.warning("%s feed unavailable: %s", name, result)
        degraded.append(name)
        return fallback
    return result


async def build_safety_report(
    client: httpx.AsyncClient,
    cache: MapLayerCache,
    lat: float,
    lon: float,
    selected_date: str,
    start_clock: Optional[str] = None,
    travel_window_hours: int = config.DEFAULT_TRAVEL_WINDOW_HOURS,
    now: Optional[datetime] = None,
    stations: Optional[SnotelStationCache] = None,
) -> dict:
    """
    Fetch, reconcile and score every hazard feed for one point and plan window.

    Weather and the zone map layer are fetched first. The avalanche chain then
    runs in the same fan-out as alerts, air quality, rainfall, snowpack and
    daylight; relevance is decided once both avalanche and snowpack are in.
    Any feed failure degrades that feed alone and is reported through
    partial_data/api_warning.

    Raises:
        ForecastRangeError: when the selected date is outside the forecast range.
    """
    now = now or utcnow()
    window = clamp_window_hours(travel_window_hours)
    degraded = []

    weather_result, _ = await settle_all(
        WeatherReconciler(client).get_weather(lat, lon, selected_date, start_clock, window),
        cache.get(client),
    )
    if isinstance(weather_result, ForecastRangeError):
        raise weather_result
    weather = _settled(weather_result, "weather", unavailable_weather(selected_date), degraded)
    if weather.get("source_details", {}).get("primary") == "Unavailable" and "weather" not in degraded:
        degraded.append("weather")

    selected_start = _selected_start(weather, selected_date, start_clock)
    target_time = selected_start.isoformat() if selected_start else None

    state = {
        "avalanche": unknown_bulletin("temporarily_unavailable"),
        "alerts": unavailable_alerts("unavailable", target_time),
        "air_quality": unavailable_air_quality(),
        "rainfall": zeroed_rainfall(window),
        "snowpack": unavailable_snowpack(),
        "solar": unavailable_solar(),
        "fire_risk": unavailable_fire_risk(),
        "heat_risk": unavailable_heat_risk(),
        "terrain_condition": None,
        "safety": None,
    }
    warning = None

    try:
        avalanche, alerts, air_quality, rainfall, snowpack, solar = await settle_all(
            assess_avalanche(client, cache, lat, lon, selected_start, now),
            fetch_alerts(client, lat, lon, target_time),
            fetch_air_quality(client, lat, lon, target_time, now),
            fetch_rainfall(client, lat, lon, target_time, window, now),
            fetch_snowpack(client, lat, lon, selected_date, stations),
            fetch_solar(client, lat, lon, selected_date),
        )
        state["avalanche"] = _settled(avalanche, "avalanche", state["avalanche"], degraded)
        if state["avalanche"].coverage_status == "temporarily_unavailable" and "avalanche" not in degraded:
            degraded.append("avalanche")
        state["alerts"] = _settled(alerts, "alerts", state["alerts"], degraded)
        state["air_quality"] = _settled(air_quality, "air_quality", state["air_quality"], degraded)
        state["rainfall"] = _settled(rainfall, "rainfall", state["rainfall"], degraded)
        state["snowpack"] = _settled(snowpack, "snowpack", state["snowpack"], degraded)
        state["solar"] = _settled(solar, "solar", state["solar"], degraded)

        lead = hours_between(selected_start, now)
        alerts_relevant = lead is None or lead <= config.ALERT_LEAD_HOURS
        state["fire_risk"] = build_fire_risk(weather, state["alerts"], state["air_quality"], alerts_relevant)
        state["heat_risk"] = build_heat_risk(weather)

        relevance = evaluate_relevance(
            lat, selected_date, weather, state["avalanche"], state["snowpack"], state["rainfall"]
        )
        state["avalanche"].relevant = relevance["relevant"]
        state["avalanche"].relevance_reason = relevance["reason"]

        state["terrain_condition"] = classify_terrain(weather, state["snowpack"], state["rainfall"])
    except Exception:
        logger.exception("Safety report pipeline failed for %.4f, %.4f", lat, lon)
        warning = "Some hazard data could not be processed; the report is built from partial data."

    try:
        state["safety"] = SafetyScoreEngine().score(
            weather=weather,
            avalanche=state["avalanche"],
            alerts=state["alerts"],
            air_quality=state["air_quality"],
            fire_risk=state["fire_risk"],
            heat_risk=state["heat_risk"],
            rainfall=state["rainfall"],
            selected_date=selected_date,
            solar=state["solar"],
            start_clock=start_clock,
            now=now,
            travel_window_hours=window,
        ).to_dict()
    except Exception:
        logger.exception("Safety scoring failed for %.4f, %.4f", lat, lon)
        warning = "Safety score could not be computed from the available data."

    if warning is None and degraded:
        warning = f"Partial data: {', '.join(sorted(set(degraded)))} unavailable."

    return {
        "location": {"lat": lat, "lon": lon},
        "forecast": {
            "selected_date": selected_date,
            "start_clock": start_clock,
            "travel_window_hours": window,
            "selected_start": target_time,
        },
        "weather": weather,
        "avalanche": state["avalanche"].to_dict(),
        "alerts": state["alerts"],
        "air_quality": state["air_quality"],
        "rainfall": state["rainfall"],
        "snowpack": state["snowpack"],
        "solar": state["solar"],
        "fire_risk": state["fire_risk"],
        "heat_risk": state["heat_risk"],
        "terrain_condition": state["terrain_condition"],
        "safety": state["safety"],
        "generated_at": now.isoformat(),
        "partial_data": warning is not None,
        "api_warning": warning,
    }
