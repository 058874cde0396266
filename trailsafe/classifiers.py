"""Derived fire-weather and heat-stress classifiers."""

import re
from typing import Optional

import numpy as np

import config
from .weather import is_weather_unavailable, trend_series

SMOKE_RE = re.compile(r"smoke|haze", re.IGNORECASE)

FIRE_GUIDANCE = [
    "No notable fire-weather signal.",
    "Stay aware of local fire restrictions.",
    "Fire weather is elevated; avoid open flames and know your exits.",
    "High fire danger; check closures and carry an evacuation plan.",
    "Extreme fire danger; consider postponing travel in fire-prone terrain.",
]
HEAT_GUIDANCE = [
    "No notable heat-stress signal.",
    "Carry extra water and plan shade breaks.",
    "Start early and limit exposure during peak afternoon heat.",
    "Heat illness is likely with exertion; shorten objectives and hydrate aggressively.",
    "Dangerous heat; avoid strenuous travel during the day.",
]


def unavailable_fire_risk() -> dict:
    return {
        "source": "Derived from weather, alerts and air quality",
        "status": "unavailable",
        "level": None,
        "label": "Unknown",
        "guidance": "Fire-weather signal unavailable.",
        "reasons": [],
    }


def unavailable_heat_risk() -> dict:
    return {
        "source": "Derived from weather forecast",
        "status": "unavailable",
        "level": None,
        "label": "Unknown",
        "guidance": "Heat-stress signal unavailable.",
        "reasons": [],
    }


def build_fire_risk(weather: dict, alerts: Optional[dict] = None, air_quality: Optional[dict] = None,
                    alerts_relevant: bool = True) -> dict:
    """
    Fire-weather level 0-4 from alerts, hot/dry/windy weather and smoke.

    Alert events are only considered when alerts apply to the selected start.
    """
    if is_weather_unavailable(weather):
        return unavailable_fire_risk()

    level = 0
    reasons = []

    events = []
    if alerts_relevant and alerts and alerts.get("status") == "ok":
        events = [str(a.get("event") or "") for a in alerts.get("alerts") or []]
    if any("red flag warning" in e.lower() for e in events):
        level = 4
        reasons.append("Red Flag Warning in effect.")
    elif any("fire weather watch" in e.lower() for e in events):
        level = 3
        reasons.append("Fire Weather Watch in effect.")

    temp = weather.get("temp")
    humidity = weather.get("humidity")
    wind = weather.get("wind_speed") or 0
    gust = weather.get("wind_gust") or 0
    if temp is not None and humidity is not None:
        if temp >= 90 and humidity <= 20 and wind >= 20:
            weather_level = 4
        elif temp >= 80 and humidity <= 25 and wind >= 15:
            weather_level = 3
        elif temp >= 70 and humidity <= 30 and (wind >= 12 or gust >= 20):
            weather_level = 2
        else:
            weather_level = 0
        if weather_level:
            reasons.append(f"Hot, dry and windy: {temp}F, {humidity}% RH, wind {wind} mph.")
            level = max(level, weather_level)

    aqi = (air_quality or {}).get("us_aqi")
    smoky = bool(SMOKE_RE.search(str(weather.get("description") or "")))
    smoke_alert = any("smoke" in e.lower() or "wildfire" in e.lower() for e in events)
    if smoky or (aqi is not None and aqi >= 101) or smoke_alert:
        level = max(level, 2)
        reasons.append("Smoke or poor air quality suggests nearby fire activity.")
    elif aqi is not None and aqi >= 51:
        level = max(level, 1)
        reasons.append("Moderate air quality may reflect distant smoke.")

    return {
        "source": "Derived from weather, alerts and air quality",
        "status": "ok",
        "level": level,
        "label": config.FIRE_LEVEL_LABELS[level],
        "guidance": FIRE_GUIDANCE[level],
        "reasons": reasons,
    }


def build_heat_risk(weather: dict) -> dict:
    """Heat-stress level 0-4 from peak apparent temperature and humidity."""
    if is_weather_unavailable(weather):
        return unavailable_heat_risk()

    temps = trend_series(weather.get("trend") or [], "temp")
    feels_like = weather.get("feels_like")
    candidates = list(temps)
    if feels_like is not None:
        candidates.append(feels_like)
    if not candidates:
        return unavailable_heat_risk()
    peak = float(np.max(candidates))

    temp = weather.get("temp")
    humidity = weather.get("humidity")
    night = weather.get("is_daytime") is False

    level = 0
    reasons = []
    if peak >= 100:
        level = 4
    elif peak >= 92:
        level = 3
    elif peak >= 84:
        level = 2
    elif peak >= 76 and not night:
        level = 1
    if level:
        reasons.append(f"Peak apparent temperature near {round(peak)}F.")

    if temp is not None and humidity is not None:
        humid_level = 0
        if temp >= 92 and humidity >= 55:
            humid_level = 4
        elif temp >= 86 and humidity >= 55:
            humid_level = 3
        elif temp >= 80 and humidity >= 45:
            humid_level = 2
        if humid_level > level:
            level = humid_level
            reasons.append(f"Humid heat: {temp}F with {humidity}% RH limits evaporative cooling.")

    return {
        "source": "Derived from weather forecast",
        "status": "ok",
        "level": level,
        "label": config.HEAT_LEVEL_LABELS[level],
        "guidance": HEAT_GUIDANCE[level],
        "reasons": reasons,
        "peak_feels_like": round(peak),
    }
