"""Trail surface classification from weather, snowpack and recent precipitation."""

import re
from typing import Optional

import numpy as np

from .relevance import snowpack_maxima
from .weather import trend_series

SNOW_WEATHER_RE = re.compile(r"snow|sleet|ice|freezing|blizzard|flurr|graupel|rime|wintry")
RAIN_WEATHER_RE = re.compile(r"rain|drizzle|shower|thunder|storm|wet")
SNOW_TREND_RE = re.compile(r"snow|sleet|freezing|flurr|wintry|ice")
UNAVAILABLE_RE = re.compile(r"weather data unavailable|weather unavailable|unavailable")

TERRAIN_LABELS = {
    "weather_unavailable": "Weather Unavailable",
    "snow_fresh_powder": "Fresh Powder Snow",
    "spring_snow": "Spring Snow",
    "wet_snow": "Wet / Slushy Snow",
    "snow_ice": "Icy / Firm Snow",
    "wet_muddy": "Wet / Muddy",
    "cold_slick": "Cold / Slick",
    "dry_loose": "Dry / Loose",
    "mixed_variable": "Variable Surface",
}

SNOW_PROFILE_TO_TERRAIN = {
    "fresh_powder": "snow_fresh_powder",
    "spring_snow": "spring_snow",
    "wet_slushy_snow": "wet_snow",
    "icy_hardpack": "snow_ice",
}


def _num(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _fmt(value: Optional[float], digits: int = 1) -> str:
    return f"{value:.{digits}f} in" if value is not None else "N/A"


def derive_snow_profile(signals: dict) -> dict:
    """
    Describe what the snow surface is likely doing.

    Args:
        signals: Signal dict built by classify_terrain.

    Returns:
        Dict with "code", "label", "summary", "confidence" and "reasons".
    """
    temp = signals["temp_f"]
    precip = signals["precip_chance"]
    depth = signals["max_snow_depth_in"]
    swe = signals["max_swe_in"]
    ft_min = signals["freeze_thaw_min_f"]
    ft_max = signals["freeze_thaw_max_f"]
    coverage = signals["has_snow_coverage"]
    fresh = signals["has_fresh_snow"]
    rain_accum = signals["has_rain_accumulation"]
    wet_hours = signals["wet_trend_hours"]
    snow_hours = signals["snow_trend_hours"]

    any_snow = (
        coverage
        or signals["has_snow_weather"]
        or fresh
        or snow_hours >= 1
        or (depth is not None and depth >= 0.5)
        or (swe is not None and swe >= 0.1)
    )
    if not any_snow:
        if depth is not None or swe is not None:
            reason = f"Snowpack signal is minimal (depth {_fmt(depth)}, SWE {_fmt(swe)})."
        else:
            reason = "No reliable snow depth/SWE signal is available for this objective."
        return {
            "code": "no_snow_signal",
            "label": "No broad snow signal",
            "summary": "No broad snowpack signal was detected in available observations and forecast cues.",
            "confidence": "medium" if depth is not None or swe is not None else "low",
            "reasons": [reason],
        }

    swing = None
    if ft_min is not None and ft_max is not None:
        swing = f"{round(ft_min)}F to {round(ft_max)}F"

    if (
        (fresh or snow_hours >= 2 or (signals["has_snow_weather"] and (precip is None or precip >= 40)))
        and not rain_accum
        and (temp is None or temp <= 30)
    ):
        reasons = ["Recent snowfall and cold temperatures support soft, unconsolidated surface snow."]
        if swing:
            reasons.append(f"24h temperature context stays winter-like ({swing}).")
        return {
            "code": "fresh_powder",
            "label": "Fresh Powder",
            "summary": "Fresh, cold snowfall signal suggests powder-like surface conditions.",
            "confidence": "high" if coverage and fresh else "medium",
            "reasons": reasons,
        }

    if (
        coverage
        and signals["has_freeze_thaw"]
        and ft_min is not None and ft_max is not None
        and ft_min <= 31 and ft_max >= 38
        and not rain_accum
        and wet_hours == 0
    ):
        return {
            "code": "spring_snow",
            "label": "Spring Snow",
            "summary": "Freeze-thaw cycle indicates spring snow (corn window potential with rapid warming effects).",
            "confidence": "medium",
            "reasons": [
                "Freeze-thaw pattern supports spring-style corn cycles on solar aspects.",
                f"24h temperature swing ({swing}) aligns with spring transition snow.",
            ],
        }

    if (
        coverage
        and ((temp is not None and temp >= 34) or (ft_max is not None and ft_max >= 36))
        and (rain_accum or wet_hours >= 1 or (precip is not None and precip >= 45))
    ):
        reasons = ["Warm/wet signal on top of snowpack supports wet, heavy, or slushy surface snow."]
        if precip is not None:
            reasons.append(f"Precipitation chance ({round(precip)}%) increases wet-snow likelihood.")
        return {
            "code": "wet_slushy_snow",
            "label": "Wet / Slushy Snow",
            "summary": "Warm and/or wet signal over existing snowpack suggests slushy, heavy surface conditions.",
            "confidence": "medium",
            "reasons": reasons,
        }

    if (
        coverage
        and not fresh
        and ((temp is not None and temp <= 30) or (ft_min is not None and ft_min <= 28))
        and wet_hours == 0
    ):
        reasons = ["Cold, non-stormy snowpack signal favors firm or icy surface conditions."]
        if temp is not None:
            reasons.append(f"Current temperature near {round(temp)}F supports surface hardening/refreeze.")
        return {
            "code": "icy_hardpack",
            "label": "Icy / Firm Snow",
            "summary": "Snowpack appears firm/refrozen with icy travel potential.",
            "confidence": "medium",
            "reasons": reasons,
        }

    return {
        "code": "mixed_snow",
        "label": "Mixed Snow Surface",
        "summary": "Mixed snow profile with variable firmness and moisture across terrain/aspects.",
        "confidence": "medium" if coverage else "low",
        "reasons": ["Snowpack signal exists, but no single fresh/icy/spring pattern dominates."],
    }


def _collect_signals(weather: dict, snowpack: Optional[dict], rainfall: Optional[dict]) -> dict:
    weather = weather or {}
    description = str(weather.get("description") or "").lower()
    temp = _num(weather.get("temp"))
    precip = _num(weather.get("precip_chance"))
    humidity = _num(weather.get("humidity"))
    wind = _num(weather.get("wind_speed"))
    gust = _num(weather.get("wind_gust"))

    trend = weather.get("trend") or []
    near_term = trend[:6]
    wet_hours = 0
    snow_hours = 0
    for row in near_term:
        row_precip = _num(row.get("precip_chance"))
        condition = str(row.get("condition") or "").lower()
        if (row_precip is not None and row_precip >= 55) or RAIN_WEATHER_RE.search(condition):
            wet_hours += 1
        if (row_precip is not None and row_precip >= 35 and temp is not None and temp <= 34) or SNOW_TREND_RE.search(condition):
            snow_hours += 1

    temps = trend_series(trend[:24], "temp")
    ft_min = float(np.min(temps)) if temps.size else None
    ft_max = float(np.max(temps)) if temps.size else None

    depth, swe = snowpack_maxima(snowpack)

    totals = (rainfall or {}).get("totals") or {}
    rain12 = _num(totals.get("rain_past_12h_in"))
    rain24 = _num(totals.get("rain_past_24h_in"))
    rain48 = _num(totals.get("rain_past_48h_in"))
    snow12 = _num(totals.get("snow_past_12h_in"))
    snow24 = _num(totals.get("snow_past_24h_in"))
    snow48 = _num(totals.get("snow_past_48h_in"))

    return {
        "description": description,
        "temp_f": temp,
        "precip_chance": precip,
        "humidity": humidity,
        "wind_mph": wind,
        "gust_mph": gust,
        "trend_points": len(trend),
        "wet_trend_hours": wet_hours,
        "snow_trend_hours": snow_hours,
        "freeze_thaw_min_f": ft_min,
        "freeze_thaw_max_f": ft_max,
        "max_snow_depth_in": depth,
        "max_swe_in": swe,
        "rain_12h_in": rain12,
        "rain_24h_in": rain24,
        "rain_48h_in": rain48,
        "snow_12h_in": snow12,
        "snow_24h_in": snow24,
        "snow_48h_in": snow48,
        "has_snow_coverage": (depth is not None and depth >= 2) or (swe is not None and swe >= 0.5),
        "has_snow_weather": bool(SNOW_WEATHER_RE.search(description))
        or (temp is not None and temp <= 34 and precip is not None and precip >= 35),
        "has_rain_weather": bool(RAIN_WEATHER_RE.search(description))
        or (precip is not None and precip >= 60 and temp is not None and temp > 34),
        "has_rain_accumulation": (rain12 is not None and rain12 >= 0.1)
        or (rain24 is not None and rain24 >= 0.2)
        or (rain48 is not None and rain48 >= 0.35),
        "has_fresh_snow": (snow12 is not None and snow12 >= 0.5)
        or (snow24 is not None and snow24 >= 1.5)
        or (snow48 is not None and snow48 >= 2.5),
        "has_freeze_thaw": (ft_min is not None and ft_max is not None and ft_min <= 31 and ft_max >= 35)
        or (temp is not None and 30 <= temp <= 36 and precip is not None and precip >= 35),
        "has_dry_wind": (humidity is not None and humidity <= 30)
        and (precip is None or precip < 20)
        and ((gust is not None and gust >= 25) or (wind is not None and wind >= 16)),
    }


def classify_terrain(weather: dict, snowpack: Optional[dict] = None, rainfall: Optional[dict] = None) -> dict:
    """
    Classify the expected trail surface.

    Branches are tried in order: weather unavailable, any snow signal, wet,
    freeze-thaw or cold and damp, dry and windy, then variable. Confidence
    comes from the accumulated evidence weight of the reasons given.

    Returns:
        Dict with "code", "label", "confidence", "summary", "reasons",
        "snow_profile" and "signals".
    """
    s = _collect_signals(weather, snowpack, rainfall)
    profile = derive_snow_profile(s)
    temp = s["temp_f"]
    precip = s["precip_chance"]
    humidity = s["humidity"]

    reasons = []
    weight = 0

    def add(reason: str, w: int = 1):
        nonlocal weight
        reasons.append(reason)
        weight += w

    unavailable = not s["description"] or bool(UNAVAILABLE_RE.search(s["description"]))
    if (
        unavailable
        and s["trend_points"] == 0
        and s["max_snow_depth_in"] is None
        and s["max_swe_in"] is None
        and not s["has_rain_accumulation"]
        and not s["has_fresh_snow"]
    ):
        code = "weather_unavailable"
        add("Weather feed is unavailable, so terrain classification confidence is limited.")
    elif s["has_snow_coverage"] or s["has_snow_weather"] or s["has_fresh_snow"] or s["snow_trend_hours"] >= 2:
        code = SNOW_PROFILE_TO_TERRAIN.get(profile["code"], "snow_ice")
        add(profile["summary"], 2)
        for reason in profile["reasons"]:
            add(reason)
        if s["max_snow_depth_in"] is not None or s["max_swe_in"] is not None:
            add(f"Snowpack signal near objective: depth {_fmt(s['max_snow_depth_in'])}, SWE {_fmt(s['max_swe_in'])}.", 2)
        if s["has_fresh_snow"]:
            add(
                f"Recent snowfall: {_fmt(s['snow_12h_in'])} (12h), {_fmt(s['snow_24h_in'])} (24h), "
                f"{_fmt(s['snow_48h_in'])} (48h).",
                2,
            )
        if s["snow_trend_hours"] > 0:
            add(f"Near-term forecast shows {s['snow_trend_hours']} hour(s) with snow/icy cues in the next 6 hours.")
        elif s["has_snow_weather"]:
            add(f'Forecast description indicates winter surface cues ("{(weather or {}).get("description")}").')
        if temp is not None and temp <= 34:
            add(f"Temperature near {round(temp)}F supports icy persistence.")
    elif s["has_rain_weather"] or s["wet_trend_hours"] >= 1 or s["has_rain_accumulation"]:
        code = "wet_muddy"
        if s["has_rain_accumulation"]:
            add(
                f"Recent rainfall: {_fmt(s['rain_12h_in'], 2)} (12h), {_fmt(s['rain_24h_in'], 2)} (24h), "
                f"{_fmt(s['rain_48h_in'], 2)} (48h).",
                2,
            )
        if s["wet_trend_hours"] > 0:
            add(f"Near-term forecast shows {s['wet_trend_hours']} wet hour(s) in the next 6 hours.")
        if s["has_rain_weather"]:
            add(f'Forecast condition carries wet surface cues ("{(weather or {}).get("description")}").')
    elif s["has_freeze_thaw"] or (temp is not None and temp <= 38 and precip is not None and precip >= 35):
        code = "cold_slick"
        if s["has_freeze_thaw"] and s["freeze_thaw_min_f"] is not None:
            add(
                f"Freeze-thaw signal in next 24 hours ({round(s['freeze_thaw_min_f'])}F to "
                f"{round(s['freeze_thaw_max_f'])}F).",
                2,
            )
        if temp is not None:
            add(f"Current temperature near freezing ({round(temp)}F).")
        if precip is not None and precip >= 35:
            add(f"Moisture risk remains elevated ({round(precip)}% precip chance).")
    elif s["has_dry_wind"] or (humidity is not None and humidity < 30 and (precip is None or precip < 20)):
        code = "dry_loose"
        if humidity is not None:
            add(f"Low humidity ({round(humidity)}%) supports loose/dry surface texture.")
        wind = s["gust_mph"] if s["gust_mph"] is not None else s["wind_mph"]
        if wind is not None:
            add(f"Wind exposure {round(wind)} mph can dry and loosen top surface layers.")
        if precip is not None:
            add(f"Low moisture signal ({round(precip)}% precip chance).")
    else:
        code = "mixed_variable"
        add("No single dominant wet, snow/ice, or freeze-thaw signal in current upstream data.")
        if temp is not None:
            chance = f"{round(precip)}%" if precip is not None else "unknown"
            add(f"Temperature {round(temp)}F with {chance} precip chance supports mixed surface outcomes.")

    if code == "weather_unavailable":
        confidence = "low"
    elif weight >= 5:
        confidence = "high"
    elif weight >= 3:
        confidence = "medium"
    else:
        confidence = "low"

    label = TERRAIN_LABELS[code]
    if code == "snow_ice" and profile["code"] == "mixed_snow":
        label = profile["label"]

    return {
        "code": code,
        "label": label,
        "confidence": confidence,
        "summary": " ".join(reasons[:2]),
        "reasons": reasons[:6],
        "snow_profile": profile,
        "signals": {k: v for k, v in s.items() if k != "description"},
    }
