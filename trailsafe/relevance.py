"""Decide whether avalanche hazard is material for an objective and date."""

import re
from datetime import datetime
from typing import Optional

import config

WINTRY_RE = re.compile(r"snow|sleet|blizzard|ice|freezing|wintry|graupel|flurr|rime", re.IGNORECASE)


def _num(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def snowpack_maxima(snowpack: Optional[dict]) -> tuple:
    """
    Deepest snow depth and largest SWE across a snapshot's sources.

    The SNOTEL station counts only within SNOTEL_NEAR_OBJECTIVE_KM of the
    objective (or when its distance is unknown). A snapshot without per-source
    readings is taken as a single reading.
    """
    snowpack = snowpack or {}
    readings = []
    snotel = snowpack.get("snotel")
    if snotel:
        distance = _num(snotel.get("distance_km"))
        if distance is None or distance <= config.SNOTEL_NEAR_OBJECTIVE_KM:
            readings.append(snotel)
    if snowpack.get("nohrsc"):
        readings.append(snowpack["nohrsc"])
    if "snotel" not in snowpack and "nohrsc" not in snowpack:
        readings.append(snowpack)

    depths = [v for v in (_num(r.get("snow_depth_in")) for r in readings) if v is not None]
    swes = [v for v in (_num(r.get("swe_in")) for r in readings) if v is not None]
    return (max(depths) if depths else None, max(swes) if swes else None)


def evaluate_snowpack_signal(snowpack: Optional[dict]) -> dict:
    """
    Classify a snowpack snapshot into material / measurable / low / mixed tiers.

    Args:
        snowpack: Snapshot dict with "status" and either per-source "snotel" /
            "nohrsc" readings or top-level "snow_depth_in" and "swe_in".

    Returns:
        Dict with "tier" (unknown, material, measurable, low, mixed) and "reason".
    """
    if not snowpack or snowpack.get("status") not in ("ok", "partial"):
        return {"tier": "unknown", "reason": "Snowpack snapshot unavailable."}

    depth, swe = snowpack_maxima(snowpack)
    if depth is None and swe is None:
        return {"tier": "unknown", "reason": "Snowpack snapshot has no depth or SWE readings."}

    summary = f"depth ~{depth if depth is not None else 'n/a'} in, SWE ~{swe if swe is not None else 'n/a'} in"
    if (depth or 0) >= config.SNOWPACK_MATERIAL_DEPTH_IN or (swe or 0) >= config.SNOWPACK_MATERIAL_SWE_IN:
        return {"tier": "material", "reason": f"Snowpack Snapshot shows material snowpack ({summary})."}
    if (depth or 0) >= config.SNOWPACK_MEASURABLE_DEPTH_IN or (swe or 0) >= config.SNOWPACK_MEASURABLE_SWE_IN:
        return {"tier": "measurable", "reason": f"Snowpack Snapshot shows measurable snowpack ({summary})."}
    if depth is not None and depth <= config.SNOWPACK_LOW_DEPTH_IN and (swe is None or swe <= config.SNOWPACK_LOW_SWE_IN):
        return {"tier": "low", "reason": f"Snowpack Snapshot shows little to no snow ({summary})."}
    return {"tier": "mixed", "reason": f"Snowpack Snapshot shows patchy snow ({summary})."}


def _season(month: Optional[int], high_elevation: bool) -> str:
    if month is None:
        return "unknown"
    if month in config.WINTER_MONTHS or (high_elevation and month == 5):
        return "winter"
    if month in config.SHOULDER_MONTHS:
        return "shoulder"
    return "summer"


def _has_wintry_signal(weather: dict) -> bool:
    description = str(weather.get("description") or "")
    if description == config.WEATHER_UNAVAILABLE_DESCRIPTION:
        return False
    temp = _num(weather.get("temp"))
    feels_like = _num(weather.get("feels_like"))
    precip = _num(weather.get("precip_chance"))
    if WINTRY_RE.search(description):
        return True
    if temp is not None and temp <= 34:
        return True
    if feels_like is not None and feels_like <= 30:
        return True
    return precip is not None and temp is not None and precip >= 50 and temp <= 38


def evaluate_relevance(
    lat: float,
    selected_date: Optional[str],
    weather: dict,
    bulletin,
    snowpack: Optional[dict] = None,
    rainfall: Optional[dict] = None,
) -> dict:
    """
    Ordered rule cascade deciding whether avalanche hazard should be scored.

    The first matching rule wins. Returns {"relevant": bool, "reason": str}.
    """
    coverage = bulletin.coverage_status
    elevation = _num(weather.get("elevation_ft"))
    high_elevation = elevation is not None and elevation >= config.HIGH_ELEVATION_FT
    mid_elevation = elevation is not None and elevation >= config.MID_ELEVATION_FT
    high_latitude = abs(lat) >= config.HIGH_LATITUDE_DEG

    month = None
    if selected_date:
        try:
            month = datetime.strptime(selected_date, "%Y-%m-%d").month
        except ValueError:
            month = None
    season = _season(month, high_elevation)

    if coverage == "expired_for_selected_start":
        return {
            "relevant": True,
            "reason": "Avalanche bulletin expires before the selected start; treating avalanche danger as unknown.",
        }
    if coverage == "reported" and not bulletin.danger_unknown:
        return {"relevant": True, "reason": "Official avalanche center forecast covers this objective."}

    expected_snow = _num(((rainfall or {}).get("expected") or {}).get("snow_window_in"))
    if expected_snow is not None and expected_snow >= config.SNOW_WINDOW_RELEVANT_IN:
        return {
            "relevant": True,
            "reason": f"About {expected_snow:.1f} in of snow is expected during the travel window.",
        }

    if _has_wintry_signal(weather):
        return {"relevant": True, "reason": "Forecast shows wintry or freezing conditions at the objective."}

    signal = evaluate_snowpack_signal(snowpack)
    tier = signal["tier"]
    if tier == "material":
        return {"relevant": True, "reason": signal["reason"]}
    if tier == "measurable":
        if high_elevation and season in ("winter", "shoulder", "unknown"):
            return {"relevant": True, "reason": signal["reason"] + " High-elevation objective in snow season."}
        if mid_elevation and high_latitude and season in ("winter", "unknown"):
            return {"relevant": True, "reason": signal["reason"] + " Mid-elevation, high-latitude objective in winter."}
        return {"relevant": False, "reason": signal["reason"] + " Snow is unlikely to be avalanche-prone for this season."}
    if tier == "low" and coverage in ("no_active_forecast", "no_center_coverage"):
        return {"relevant": False, "reason": signal["reason"]}

    if coverage == "no_active_forecast" and season not in ("winter", "shoulder"):
        return {"relevant": False, "reason": "Avalanche center is off-season and the selected date is outside snow season."}

    if high_elevation and season in ("winter", "shoulder", "unknown"):
        return {"relevant": True, "reason": "High-elevation objective during snow season; avalanche terrain may be loaded."}
    if mid_elevation and high_latitude and season in ("winter", "unknown"):
        return {"relevant": True, "reason": "Mid-elevation, high-latitude objective during winter months."}
    if tier == "low":
        return {"relevant": False, "reason": signal["reason"]}
    return {"relevant": False, "reason": "Objective appears typically low-snow for the selected season and forecast."}
