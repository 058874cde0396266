"""Weather data fetching: NWS hourly forecast with Open-Meteo fallback."""

import logging
import math
import re
from typing import Optional

import httpx
import numpy as np

import config
from .fetch import fetch_json
from .timeutil import clock_of_iso, local_date_of_iso, parse_clock_minutes, parse_iso, utcnow

logger = logging.getLogger(__name__)

OPEN_METEO_SOURCE = "Open-Meteo"
NWS_SOURCE = "NOAA/NWS"

# Scalar snapshot fields a primary forecast can leave empty and the fallback can fill
SUPPLEMENT_FIELDS = [
    "temp",
    "feels_like",
    "wind_speed",
    "wind_gust",
    "precip_chance",
    "description",
    "is_daytime",
    "wind_direction",
    "issued_time",
    "timezone",
    "forecast_end_time",
    "dew_point",
    "humidity",
    "cloud_cover",
    "pressure",
    "elevation_ft",
]

# Per-hour trend values filled the same way
TREND_SUPPLEMENT_FIELDS = ["temp", "feels_like", "wind", "gust", "precip_chance", "humidity", "cloud_cover", "condition", "is_daytime"]

_VISIBILITY_CONDITION_RE = re.compile(
    r"fog|mist|haze|smoke|blizzard|whiteout|snow|squall|heavy rain|drizzle", re.IGNORECASE
)


class ForecastRangeError(ValueError):
    """The requested date falls outside the hours the forecast covers."""

    def __init__(self, selected_date: str, available: dict):
        self.selected_date = selected_date
        self.available = available
        super().__init__(
            f"Forecast data for {selected_date} is not available. "
            f"Available range: {available.get('start')} to {available.get('end')}."
        )


def compute_feels_like(temp: Optional[float], wind_mph: Optional[float]) -> Optional[int]:
    """NWS wind-chill formula below 50 °F with wind of at least 3 mph, else air temp."""
    if temp is None:
        return None
    wind = wind_mph or 0
    if temp <= 50 and wind >= 3:
        w = wind ** 0.16
        return int(round(35.74 + 0.6215 * temp - 35.75 * w + 0.4275 * temp * w))
    return int(round(temp))


def estimate_gust(wind_mph: Optional[float]) -> Optional[int]:
    if wind_mph is None:
        return None
    if wind_mph <= 5:
        factor = 1.5
    elif wind_mph <= 15:
        factor = 1.4
    elif wind_mph <= 30:
        factor = 1.35
    else:
        factor = 1.25
    return int(round(wind_mph * factor))


def parse_wind_mph(value) -> Optional[int]:
    """Parse NWS wind strings such as "10 mph" or "5 to 15 mph" (first figure)."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(round(value))
    match = re.search(r"\d+", str(value))
    return int(match.group(0)) if match else None


def cardinal_from_degrees(degrees) -> Optional[str]:
    if degrees is None:
        return None
    try:
        value = float(degrees)
    except (TypeError, ValueError):
        return None
    if math.isnan(value):
        return None
    index = int(round((value % 360) / 22.5)) % 16
    return config.CARDINAL_DIRECTIONS[index]


def weather_code_label(code) -> str:
    try:
        return config.WEATHER_CODE_LABELS.get(int(code), "Unknown")
    except (TypeError, ValueError):
        return "Unknown"


def _c_to_f(value) -> Optional[int]:
    if value is None:
        return None
    return int(round(float(value) * 9 / 5 + 32))


def _quantity(value) -> Optional[float]:
    """NWS quantitative values are {"value": x, "unitCode": ...} objects."""
    if isinstance(value, dict):
        value = value.get("value")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _round_or_none(value) -> Optional[int]:
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(value):
        return None
    return int(round(value))


def clamp_window_hours(hours) -> int:
    try:
        hours = int(hours)
    except (TypeError, ValueError):
        return config.DEFAULT_TRAVEL_WINDOW_HOURS
    return max(config.MIN_TRAVEL_WINDOW_HOURS, min(config.MAX_TRAVEL_WINDOW_HOURS, hours))


def select_start_index(times: list, selected_date: str, start_clock: Optional[str]) -> int:
    """
    Index of the first hour on selected_date at or after start_clock.

    Falls back to the first hour of the day when no clock is given and to the
    last hour of the day when the clock is past every hour.

    Raises:
        ForecastRangeError: when no hour falls on selected_date.
    """
    day_indexes = [i for i, t in enumerate(times) if local_date_of_iso(t) == selected_date]
    if not day_indexes:
        dates = [local_date_of_iso(t) for t in times if t]
        raise ForecastRangeError(
            selected_date, {"start": dates[0] if dates else None, "end": dates[-1] if dates else None}
        )
    target = parse_clock_minutes(start_clock)
    if target is None:
        return day_indexes[0]
    for i in day_indexes:
        minutes = clock_of_iso(times[i])
        if minutes is not None and minutes >= target:
            return i
    return day_indexes[-1]


def unavailable_weather(selected_date: Optional[str] = None) -> dict:
    """Sentinel snapshot used when neither forecast provider answered."""
    return {
        "temp": None,
        "feels_like": None,
        "dew_point": None,
        "wind_speed": None,
        "wind_gust": None,
        "wind_direction": None,
        "precip_chance": None,
        "humidity": None,
        "cloud_cover": None,
        "pressure": None,
        "description": config.WEATHER_UNAVAILABLE_DESCRIPTION,
        "is_daytime": None,
        "elevation_ft": None,
        "issued_time": None,
        "timezone": None,
        "forecast_start_time": None,
        "forecast_end_time": None,
        "forecast_date": selected_date,
        "forecast_date_range": None,
        "trend": [],
        "visibility_risk": None,
        "source_details": {"primary": "Unavailable", "blended": False, "field_sources": {}},
    }


def is_weather_unavailable(weather: Optional[dict]) -> bool:
    if not weather:
        return True
    return "weather data unavailable" in str(weather.get("description") or "").lower()


def compute_visibility_risk(weather: dict) -> dict:
    """
    Score how likely poor visibility is over the travel window.

    Points from the current description, precipitation, wind, humidity and
    cloud, plus persistence across trend hours and darkness, clamped to 0-100.
    """
    description = str(weather.get("description") or "").lower()
    precip = weather.get("precip_chance")
    wind = weather.get("wind_speed")
    gust = weather.get("wind_gust")
    humidity = weather.get("humidity")
    cloud = weather.get("cloud_cover")
    trend = weather.get("trend") or []

    if is_weather_unavailable(weather) or (
        not description and precip is None and wind is None and humidity is None and not trend
    ):
        return {"score": None, "level": "Unknown", "active_hours": 0, "factors": []}

    score = 0
    factors = []

    if re.search(r"whiteout|ground blizzard|blizzard", description):
        score += 55
        factors.append("Blizzard or whiteout conditions in the forecast.")
    elif re.search(r"snow squall|heavy snow|blowing snow|snow showers", description):
        score += 38
        factors.append("Heavy or blowing snow in the forecast.")
    elif re.search(r"\bsnow\b", description):
        score += 12
        factors.append("Snow in the forecast.")
    if re.search(r"fog|mist|haze|smoke", description):
        score += 30
        factors.append("Fog, haze or smoke in the forecast.")
    elif re.search(r"drizzle|rain|showers", description):
        score += 12
        factors.append("Rain or showers in the forecast.")

    if precip is not None:
        if precip >= 80:
            score += 22
        elif precip >= 60:
            score += 16
        elif precip >= 40:
            score += 10
        elif precip >= 25:
            score += 4

    effective_wind = max(wind or 0, gust or 0)
    if effective_wind >= 45:
        score += 20
        factors.append("Strong winds can drift snow and cut visibility.")
    elif effective_wind >= 35:
        score += 14
    elif effective_wind >= 25:
        score += 8

    if humidity is not None and cloud is not None and humidity >= 92 and cloud >= 92:
        score += 18
        factors.append("Saturated air under full cloud suggests low cloud or fog.")
    elif humidity is not None and humidity >= 90:
        score += 8
    if cloud is not None:
        if cloud >= 95:
            score += 8
        elif cloud >= 80:
            score += 4

    active_hours = 0
    for row in trend:
        signals = 0
        if _VISIBILITY_CONDITION_RE.search(str(row.get("condition") or "")):
            signals += 2
        row_precip = row.get("precip_chance") or 0
        if row_precip >= 60:
            signals += 2
        elif row_precip >= 40:
            signals += 1
        row_humidity = row.get("humidity")
        row_cloud = row.get("cloud_cover")
        if row_humidity is not None and row_cloud is not None and row_humidity >= 92 and row_cloud >= 92:
            signals += 2
        elif row_cloud is not None and row_cloud >= 90:
            signals += 1
        row_wind = max(row.get("wind") or 0, row.get("gust") or 0)
        if row_wind >= 35:
            signals += 2
        elif row_wind >= 25:
            signals += 1
        if signals >= 3:
            active_hours += 1

    if active_hours >= 6:
        score += 12
    elif active_hours >= 3:
        score += 7
    elif active_hours >= 1:
        score += 3
    if active_hours:
        factors.append(f"{active_hours} hour(s) in the travel window show reduced-visibility signals.")

    if weather.get("is_daytime") is False:
        score += 6
        factors.append("Travel starts in darkness.")

    score = int(max(0, min(100, score)))
    level = "Minimal"
    for threshold, label in config.VISIBILITY_LEVELS:
        if score >= threshold:
            level = label
            break
    return {"score": score, "level": level, "active_hours": active_hours, "factors": factors}


def trend_series(trend: list, key: str) -> np.ndarray:
    """Numeric column from trend rows with missing values dropped."""
    values = [row.get(key) for row in trend or []]
    return np.asarray([v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)], dtype=float)


class WeatherReconciler:
    """
    Builds one weather snapshot from the NWS hourly forecast, filling any
    field NWS leaves empty from Open-Meteo and falling back to Open-Meteo
    entirely when NWS does not answer.
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def fetch_primary(self, lat: float, lon: float) -> dict:
        """
        Fetch the NWS points record and its hourly forecast.

        Returns:
            Dict with "points" (points properties) and "forecast" (hourly
            forecast properties including "periods").
        """
        points = await fetch_json(self.client, config.NWS_POINTS_URL.format(lat=round(lat, 4), lon=round(lon, 4)))
        props = points.get("properties") or {}
        hourly_url = props.get("forecastHourly")
        if not hourly_url:
            raise ValueError("NWS points response has no forecastHourly URL")
        forecast = await fetch_json(self.client, hourly_url)
        forecast_props = forecast.get("properties") or {}
        if not forecast_props.get("periods"):
            raise ValueError("NWS hourly forecast has no periods")
        return {"points": props, "forecast": forecast_props}

    async def fetch_fallback(self, lat: float, lon: float) -> dict:
        params = {
            "latitude": lat,
            "longitude": lon,
            "hourly": ",".join(config.WEATHER_PARAMS),
            "timezone": "auto",
            "forecast_days": 16,
            "temperature_unit": "fahrenheit",
            "windspeed_unit": "mph",
        }
        payload = await fetch_json(self.client, config.OPEN_METEO_BASE_URL, params=params)
        hourly = payload.get("hourly") or {}
        if not hourly.get("time"):
            raise ValueError("Open-Meteo response has no hourly times")
        payload["_fetched_at"] = utcnow().isoformat()
        return payload

    def snapshot_from_nws(self, primary: dict, selected_date: str, start_clock: Optional[str], window_hours: int) -> dict:
        points = primary.get("points") or {}
        forecast = primary.get("forecast") or {}
        periods = forecast.get("periods") or []
        times = [p.get("startTime") for p in periods]
        idx = select_start_index(times, selected_date, start_clock)
        window = clamp_window_hours(window_hours)

        trend = []
        for period in periods[idx: idx + window]:
            wind = parse_wind_mph(period.get("windSpeed"))
            gust = parse_wind_mph(period.get("windGust"))
            if gust is None:
                gust = estimate_gust(wind)
            temp = _round_or_none(period.get("temperature"))
            trend.append({
                "time": period.get("startTime"),
                "temp": temp,
                "feels_like": compute_feels_like(temp, wind),
                "wind": wind,
                "gust": max(gust or 0, wind or 0) if wind is not None else gust,
                "precip_chance": _round_or_none(_quantity(period.get("probabilityOfPrecipitation"))),
                "humidity": _round_or_none(_quantity(period.get("relativeHumidity"))),
                "cloud_cover": None,
                "condition": period.get("shortForecast") or "",
                "is_daytime": period.get("isDaytime"),
            })

        current = trend[0]
        start_period = periods[idx]
        end_period = periods[min(idx + window, len(periods)) - 1]
        elevation_m = _quantity(forecast.get("elevation")) or _quantity((points.get("elevation") or {}))
        dates = [local_date_of_iso(t) for t in times if t]
        dew_point_c = _quantity(start_period.get("dewpoint"))

        field_sources = {"trend": NWS_SOURCE}
        snapshot = {
            "temp": current["temp"],
            "feels_like": current["feels_like"],
            "dew_point": _c_to_f(dew_point_c),
            "wind_speed": current["wind"],
            "wind_gust": current["gust"],
            "wind_direction": start_period.get("windDirection") or None,
            "precip_chance": current["precip_chance"],
            "humidity": current["humidity"],
            "cloud_cover": None,
            "pressure": None,
            "description": current["condition"],
            "is_daytime": current["is_daytime"],
            "elevation_ft": int(round(elevation_m * config.METERS_TO_FEET)) if elevation_m is not None else None,
            "issued_time": forecast.get("updateTime") or forecast.get("generatedAt"),
            "timezone": points.get("timeZone"),
            "forecast_start_time": start_period.get("startTime"),
            "forecast_end_time": end_period.get("endTime"),
            "forecast_date": selected_date,
            "forecast_date_range": {"start": dates[0], "end": dates[-1]} if dates else None,
            "trend": trend,
            "visibility_risk": None,
            "source_details": {"primary": NWS_SOURCE, "blended": False, "field_sources": field_sources},
        }
        for key in ("temp", "feels_like", "wind_speed", "precip_chance", "humidity", "description",
                    "is_daytime", "dew_point", "wind_direction"):
            if not _missing(snapshot[key]):
                field_sources[key] = NWS_SOURCE
        if snapshot["wind_gust"] is not None:
            field_sources["wind_gust"] = NWS_SOURCE if start_period.get("windGust") else "Estimated from NWS sustained wind"
        return snapshot

    def snapshot_from_open_meteo(self, payload: dict, selected_date: str, start_clock: Optional[str], window_hours: int) -> dict:
        hourly = payload.get("hourly") or {}
        offset = int(payload.get("utc_offset_seconds") or 0)
        sign = "+" if offset >= 0 else "-"
        suffix = f"{sign}{abs(offset) // 3600:02d}:{(abs(offset) % 3600) // 60:02d}"
        times = [f"{t}:00{suffix}" if len(str(t)) == 16 else str(t) for t in hourly.get("time") or []]
        idx = select_start_index(times, selected_date, start_clock)
        window = clamp_window_hours(window_hours)

        def value(key, i):
            series = hourly.get(key) or []
            return series[i] if i < len(series) else None

        trend = []
        for i in range(idx, min(idx + window, len(times))):
            temp = _round_or_none(value("temperature_2m", i))
            wind = _round_or_none(value("wind_speed_10m", i))
            gust = _round_or_none(value("wind_gusts_10m", i))
            gust = max(gust, wind or 0) if gust is not None else estimate_gust(wind)
            is_day = value("is_day", i)
            trend.append({
                "time": times[i],
                "temp": temp,
                "feels_like": compute_feels_like(temp, wind),
                "wind": wind,
                "gust": gust,
                "precip_chance": _round_or_none(value("precipitation_probability", i)),
                "humidity": _round_or_none(value("relative_humidity_2m", i)),
                "cloud_cover": _round_or_none(value("cloud_cover", i)),
                "condition": weather_code_label(value("weather_code", i)),
                "is_daytime": None if is_day is None else bool(is_day >= 1),
            })

        current = trend[0]
        elevation_m = payload.get("elevation")
        dates = [local_date_of_iso(t) for t in times]
        end_index = min(idx + window, len(times)) - 1
        fields = ["temp", "feels_like", "dew_point", "wind_speed", "wind_gust", "wind_direction", "precip_chance",
                  "humidity", "cloud_cover", "pressure", "description", "is_daytime", "issued_time", "timezone",
                  "forecast_start_time", "forecast_end_time", "trend"]
        return {
            "temp": current["temp"],
            "feels_like": current["feels_like"],
            "dew_point": _round_or_none(value("dew_point_2m", idx)),
            "wind_speed": current["wind"],
            "wind_gust": current["gust"],
            "wind_direction": cardinal_from_degrees(value("wind_direction_10m", idx)),
            "precip_chance": current["precip_chance"],
            "humidity": current["humidity"],
            "cloud_cover": current["cloud_cover"],
            "pressure": _round_or_none(value("surface_pressure", idx)),
            "description": current["condition"],
            "is_daytime": current["is_daytime"],
            "elevation_ft": int(round(float(elevation_m) * config.METERS_TO_FEET)) if elevation_m is not None else None,
            "issued_time": payload.get("_fetched_at"),
            "timezone": payload.get("timezone"),
            "forecast_start_time": times[idx],
            "forecast_end_time": times[end_index],
            "forecast_date": selected_date,
            "forecast_date_range": {"start": dates[0], "end": dates[-1]} if dates else None,
            "trend": trend,
            "visibility_risk": None,
            "source_details": {
                "primary": OPEN_METEO_SOURCE,
                "blended": False,
                "field_sources": {key: OPEN_METEO_SOURCE for key in fields},
            },
        }

    @staticmethod
    def needs_supplement(snapshot: dict) -> bool:
        if any(_missing(snapshot.get(key)) for key in SUPPLEMENT_FIELDS):
            return True
        trend = snapshot.get("trend") or []
        if any(_missing(row.get(key)) for row in trend for key in TREND_SUPPLEMENT_FIELDS):
            return True
        return len(trend) < config.TREND_MIN_POINTS

    @staticmethod
    def reconcile(primary: dict, fallback: Optional[dict]) -> dict:
        """
        Fill empty primary fields from the fallback snapshot.

        Each substituted field is recorded in source_details.field_sources so
        the provenance of every value stays visible.
        """
        if not fallback:
            return primary
        merged = dict(primary)
        details = dict(primary.get("source_details") or {})
        field_sources = dict(details.get("field_sources") or {})
        blended = bool(details.get("blended"))

        for key in SUPPLEMENT_FIELDS:
            if _missing(merged.get(key)) and not _missing(fallback.get(key)):
                merged[key] = fallback[key]
                field_sources[key] = OPEN_METEO_SOURCE
                blended = True

        fallback_rows = {row.get("time"): row for row in fallback.get("trend") or []}
        rows = []
        for row in merged.get("trend") or []:
            other = _match_trend_row(row, fallback_rows)
            if other is not None and any(_missing(row.get(key)) for key in TREND_SUPPLEMENT_FIELDS):
                row = dict(row)
                for key in TREND_SUPPLEMENT_FIELDS:
                    if _missing(row.get(key)) and not _missing(other.get(key)):
                        row[key] = other[key]
                        field_sources[f"trend.{key}"] = OPEN_METEO_SOURCE
                        blended = True
            rows.append(row)
        merged["trend"] = rows

        fallback_trend = fallback.get("trend") or []
        if len(rows) < config.TREND_MIN_POINTS and len(fallback_trend) > len(rows):
            merged["trend"] = fallback_trend
            field_sources["trend"] = OPEN_METEO_SOURCE
            blended = True

        details.update({"blended": blended, "field_sources": field_sources})
        merged["source_details"] = details
        return merged

    async def get_weather(
        self,
        lat: float,
        lon: float,
        selected_date: str,
        start_clock: Optional[str] = None,
        window_hours: int = config.DEFAULT_TRAVEL_WINDOW_HOURS,
    ) -> dict:
        """
        Build the reconciled weather snapshot for a point and plan window.

        Raises:
            ForecastRangeError: when the selected date is outside the forecast range.
        """
        snapshot = None
        try:
            primary = await self.fetch_primary(lat, lon)
            snapshot = self.snapshot_from_nws(primary, selected_date, start_clock, window_hours)
        except ForecastRangeError:
            raise
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning("NWS forecast unavailable for %.4f, %.4f: %s", lat, lon, exc)

        if snapshot is not None and not self.needs_supplement(snapshot):
            snapshot["visibility_risk"] = compute_visibility_risk(snapshot)
            return snapshot

        fallback = None
        try:
            payload = await self.fetch_fallback(lat, lon)
            fallback = self.snapshot_from_open_meteo(payload, selected_date, start_clock, window_hours)
        except ForecastRangeError:
            if snapshot is None:
                raise
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Open-Meteo forecast unavailable for %.4f, %.4f: %s", lat, lon, exc)

        if snapshot is None:
            snapshot = fallback or unavailable_weather(selected_date)
        else:
            snapshot = self.reconcile(snapshot, fallback)

        snapshot["visibility_risk"] = None if is_weather_unavailable(snapshot) else compute_visibility_risk(snapshot)
        return snapshot


def _missing(value) -> bool:
    return value is None or value == ""


def _match_trend_row(row: dict, fallback_rows: dict) -> Optional[dict]:
    target = parse_iso(row.get("time"))
    if target is None:
        return None
    for time_value, other in fallback_rows.items():
        if parse_iso(time_value) == target:
            return other
    return None
