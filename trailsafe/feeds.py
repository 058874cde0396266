"""Secondary hazard feeds: alerts, air quality, precipitation, snowpack and daylight."""

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx
import numpy as np

import config
from .fetch import fetch_json, settle_all
from .geo import haversine_km
from .timeutil import is_valid_date, parse_iso, utcnow

logger = logging.getLogger(__name__)


def _finite(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return None if np.isnan(value) else value


def closest_time_index(times: list, target: datetime) -> int:
    """Index of the timestamp nearest to target, or -1 when none parse."""
    best, best_delta = -1, None
    for i, value in enumerate(times):
        parsed = parse_iso(value)
        if parsed is None:
            continue
        delta = abs((parsed - target).total_seconds())
        if best_delta is None or delta < best_delta:
            best, best_delta = i, delta
    return best


# Alerts

def _severity_key(value) -> str:
    key = str(value or "unknown").strip().lower()
    return key if key in config.ALERT_SEVERITY_RANK else "unknown"


def unavailable_alerts(status: str = "unavailable", target_time: Optional[str] = None) -> dict:
    return {
        "source": "NOAA/NWS Active Alerts",
        "status": status,
        "active_count": 0,
        "total_active_count": 0,
        "target_time": target_time,
        "highest_severity": "Unknown",
        "alerts": [],
    }


async def fetch_alerts(client: httpx.AsyncClient, lat: float, lon: float, target_time: Optional[str] = None) -> dict:
    """
    Fetch NWS active alerts for a point, filtered to those in force at target_time.

    Returns:
        Dict with "status" (none, none_for_selected_start, ok), counts,
        "highest_severity" and up to MAX_ALERTS alerts sorted worst first.
    """
    target = parse_iso(target_time) or utcnow()
    payload = await fetch_json(client, config.NWS_ALERTS_URL, params={"point": f"{lat},{lon}"})
    features = payload.get("features") or []
    if not features:
        return unavailable_alerts("none", target_time)

    active = []
    for feature in features:
        props = feature.get("properties") or {}
        start = parse_iso(props.get("onset")) or parse_iso(props.get("effective")) or parse_iso(props.get("sent"))
        end = parse_iso(props.get("ends")) or parse_iso(props.get("expires"))
        if (start is None or target >= start) and (end is None or target <= end):
            active.append(props)

    if not active:
        result = unavailable_alerts("none_for_selected_start", target_time)
        result["total_active_count"] = len(features)
        result["note"] = "No currently issued alert is active at the selected start time."
        return result

    alerts = []
    for props in active:
        severity = _severity_key(props.get("severity"))
        alerts.append({
            "event": props.get("event") or "Weather Alert",
            "severity": severity.capitalize(),
            "urgency": props.get("urgency") or "Unknown",
            "certainty": props.get("certainty") or "Unknown",
            "headline": props.get("headline") or "",
            "description": (props.get("description") or "").strip(),
            "instruction": (props.get("instruction") or "").strip(),
            "onset": props.get("onset"),
            "ends": props.get("ends"),
            "expires": props.get("expires"),
        })
    alerts.sort(key=lambda a: config.ALERT_SEVERITY_RANK[_severity_key(a["severity"])], reverse=True)
    highest = alerts[0]["severity"]

    return {
        "source": "NOAA/NWS Active Alerts",
        "status": "ok",
        "active_count": len(active),
        "total_active_count": len(features),
        "target_time": target_time,
        "highest_severity": highest,
        "alerts": alerts[: config.MAX_ALERTS],
    }


# Air quality

def aqi_category(aqi: Optional[float]) -> str:
    if aqi is None:
        return "Unknown"
    for ceiling, label in config.AQI_CATEGORIES:
        if aqi <= ceiling:
            return label
    return config.AQI_TOP_CATEGORY


def unavailable_air_quality(status: str = "unavailable") -> dict:
    return {
        "source": "Open-Meteo Air Quality API",
        "status": status,
        "us_aqi": None,
        "category": "Not applicable" if status == "not_applicable_future_date" else "Unknown",
        "pm25": None,
        "pm10": None,
        "ozone": None,
        "measured_time": None,
    }


async def fetch_air_quality(
    client: httpx.AsyncClient,
    lat: float,
    lon: float,
    target_time: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    target = parse_iso(target_time) or utcnow()
    now = now or utcnow()
    if (target - now).total_seconds() / 3600.0 > config.AIR_QUALITY_LEAD_HOURS:
        return unavailable_air_quality("not_applicable_future_date")

    params = {
        "latitude": lat,
        "longitude": lon,
        "hourly": ",".join(config.AIR_QUALITY_PARAMS),
        "timezone": "UTC",
    }
    payload = await fetch_json(client, config.OPEN_METEO_AIR_QUALITY_URL, params=params)
    hourly = payload.get("hourly") or {}
    times = hourly.get("time") or []
    idx = closest_time_index(times, target)
    if idx < 0:
        return unavailable_air_quality("no_data")

    def at(key):
        series = hourly.get(key) or []
        return _finite(series[idx]) if idx < len(series) else None

    aqi = at("us_aqi")
    if aqi is None:
        return unavailable_air_quality("no_data")
    return {
        "source": "Open-Meteo Air Quality API",
        "status": "ok",
        "us_aqi": int(round(aqi)),
        "category": aqi_category(aqi),
        "pm25": round(at("pm2_5"), 1) if at("pm2_5") is not None else None,
        "pm10": round(at("pm10"), 1) if at("pm10") is not None else None,
        "ozone": round(at("ozone"), 1) if at("ozone") is not None else None,
        "measured_time": times[idx],
    }


# Rainfall and snowfall

def zeroed_rainfall(window_hours: int, reason: str = "upstream precipitation feed unavailable") -> dict:
    """Fallback when the precipitation feed is down: totals are unknown, not zero."""
    return {
        "source": "Open-Meteo precipitation history (fallback)",
        "status": "partial",
        "mode": "observed_recent",
        "fallback_mode": "zeroed_totals",
        "anchor_time": None,
        "totals": {
            key: None
            for key in (
                "rain_past_12h_in", "rain_past_24h_in", "rain_past_48h_in",
                "snow_past_12h_in", "snow_past_24h_in", "snow_past_48h_in",
            )
        },
        "expected": {"window_hours": window_hours, "rain_window_in": None, "snow_window_in": None},
        "note": f"Precipitation totals unavailable because {reason}.",
    }


def _rolling_sum(times: np.ndarray, values: np.ndarray, start: float, end: float, include_start: bool) -> Optional[float]:
    if include_start:
        mask = (times >= start) & (times < end)
    else:
        mask = (times > start) & (times <= end)
    window = values[mask]
    window = window[~np.isnan(window)]
    if window.size == 0:
        return None
    return float(np.sum(window))


async def fetch_rainfall(
    client: httpx.AsyncClient,
    lat: float,
    lon: float,
    target_time: Optional[str] = None,
    window_hours: int = config.DEFAULT_TRAVEL_WINDOW_HOURS,
    now: Optional[datetime] = None,
) -> dict:
    """
    Rolling rain/snow totals ending at the selected start, plus the totals
    expected inside the travel window.

    Rolling windows sum samples in (anchor - h, anchor]; the forward window
    sums [start, start + window). Rain falls back to total precipitation.
    """
    target = parse_iso(target_time) or utcnow()
    now = now or utcnow()
    params = {
        "latitude": lat,
        "longitude": lon,
        "timezone": "UTC",
        "past_days": 3,
        "forecast_days": 8,
        "hourly": ",".join(config.RAINFALL_PARAMS),
    }
    payload = await fetch_json(client, config.OPEN_METEO_BASE_URL, params=params)
    hourly = payload.get("hourly") or {}
    raw_times = hourly.get("time") or []
    stamps = [parse_iso(t) for t in raw_times]
    if not raw_times or all(s is None for s in stamps):
        result = zeroed_rainfall(window_hours, "the feed returned no hourly data")
        result.update({"status": "no_data", "fallback_mode": None, "source": "Open-Meteo precipitation history"})
        return result

    def series(key):
        values = hourly.get(key) or []
        return np.asarray([_finite(v) if _finite(v) is not None else np.nan for v in values], dtype=float)

    epoch = np.asarray([s.timestamp() if s is not None else np.nan for s in stamps], dtype=float)
    precip_mm = series("precipitation")
    rain_mm = series("rain")
    if rain_mm.size != epoch.size or np.all(np.isnan(rain_mm)):
        rain_mm = precip_mm
    snow_cm = series("snowfall")

    idx = closest_time_index(raw_times, target)
    anchor = stamps[idx]
    anchor_ts = anchor.timestamp()

    totals = {}
    for hours in (12, 24, 48):
        start = anchor_ts - hours * 3600
        rain = _rolling_sum(epoch, rain_mm, start, anchor_ts, include_start=False) if rain_mm.size == epoch.size else None
        snow = _rolling_sum(epoch, snow_cm, start, anchor_ts, include_start=False) if snow_cm.size == epoch.size else None
        totals[f"rain_past_{hours}h_in"] = round(rain * config.MM_TO_INCHES, 2) if rain is not None else None
        totals[f"snow_past_{hours}h_in"] = round(snow * config.CM_TO_INCHES, 1) if snow is not None else None

    window_end = anchor_ts + window_hours * 3600
    rain_window = _rolling_sum(epoch, rain_mm, anchor_ts, window_end, include_start=True) if rain_mm.size == epoch.size else None
    snow_window = _rolling_sum(epoch, snow_cm, anchor_ts, window_end, include_start=True) if snow_cm.size == epoch.size else None

    return {
        "source": "Open-Meteo precipitation history",
        "status": "ok",
        "mode": "projected_for_selected_start" if target > now + timedelta(hours=1) else "observed_recent",
        "fallback_mode": None,
        "anchor_time": anchor.isoformat(),
        "totals": totals,
        "expected": {
            "window_hours": window_hours,
            "rain_window_in": round(rain_window * config.MM_TO_INCHES, 2) if rain_window is not None else None,
            "snow_window_in": round(snow_window * config.CM_TO_INCHES, 1) if snow_window is not None else None,
        },
    }


# Snowpack

SNOWPACK_SOURCE = "NRCS AWDB / SNOTEL, NOAA NOHRSC Snow Analysis"


def unavailable_snowpack(status: str = "unavailable") -> dict:
    return {
        "source": SNOWPACK_SOURCE,
        "status": status,
        "summary": "Snowpack observations unavailable.",
        "snow_depth_in": None,
        "swe_in": None,
        "snotel": None,
        "nohrsc": None,
    }


class SnotelStationCache:
    """
    Active SNOTEL station metadata from the NRCS AWDB service.

    Held as one (fetched_at, stations) tuple; a failed refresh serves the
    previous list when there is one.
    """

    def __init__(
        self,
        url: str = config.AWDB_STATIONS_URL,
        ttl_seconds: float = config.SNOTEL_STATION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: Optional[tuple] = None

    async def get(self, client: httpx.AsyncClient) -> list:
        entry = self._entry
        if entry is not None and (self._clock() - entry[0]) < self.ttl_seconds:
            return entry[1]

        params = {"elements": "WTEQ,SNWD,PREC", "durations": "DAILY", "activeOnly": "true"}
        try:
            payload = await fetch_json(client, self.url, params=params)
            if not isinstance(payload, list):
                raise ValueError("AWDB station metadata is not a list")
        except (httpx.HTTPError, ValueError) as exc:
            if entry is not None:
                logger.warning("SNOTEL station refresh failed (%s); serving stale list", exc)
                return entry[1]
            raise

        stations = [
            station for station in payload
            if isinstance(station, dict)
            and str(station.get("networkCode") or "").upper() in config.SNOTEL_NETWORKS
            and _finite(station.get("latitude")) is not None
            and _finite(station.get("longitude")) is not None
        ]
        self._entry = (self._clock(), stations)
        return stations


def nearest_snotel_station(stations: list, lat: float, lon: float, max_km: float = config.SNOTEL_MAX_STATION_KM):
    """(station, distance_km) of the closest station within max_km, or None."""
    if not stations:
        return None
    lats = [float(station["latitude"]) for station in stations]
    lons = [float(station["longitude"]) for station in stations]
    distances = haversine_km(lat, lon, lats, lons)
    i = int(np.argmin(distances))
    if distances[i] > max_km:
        return None
    return stations[i], float(distances[i])


def latest_awdb_value(values, target_date: str) -> Optional[dict]:
    """Most recent daily reading on or before target_date (latest overall when none is)."""
    readings = []
    for item in values or []:
        if not isinstance(item, dict):
            continue
        day = str(item.get("date") or "")[:10]
        value = _finite(item.get("value"))
        if value is None or not is_valid_date(day):
            continue
        readings.append((day, value, item.get("flag")))
    if not readings:
        return None
    readings.sort(key=lambda reading: reading[0])
    bounded = [reading for reading in readings if reading[0] <= target_date]
    day, value, flag = (bounded or readings)[-1]
    return {"date": day, "value": value, "flag": flag}


async def fetch_snotel(
    client: httpx.AsyncClient,
    lat: float,
    lon: float,
    selected_date: Optional[str],
    stations: SnotelStationCache,
    today: str,
) -> Optional[dict]:
    """
    Latest daily depth, SWE, precipitation and temperature at the nearest SNOTEL station.

    Future dates read the latest observations through today. Returns None when
    no station lies within SNOTEL_MAX_STATION_KM.
    """
    nearest = nearest_snotel_station(await stations.get(client), lat, lon)
    if nearest is None:
        return None
    station, distance_km = nearest
    triplet = str(station.get("stationTriplet") or "")
    if not triplet:
        return None

    target = selected_date if selected_date and is_valid_date(selected_date) and selected_date <= today else today
    begin = (datetime.strptime(target, "%Y-%m-%d") - timedelta(days=config.SNOTEL_LOOKBACK_DAYS)).strftime("%Y-%m-%d")
    params = {
        "stationTriplets": triplet,
        "elements": "WTEQ,SNWD,PREC,TOBS",
        "duration": "DAILY",
        "beginDate": begin,
        "endDate": target,
        "periodRef": "END",
    }
    payload = await fetch_json(client, config.AWDB_DATA_URL, params=params)
    station_data = payload[0] if isinstance(payload, list) and payload and isinstance(payload[0], dict) else {}

    latest = {}
    for entry in station_data.get("data") or []:
        code = str((entry.get("stationElement") or {}).get("elementCode") or "").upper()
        if code:
            latest[code] = latest_awdb_value(entry.get("values"), target)

    def reading(code):
        item = latest.get(code)
        return item["value"] if item else None

    observed = next((latest[code]["date"] for code in ("SNWD", "WTEQ", "PREC", "TOBS") if latest.get(code)), None)
    elevation = _finite(station.get("elevation"))
    if selected_date and selected_date > target:
        note = f"Selected date is in the future; showing latest daily SNOTEL observations through {target}."
    else:
        note = "Nearest daily SNOTEL observation."
    return {
        "source": "NRCS AWDB / SNOTEL",
        "status": "ok",
        "station_triplet": triplet,
        "station_name": station.get("name") or triplet,
        "distance_km": round(distance_km, 1),
        "elevation_ft": int(round(elevation)) if elevation is not None else None,
        "observed_date": observed,
        "snow_depth_in": reading("SNWD"),
        "swe_in": reading("WTEQ"),
        "precip_in": reading("PREC"),
        "obs_temp_f": reading("TOBS"),
        "note": note,
    }


def _layer_value(result: dict) -> Optional[float]:
    attributes = result.get("attributes") or {}
    for key in ("Pixel Value", "Stretched value", "value", "Value"):
        if key in attributes:
            value = _finite(attributes[key])
            if value is not None:
                return value
    return None


async def sample_nohrsc(client: httpx.AsyncClient, lat: float, lon: float) -> Optional[dict]:
    """
    Point snow depth and SWE from the NOHRSC snow analysis identify service.

    Layer 3 is snow depth in metres and layer 7 is SWE in millimetres.
    NoData and implausible pixels are discarded; None when neither survives.
    """
    params = {
        "f": "pjson",
        "geometry": f"{lon},{lat}",
        "geometryType": "esriGeometryPoint",
        "sr": 4326,
        "tolerance": 2,
        "mapExtent": f"{lon - 0.6},{lat - 0.6},{lon + 0.6},{lat + 0.6}",
        "imageDisplay": "800,600,96",
        "returnGeometry": "false",
        "layers": "all:3,7",
    }
    payload = await fetch_json(client, config.NOHRSC_IDENTIFY_URL, params=params)
    depth_in = None
    swe_in = None
    for result in payload.get("results") or []:
        value = _layer_value(result)
        if value is None or value < 0:
            continue
        layer = result.get("layerId")
        if layer == 3 and value < 30:
            depth_in = round(value * config.METERS_TO_INCHES, 1)
        elif layer == 7 and value < 10000:
            swe_in = round(value * config.MM_TO_INCHES, 2)

    if depth_in is None and swe_in is None:
        return None
    return {"source": "NOAA NOHRSC Snow Analysis", "status": "ok", "snow_depth_in": depth_in, "swe_in": swe_in}


def _reading_text(value: Optional[float]) -> str:
    return f"{value} in" if value is not None else "N/A"


async def fetch_snowpack(
    client: httpx.AsyncClient,
    lat: float,
    lon: float,
    selected_date: Optional[str] = None,
    stations: Optional[SnotelStationCache] = None,
    today: Optional[str] = None,
) -> dict:
    """
    Snowpack snapshot from the nearest SNOTEL station and the NOHRSC grid.

    Both sources are fetched together and either may be missing. The top-level
    depth and SWE are the NOHRSC point values, or the station's when the grid
    has none.

    Raises:
        httpx.HTTPError, ValueError: when both sources failed outright.
    """
    stations = stations or SnotelStationCache()
    today = today or utcnow().strftime("%Y-%m-%d")
    snotel, nohrsc = await settle_all(
        fetch_snotel(client, lat, lon, selected_date, stations, today),
        sample_nohrsc(client, lat, lon),
    )
    failures = []
    for name, result in (("SNOTEL", snotel), ("NOHRSC", nohrsc)):
        if isinstance(result, Exception):
            logger.warning("%s snowpack sample unavailable for %.4f, %.4f: %s", name, lat, lon, result)
            failures.append(result)
    if len(failures) == 2:
        raise failures[0]
    snotel = None if isinstance(snotel, Exception) else snotel
    nohrsc = None if isinstance(nohrsc, Exception) else nohrsc
    if snotel is None and nohrsc is None:
        return unavailable_snowpack("no_data")

    summary = []
    if snotel:
        summary.append(
            f"SNOTEL {snotel['station_name']}: depth {_reading_text(snotel['snow_depth_in'])}, "
            f"SWE {_reading_text(snotel['swe_in'])} ({snotel['distance_km']} km)."
        )
    if nohrsc:
        summary.append(
            f"NOHRSC grid: depth {_reading_text(nohrsc['snow_depth_in'])}, SWE {_reading_text(nohrsc['swe_in'])}."
        )
    point = nohrsc if nohrsc and (nohrsc["snow_depth_in"] is not None or nohrsc["swe_in"] is not None) else snotel
    return {
        "source": SNOWPACK_SOURCE,
        "status": "ok" if snotel and nohrsc else "partial",
        "summary": " ".join(summary),
        "snow_depth_in": point["snow_depth_in"],
        "swe_in": point["swe_in"],
        "snotel": snotel,
        "nohrsc": nohrsc,
    }


# Daylight

def unavailable_solar() -> dict:
    return {"sunrise": "N/A", "sunset": "N/A", "day_length": "N/A"}


async def fetch_solar(client: httpx.AsyncClient, lat: float, lon: float, selected_date: str) -> dict:
    payload = await fetch_json(client, config.SOLAR_URL, params={"lat": lat, "lng": lon, "date": selected_date})
    if payload.get("status") != "OK":
        return unavailable_solar()
    results = payload.get("results") or {}
    return {
        "sunrise": results.get("sunrise") or "N/A",
        "sunset": results.get("sunset") or "N/A",
        "day_length": results.get("day_length") or "N/A",
    }
