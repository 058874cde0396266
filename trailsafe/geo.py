"""Hazard-zone resolution against the avalanche map layer."""

import logging
import time
from typing import Callable, Optional

import httpx
import numpy as np
from shapely.errors import ShapelyError
from shapely.geometry import Point, shape

import config
from .fetch import fetch_json
from .models import ZoneMatch

logger = logging.getLogger(__name__)


class MapLayerUnavailable(Exception):
    """Raised when the map layer cannot be fetched and no cached copy exists."""


def haversine_km(lat: float, lon: float, lats, lons) -> np.ndarray:
    """
    Great-circle distance from one point to many, in kilometres.

    Args:
        lat, lon: Origin in decimal degrees.
        lats, lons: Array-likes of destination coordinates.

    Returns:
        numpy array of distances using a spherical earth (R = 6371 km).
    """
    lat1 = np.radians(lat)
    lon1 = np.radians(lon)
    lat2 = np.radians(np.asarray(lats, dtype=float))
    lon2 = np.radians(np.asarray(lons, dtype=float))

    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
    return 2 * config.EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def _geometry_vertices(geometry: Optional[dict]) -> np.ndarray:
    """Flatten every [lon, lat] vertex of a (Multi)Polygon into an (n, 2) array."""
    if not geometry:
        return np.empty((0, 2))
    kind = geometry.get("type")
    coords = geometry.get("coordinates") or []
    rings = []
    if kind == "Polygon":
        rings = coords
    elif kind == "MultiPolygon":
        rings = [ring for polygon in coords for ring in polygon]
    points = [pt[:2] for ring in rings for pt in ring if isinstance(pt, (list, tuple)) and len(pt) >= 2]
    if not points:
        return np.empty((0, 2))
    return np.asarray(points, dtype=float)


def _contains(feature: dict, point: Point) -> bool:
    geometry = feature.get("geometry")
    if not geometry:
        return False
    try:
        return shape(geometry).covers(point)
    except (ShapelyError, ValueError, TypeError, AttributeError, KeyError, IndexError):
        logger.debug("Skipping malformed zone geometry for feature %s", feature.get("id"))
        return False


def _nearest_feature(features: list, lat: float, lon: float, cap_km: float):
    best_feature = None
    best_distance = None
    for feature in features:
        vertices = _geometry_vertices(feature.get("geometry"))
        if vertices.size == 0:
            continue
        distance = float(np.min(haversine_km(lat, lon, vertices[:, 1], vertices[:, 0])))
        if best_distance is None or distance < best_distance:
            best_feature, best_distance = feature, distance
    if best_feature is not None and best_distance <= cap_km:
        return best_feature, best_distance
    return None, None


def in_utah_region(lat: float, lon: float) -> bool:
    bounds = config.UTAH_REGION_BOUNDS
    return bounds["south"] <= lat <= bounds["north"] and bounds["west"] <= lon <= bounds["east"]


def resolve_zone(
    features: list,
    lat: float,
    lon: float,
    fallback_cap_km: float = config.ZONE_FALLBACK_CAP_KM,
) -> ZoneMatch:
    """
    Match a point to the forecast zone that covers it.

    Polygon containment wins outright. Failing that, the nearest polygon vertex
    within fallback_cap_km is accepted. Inside the Utah box a wider search
    restricted to UAC zones runs before giving up.
    """
    features = features or []
    point = Point(lon, lat)

    for feature in features:
        if _contains(feature, point):
            return ZoneMatch(feature=feature, mode="polygon", distance_km=0.0)

    feature, distance = _nearest_feature(features, lat, lon, fallback_cap_km)
    if feature is not None:
        return ZoneMatch(feature=feature, mode="nearest", distance_km=round(distance, 2))

    if in_utah_region(lat, lon):
        uac = [
            f for f in features
            if str((f.get("properties") or {}).get("center_id") or "").upper() == config.UTAH_CENTER_ID
        ]
        cap = max(fallback_cap_km, config.UTAH_REGION_CAP_KM)
        feature, distance = _nearest_feature(uac, lat, lon, cap)
        if feature is not None:
            return ZoneMatch(feature=feature, mode="nearest", distance_km=round(distance, 2))

    return ZoneMatch(feature=None, mode="none", distance_km=None)


class MapLayerCache:
    """
    Process-lifetime cache of the avalanche map layer.

    The cached value is a single (fetched_at, payload) tuple replaced in one
    assignment, so readers never observe a half-updated entry. On refresh
    failure the stale copy is served.
    """

    def __init__(
        self,
        url: str = config.AVALANCHE_MAP_LAYER_URL,
        ttl_seconds: float = config.MAP_LAYER_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: Optional[tuple] = None

    def is_fresh(self) -> bool:
        entry = self._entry
        return entry is not None and (self._clock() - entry[0]) < self.ttl_seconds

    async def get(self, client: httpx.AsyncClient) -> dict:
        entry = self._entry
        if entry is not None and (self._clock() - entry[0]) < self.ttl_seconds:
            return entry[1]

        try:
            payload = await fetch_json(client, self.url)
            if not isinstance(payload, dict) or not isinstance(payload.get("features"), list):
                raise ValueError("Avalanche map layer payload has no features list")
        except (httpx.HTTPError, ValueError) as exc:
            if entry is not None:
                logger.warning("Map layer refresh failed (%s); serving stale copy", exc)
                return entry[1]
            raise MapLayerUnavailable(str(exc)) from exc

        self._entry = (self._clock(), payload)
        return payload

    async def features(self, client: httpx.AsyncClient) -> list:
        payload = await self.get(client)
        return payload.get("features") or []
