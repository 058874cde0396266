import httpx
import pytest

from conftest import make_transport, square_feature
from trailsafe.geo import MapLayerCache, MapLayerUnavailable, haversine_km, resolve_zone

KM_PER_DEG_LAT = 6371.0 * 3.141592653589793 / 180.0

UTAH_ZONE = square_feature("uinta", 40.0, 40.2, -111.0, -110.8, center_id="UAC", name="Uintas")
COLORADO_ZONE = square_feature("summit", 39.5, 39.7, -106.2, -106.0, center_id="CAIC", name="Summit County")


def test_haversine_one_degree_latitude():
    distance = haversine_km(40.0, -105.0, [41.0], [-105.0])
    assert distance[0] == pytest.approx(KM_PER_DEG_LAT, rel=1e-6)


def test_polygon_hit_returns_zero_distance():
    match = resolve_zone([COLORADO_ZONE, UTAH_ZONE], 40.1, -110.9)
    assert match.mode == "polygon"
    assert match.feature["id"] == "uinta"
    assert match.distance_km == 0.0


def test_nearest_vertex_within_cap():
    lat = 39.7 + 15.0 / KM_PER_DEG_LAT
    match = resolve_zone([COLORADO_ZONE], lat, -106.0, fallback_cap_km=20)
    assert match.mode == "nearest"
    assert match.feature["id"] == "summit"
    assert match.distance_km == pytest.approx(15.0, abs=0.05)


def test_nearest_vertex_outside_cap_is_none():
    lat = 39.7 + 15.0 / KM_PER_DEG_LAT
    match = resolve_zone([COLORADO_ZONE], lat, -106.0, fallback_cap_km=10)
    assert match.mode == "none"
    assert match.feature is None


def test_far_point_outside_region_box_is_none():
    match = resolve_zone([COLORADO_ZONE, UTAH_ZONE], 41.0, -104.0)
    assert match.mode == "none"
    assert match.distance_km is None


def test_utah_box_widens_search_to_uac_zones():
    lat = 40.2 + 60.0 / KM_PER_DEG_LAT
    match = resolve_zone([UTAH_ZONE], lat, -110.8)
    assert match.mode == "nearest"
    assert match.feature["id"] == "uinta"
    assert 55 < match.distance_km < 65


def test_utah_box_ignores_other_centers():
    other = square_feature("other", 40.0, 40.2, -111.0, -110.8, center_id="XYZ")
    lat = 40.2 + 60.0 / KM_PER_DEG_LAT
    assert resolve_zone([other], lat, -110.8).mode == "none"


def test_malformed_geometry_is_skipped():
    broken = {"id": "bad", "geometry": {"type": "Polygon", "coordinates": [[[0, 0]]]}, "properties": {}}
    match = resolve_zone([broken, UTAH_ZONE], 40.1, -110.9)
    assert match.mode == "polygon"
    assert match.feature["id"] == "uinta"


def test_multipolygon_vertices_are_searched():
    multi = {
        "id": "multi",
        "geometry": {
            "type": "MultiPolygon",
            "coordinates": [[[[-106.2, 39.5], [-106.0, 39.5], [-106.0, 39.7], [-106.2, 39.7], [-106.2, 39.5]]]],
        },
        "properties": {},
    }
    lat = 39.7 + 5.0 / KM_PER_DEG_LAT
    match = resolve_zone([multi], lat, -106.0)
    assert match.mode == "nearest"


class FakeClock:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


@pytest.mark.asyncio
async def test_map_layer_cache_serves_fresh_copy_without_refetch():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"features": [UTAH_ZONE]})

    clock = FakeClock()
    cache = MapLayerCache(url="https://example.test/map-layer", ttl_seconds=60, clock=clock)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        first = await cache.features(client)
        clock.t += 30
        second = await cache.features(client)

    assert first == second == [UTAH_ZONE]
    assert len(calls) == 1
    assert cache.is_fresh()


@pytest.mark.asyncio
async def test_map_layer_cache_serves_stale_copy_on_error():
    responses = [httpx.Response(200, json={"features": [UTAH_ZONE]}), httpx.Response(503)]

    def handler(request):
        return responses.pop(0)

    clock = FakeClock()
    cache = MapLayerCache(url="https://example.test/map-layer", ttl_seconds=60, clock=clock)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        await cache.get(client)
        clock.t += 120
        payload = await cache.get(client)

    assert payload["features"] == [UTAH_ZONE]
    assert not cache.is_fresh()


@pytest.mark.asyncio
async def test_map_layer_cache_rejects_payload_without_features():
    cache = MapLayerCache(url="https://example.test/map-layer")
    transport = make_transport({"map-layer": {"type": "FeatureCollection"}})
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(MapLayerUnavailable):
            await cache.get(client)
