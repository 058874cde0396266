from conftest import bulletin, weather_snapshot
from trailsafe.relevance import evaluate_relevance, evaluate_snowpack_signal, snowpack_maxima

WARM_DRY = dict(temp=75, feels_like=75, precip_chance=5, description="Sunny", elevation_ft=4000)


def off_season():
    return bulletin(coverage_status="no_active_forecast", danger_unknown=True, danger_level=0)


def no_coverage():
    return bulletin(coverage_status="no_center_coverage", danger_unknown=True, danger_level=0, center_id=None)


def test_snowpack_tiers():
    assert evaluate_snowpack_signal(None)["tier"] == "unknown"
    assert evaluate_snowpack_signal({"status": "unavailable"})["tier"] == "unknown"
    assert evaluate_snowpack_signal({"status": "ok", "snow_depth_in": 12})["tier"] == "material"
    assert evaluate_snowpack_signal({"status": "ok", "snow_depth_in": 0.5, "swe_in": 1.6})["tier"] == "material"
    assert evaluate_snowpack_signal({"status": "ok", "snow_depth_in": 3, "swe_in": 0.1})["tier"] == "measurable"
    assert evaluate_snowpack_signal({"status": "ok", "snow_depth_in": 0, "swe_in": 0})["tier"] == "low"
    assert evaluate_snowpack_signal({"status": "ok", "snow_depth_in": 1.5, "swe_in": 0.1})["tier"] == "mixed"
    assert evaluate_snowpack_signal({"status": "ok", "snow_depth_in": None, "swe_in": None})["tier"] == "unknown"


def test_swe_only_reading_is_not_low_snow():
    swe_only = {"status": "ok", "snow_depth_in": None, "swe_in": 0.2}
    assert evaluate_snowpack_signal(swe_only)["tier"] == "mixed"

    high = weather_snapshot(**dict(WARM_DRY, elevation_ft=11000))
    result = evaluate_relevance(39.0, "2025-01-15", high, no_coverage(), snowpack=swe_only)
    assert result["relevant"] is True


def combined_snowpack(snotel_depth, snotel_km, nohrsc_depth):
    return {
        "status": "ok",
        "snow_depth_in": nohrsc_depth,
        "swe_in": None,
        "snotel": {"snow_depth_in": snotel_depth, "swe_in": None, "distance_km": snotel_km},
        "nohrsc": {"snow_depth_in": nohrsc_depth, "swe_in": None},
    }


def test_snowpack_takes_deepest_source_near_objective():
    assert snowpack_maxima(combined_snowpack(40, 25.0, 0.5)) == (40.0, None)
    assert evaluate_snowpack_signal(combined_snowpack(40, 25.0, 0.5))["tier"] == "material"


def test_distant_snotel_station_is_ignored():
    assert snowpack_maxima(combined_snowpack(40, 95.0, 0.5)) == (0.5, None)
    assert evaluate_snowpack_signal(combined_snowpack(40, 95.0, 0.5))["tier"] == "low"


def test_snotel_without_distance_still_counts():
    snowpack = {"status": "partial", "snotel": {"snow_depth_in": 3, "swe_in": 0.6}, "nohrsc": None}
    assert snowpack_maxima(snowpack) == (3.0, 0.6)
    assert evaluate_snowpack_signal(snowpack)["tier"] == "measurable"


def test_reported_bulletin_is_relevant():
    result = evaluate_relevance(40.6, "2025-07-15", weather_snapshot(**WARM_DRY), bulletin())
    assert result["relevant"] is True


def test_expired_bulletin_is_relevant():
    expired = bulletin(coverage_status="expired_for_selected_start", danger_unknown=True)
    result = evaluate_relevance(40.6, "2025-07-15", weather_snapshot(**WARM_DRY), expired)
    assert result["relevant"] is True
    assert "expires" in result["reason"]


def test_expected_window_snow_makes_hazard_relevant():
    rainfall = {"expected": {"snow_window_in": 8.0}}
    result = evaluate_relevance(35.0, "2025-07-15", weather_snapshot(**WARM_DRY), no_coverage(), rainfall=rainfall)
    assert result["relevant"] is True
    assert "8.0 in" in result["reason"]


def test_wintry_forecast_is_relevant():
    weather = weather_snapshot(temp=28, feels_like=20, description="Light Snow", elevation_ft=3000)
    assert evaluate_relevance(35.0, "2025-01-15", weather, no_coverage())["relevant"] is True


def test_unavailable_weather_is_not_a_wintry_signal():
    weather = weather_snapshot(
        temp=None, feels_like=None, precip_chance=None,
        description="Weather data unavailable", elevation_ft=None,
    )
    result = evaluate_relevance(35.0, "2025-07-15", weather, no_coverage())
    assert result["relevant"] is False


def test_material_snowpack_is_relevant_out_of_season():
    snowpack = {"status": "ok", "snow_depth_in": 20, "swe_in": 5}
    result = evaluate_relevance(35.0, "2025-07-15", weather_snapshot(**WARM_DRY), no_coverage(), snowpack=snowpack)
    assert result["relevant"] is True
    assert "material snowpack" in result["reason"]


def test_measurable_snowpack_needs_high_elevation_in_season():
    snowpack = {"status": "ok", "snow_depth_in": 3, "swe_in": 0.2}
    high = weather_snapshot(**dict(WARM_DRY, elevation_ft=9500))
    low = weather_snapshot(**WARM_DRY)
    assert evaluate_relevance(38.0, "2025-10-10", high, off_season(), snowpack=snowpack)["relevant"] is True
    assert evaluate_relevance(38.0, "2025-10-10", low, off_season(), snowpack=snowpack)["relevant"] is False


def test_low_snowpack_without_coverage_is_not_relevant():
    snowpack = {"status": "ok", "snow_depth_in": 0, "swe_in": 0}
    high = weather_snapshot(**dict(WARM_DRY, elevation_ft=11000))
    result = evaluate_relevance(39.0, "2025-01-15", high, no_coverage(), snowpack=snowpack)
    assert result["relevant"] is False
    assert "little to no snow" in result["reason"]


def test_off_season_summer_is_not_relevant():
    high = weather_snapshot(**dict(WARM_DRY, elevation_ft=11000))
    result = evaluate_relevance(39.0, "2025-08-01", high, off_season())
    assert result["relevant"] is False
    assert "off-season" in result["reason"]


def test_high_elevation_winter_without_snowpack_data_is_relevant():
    high = weather_snapshot(**dict(WARM_DRY, elevation_ft=9000))
    assert evaluate_relevance(39.0, "2025-12-01", high, no_coverage())["relevant"] is True


def test_mid_elevation_needs_high_latitude():
    mid = weather_snapshot(**dict(WARM_DRY, elevation_ft=7000))
    assert evaluate_relevance(47.0, "2025-02-01", mid, no_coverage())["relevant"] is True
    assert evaluate_relevance(36.0, "2025-02-01", mid, no_coverage())["relevant"] is False


def test_low_elevation_summer_defaults_to_not_relevant():
    result = evaluate_relevance(34.0, "2025-07-04", weather_snapshot(**WARM_DRY), no_coverage())
    assert result == {
        "relevant": False,
        "reason": "Objective appears typically low-snow for the selected season and forecast.",
    }
