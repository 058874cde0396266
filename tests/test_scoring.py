from datetime import timedelta

import pytest

from conftest import NOW, bulletin, ok_feeds, trend_rows, weather_snapshot
from trailsafe.scoring import SafetyScoreEngine, calculate_safety_score, graded, hazard_group
from trailsafe.weather import unavailable_weather


def score(weather=None, avalanche="default", **overrides):
    inputs = ok_feeds()
    inputs.update(overrides)
    return SafetyScoreEngine().score(
        weather=weather if weather is not None else weather_snapshot(),
        avalanche=bulletin() if avalanche == "default" else avalanche,
        selected_date="2025-01-15",
        now=NOW,
        **inputs,
    )


def hazards(result):
    return [f.hazard for f in result.factors]


def test_hazard_groups():
    assert hazard_group("Avalanche Uncertainty") == "avalanche"
    assert hazard_group("Official Alert") == "alerts"
    assert hazard_group("Air Quality") == "airQuality"
    assert hazard_group("Fire Danger") == "fire"
    assert hazard_group("Wind") == "weather"
    assert hazard_group("Weather Unavailable") == "weather"


def test_graded_bands():
    bands = [(80, 12), (60, 8), (40, 4)]
    assert graded(85, bands) == 12
    assert graded(60, bands) == 8
    assert graded(10, bands) == 0
    assert graded(None, bands) == 0


def test_calm_day_with_moderate_bulletin():
    result = score()
    assert result.score == 85
    assert result.confidence == 100
    assert result.primary_hazard == "Avalanche"
    assert result.group_impacts["avalanche"] == {"raw": 15, "capped": 15, "cap": 55}
    assert "Utah Avalanche Center avalanche forecast" in result.sources_used


def test_stable_explanation_when_nothing_fires():
    result = score(avalanche=None)
    assert result.score == 100
    assert result.primary_hazard == "None"
    assert result.explanations == ["Conditions appear stable for the selected plan window."]


def test_high_avalanche_danger_dominates():
    result = score(avalanche=bulletin(danger_level=4, risk="High"))
    assert result.primary_hazard == "Avalanche"
    assert result.factors[0].impact == 52
    assert result.score == 48


def test_many_avalanche_problems_add_impact():
    problems = [{"name": n} for n in ("Wind Slab", "Persistent Slab", "Loose Wet")]
    result = score(avalanche=bulletin(danger_level=3, problems=problems))
    assert result.group_impacts["avalanche"]["raw"] == 40


def test_unknown_danger_scores_uncertainty_and_costs_confidence():
    result = score(avalanche=bulletin(danger_unknown=True, coverage_status="no_active_forecast"))
    assert "Avalanche Uncertainty" in hazards(result)
    assert result.confidence == 80
    assert "Avalanche center coverage check" in result.sources_used


def test_irrelevant_avalanche_is_ignored():
    result = score(avalanche=bulletin(danger_level=4, relevant=False))
    assert "Avalanche" not in hazards(result)
    assert result.score == 100
    assert not any("avalanche" in s.lower() for s in result.sources_used)


def test_persistent_wind_scores_lower_than_a_spike():
    spike_rows = trend_rows()
    spike_rows[5]["gust"] = 46
    persistent_rows = trend_rows()
    for row in persistent_rows[3:9]:
        row["gust"] = 46

    spike = score(weather_snapshot(wind_speed=10, wind_gust=20, trend=spike_rows), avalanche=None)
    persistent = score(weather_snapshot(wind_speed=10, wind_gust=20, trend=persistent_rows), avalanche=None)

    assert spike.score == 82
    assert persistent.score == 74
    assert persistent.score < spike.score


def test_persistent_precipitation_scores_lower_than_a_spike():
    spike_rows = trend_rows()
    spike_rows[2]["precip_chance"] = 85
    persistent_rows = trend_rows(precip_chance=85)

    spike = score(weather_snapshot(trend=spike_rows), avalanche=None)
    persistent = score(weather_snapshot(trend=persistent_rows), avalanche=None)

    assert spike.score == 88
    assert persistent.score == 81
    assert persistent.score < spike.score


def test_weather_group_is_capped_when_many_rules_fire():
    rows = trend_rows(wind=40, gust=60, precip_chance=90, temp=-5, feels_like=-20, condition="Thunderstorm")
    weather = weather_snapshot(
        temp=-5, feels_like=-20, wind_speed=40, wind_gust=60, precip_chance=90,
        description="Thunderstorm", trend=rows,
    )
    result = score(weather, avalanche=None)

    weather_factors = [f for f in result.factors if f.group == "weather"]
    assert len(weather_factors) >= 5
    assert result.group_impacts["weather"]["raw"] > 42
    assert result.group_impacts["weather"]["capped"] == 42
    assert result.score == 58


def test_air_quality_not_applicable_scores_higher_than_unhealthy():
    unhealthy = score(air_quality={"status": "ok", "us_aqi": 180, "category": "Unhealthy"})
    future = score(air_quality={"status": "not_applicable_future_date", "us_aqi": None, "category": "Not applicable"})

    assert "Air Quality" in hazards(unhealthy)
    assert unhealthy.group_impacts["airQuality"]["raw"] == 14
    assert future.score > unhealthy.score
    assert "Open-Meteo air quality" not in future.sources_used


def test_weather_unavailable_is_scored_and_costs_confidence():
    result = score(unavailable_weather("2025-01-15"))
    assert "Weather Unavailable" in hazards(result)
    assert result.score == 65
    assert result.confidence == 64


def test_darkness_suppressed_before_sunrise_start():
    dark = weather_snapshot(is_daytime=False)
    solar = {"sunrise": "7:15:00 AM", "sunset": "5:10:00 PM", "day_length": "9:55:00"}
    alpine = score(dark, avalanche=None, solar=solar, start_clock="05:00")
    evening = score(dark, avalanche=None, solar=solar, start_clock="19:00")

    assert "Darkness" not in hazards(alpine)
    assert "Darkness" in hazards(evening)


def test_temperature_swing_is_flagged():
    rows = trend_rows()
    for row, temp in zip(rows, range(30, 90, 5)):
        row["temp"] = temp
        row["feels_like"] = temp
    result = score(weather_snapshot(trend=rows), avalanche=None)
    assert "Weather Volatility" in hazards(result)


def test_window_messages_use_effective_trend_hours():
    rows = trend_rows(hours=6)
    for row, temp in zip(rows, range(30, 90, 10)):
        row["temp"] = temp
        row["feels_like"] = temp
    rows[4]["gust"] = 48
    weather = weather_snapshot(wind_speed=10, wind_gust=20, trend=rows)
    result = score(weather, avalanche=None, travel_window_hours=12)

    messages = {f.hazard: [] for f in result.factors}
    for f in result.factors:
        messages[f.hazard].append(f.message)
    assert messages["Weather Volatility"] == ["Large 6-hour temperature swing (50F) suggests unstable conditions."]
    assert "Peak gusts in the next 6 hours reach 48 mph." in messages["Wind"]


def test_unavailable_weather_is_not_listed_as_a_source():
    result = score(unavailable_weather("2025-01-15"), travel_window_hours=8)
    assert "NOAA/NWS hourly forecast" not in result.sources_used
    assert "Open-Meteo hourly forecast" not in result.sources_used
    assert "NOAA/NWS hourly forecast" in score().sources_used


def test_long_lead_adds_uncertainty_and_drops_alerts():
    weather = weather_snapshot(forecast_start_time=(NOW + timedelta(hours=60)).isoformat())
    alerts = {
        "status": "ok", "active_count": 1, "highest_severity": "Severe",
        "alerts": [{"event": "Winter Storm Warning"}],
    }
    result = score(weather, avalanche=None, alerts=alerts)

    uncertainty = [f for f in result.factors if f.hazard == "Forecast Uncertainty"]
    assert uncertainty[0].impact == 8
    assert "Official Alert" not in hazards(result)
    assert result.confidence == 90
    assert "NOAA/NWS active alerts" not in result.sources_used


def test_active_alert_is_scored_when_relevant():
    alerts = {
        "status": "ok", "active_count": 2, "highest_severity": "Extreme",
        "alerts": [{"event": "Blizzard Warning"}, {"event": "Wind Chill Warning"}],
    }
    result = score(alerts=alerts, avalanche=None)
    alert = next(f for f in result.factors if f.hazard == "Official Alert")
    assert alert.impact == 24
    assert "Blizzard Warning, Wind Chill Warning" in alert.message


def test_zeroed_rainfall_is_a_surface_factor():
    rainfall = {"status": "partial", "fallback_mode": "zeroed_totals", "totals": {}, "expected": {}}
    result = score(rainfall=rainfall, avalanche=None)
    assert "Surface Conditions" in hazards(result)
    assert result.confidence == 92


def test_confidence_never_drops_below_floor():
    result = SafetyScoreEngine().score(
        weather=unavailable_weather("2025-01-20"),
        avalanche=bulletin(danger_unknown=True),
        selected_date="2025-01-20",
        now=NOW,
    )
    assert result.confidence == 20
    assert 0 <= result.score <= 100


@pytest.mark.parametrize("level", [0, 1, 2, 3, 4, 5])
def test_score_bounds_hold_for_every_danger_level(level):
    result = score(avalanche=bulletin(danger_level=level))
    assert 0 <= result.score <= 100
    assert 20 <= result.confidence <= 100


def test_result_serializes_factors():
    result = calculate_safety_score(weather=weather_snapshot(), avalanche=bulletin(), now=NOW, **ok_feeds())
    data = result.to_dict()
    assert data["factors"][0]["hazard"] == "Avalanche"
    assert data["factors"][0]["group"] == "avalanche"
