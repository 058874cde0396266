from conftest import trend_rows, weather_snapshot
from trailsafe.terrain import classify_terrain
from trailsafe.weather import unavailable_weather


def rainfall_totals(**totals):
    return {"status": "ok", "totals": totals}


def test_unavailable_weather_without_other_signals():
    result = classify_terrain(unavailable_weather("2025-01-15"))
    assert result["code"] == "weather_unavailable"
    assert result["label"] == "Weather Unavailable"
    assert result["confidence"] == "low"


def test_fresh_cold_snow_is_powder():
    weather = weather_snapshot(
        temp=22, feels_like=12, description="Light Snow", precip_chance=60,
        trend=trend_rows(temp=22, condition="Light Snow", precip_chance=60),
    )
    result = classify_terrain(
        weather,
        snowpack={"status": "ok", "snow_depth_in": 30, "swe_in": 8},
        rainfall=rainfall_totals(snow_past_12h_in=2.0, snow_past_24h_in=4.0, snow_past_48h_in=6.0),
    )
    assert result["code"] == "snow_fresh_powder"
    assert result["snow_profile"]["code"] == "fresh_powder"
    assert result["confidence"] == "high"


def test_freeze_thaw_over_snowpack_is_spring_snow():
    trend = trend_rows(hours=12)
    for row, temp in zip(trend, [25, 27, 30, 34, 38, 42, 45, 44, 40, 35, 31, 28]):
        row["temp"] = temp
    weather = weather_snapshot(temp=40, description="Sunny", precip_chance=10, trend=trend)
    result = classify_terrain(weather, snowpack={"status": "ok", "snow_depth_in": 24, "swe_in": 6})
    assert result["code"] == "spring_snow"
    assert result["label"] == "Spring Snow"


def test_recent_rain_is_wet_muddy():
    weather = weather_snapshot(temp=50, description="Rain", precip_chance=70)
    result = classify_terrain(weather, rainfall=rainfall_totals(rain_past_24h_in=0.5))
    assert result["code"] == "wet_muddy"
    assert any("Recent rainfall" in reason for reason in result["reasons"])


def test_dry_wind_is_dry_loose():
    weather = weather_snapshot(temp=70, humidity=20, precip_chance=5, wind_speed=18, wind_gust=30)
    result = classify_terrain(weather)
    assert result["code"] == "dry_loose"
    assert result["label"] == "Dry / Loose"


def test_calm_weather_is_variable():
    result = classify_terrain(weather_snapshot())
    assert result["code"] == "mixed_variable"
    assert result["signals"]["trend_points"] == 12
    assert "description" not in result["signals"]
