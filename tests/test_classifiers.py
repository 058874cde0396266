from conftest import trend_rows, weather_snapshot
from trailsafe.classifiers import build_fire_risk, build_heat_risk
from trailsafe.weather import unavailable_weather


def test_red_flag_warning_is_extreme_fire_danger():
    alerts = {"status": "ok", "alerts": [{"event": "Red Flag Warning"}]}
    result = build_fire_risk(weather_snapshot(), alerts=alerts)
    assert result["level"] == 4
    assert result["label"] == "Extreme"


def test_red_flag_ignored_when_alerts_do_not_cover_start():
    alerts = {"status": "ok", "alerts": [{"event": "Red Flag Warning"}]}
    result = build_fire_risk(weather_snapshot(), alerts=alerts, alerts_relevant=False)
    assert result["level"] == 0


def test_hot_dry_wind_raises_fire_level():
    weather = weather_snapshot(temp=84, humidity=18, wind_speed=16, wind_gust=25)
    assert build_fire_risk(weather)["level"] == 3


def test_smoky_air_is_elevated_fire_signal():
    result = build_fire_risk(weather_snapshot(description="Haze"), air_quality={"us_aqi": 40})
    assert result["level"] == 2
    assert build_fire_risk(weather_snapshot(), air_quality={"us_aqi": 70})["level"] == 1


def test_fire_risk_unavailable_without_weather():
    assert build_fire_risk(unavailable_weather())["status"] == "unavailable"


def test_heat_levels_from_peak_and_humidity():
    scorching = weather_snapshot(temp=101, feels_like=101, trend=trend_rows(temp=101))
    assert build_heat_risk(scorching)["level"] == 4

    humid = weather_snapshot(temp=88, feels_like=88, humidity=60, trend=trend_rows(temp=88))
    result = build_heat_risk(humid)
    assert result["level"] == 3
    assert result["peak_feels_like"] == 88


def test_warm_night_is_not_heat_stress():
    night = weather_snapshot(temp=78, feels_like=78, is_daytime=False, trend=trend_rows(temp=78))
    assert build_heat_risk(night)["level"] == 0


def test_heat_risk_unavailable_without_weather():
    assert build_heat_risk(unavailable_weather())["label"] == "Unknown"
