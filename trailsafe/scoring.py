"""Composite safety score, confidence and explanation trace."""

import operator
import re
from datetime import datetime
from typing import Optional

import numpy as np

import config
from .models import HazardFactor, SafetyScoreResult
from .timeutil import clock_of_iso, hours_between, parse_clock_minutes, parse_iso, utcnow
from .weather import clamp_window_hours, compute_feels_like, is_weather_unavailable

STORM_RE = re.compile(r"thunderstorm|lightning|blizzard", re.IGNORECASE)
WINTER_RE = re.compile(r"snow|sleet|freezing rain|ice", re.IGNORECASE)
OBSCURANT_RE = re.compile(r"fog|smoke|haze", re.IGNORECASE)


def hazard_group(hazard: str) -> str:
    """Map a factor name onto the category whose cap bounds it."""
    name = hazard.lower()
    if "avalanche" in name:
        return "avalanche"
    if "alert" in name:
        return "alerts"
    if "air quality" in name:
        return "airQuality"
    if "fire" in name:
        return "fire"
    return "weather"


def graded(value: Optional[float], bands, op=operator.ge) -> int:
    """
    First impact whose threshold value reaches, scanning bands in order.

    Args:
        value: Measured value; None never scores.
        bands: Sequence of (threshold, impact) from most to least severe.
        op: Comparison applied as op(value, threshold); operator.le for cold bands.
    """
    if value is None:
        return 0
    for threshold, impact in bands:
        if op(value, threshold):
            return impact
    return 0


class _FactorLedger:
    def __init__(self, caps: dict):
        self.caps = caps
        self.factors = []
        self.explanations = []

    def apply(self, hazard: str, impact, message: str, source: str):
        if impact is None or np.isnan(impact) or impact <= 0:
            return
        self.factors.append(HazardFactor(
            hazard=hazard,
            impact=int(impact),
            message=message,
            source=source,
            group=hazard_group(hazard),
        ))
        self.explanations.append(message)

    def group_impacts(self) -> dict:
        impacts = {}
        for group, cap in self.caps.items():
            raw = int(round(sum(f.impact for f in self.factors if f.group == group)))
            impacts[group] = {"raw": raw, "capped": min(raw, cap), "cap": cap}
        return impacts

    def sorted_factors(self) -> list:
        return sorted(self.factors, key=lambda f: f.impact, reverse=True)


class _ConfidenceLedger:
    def __init__(self):
        self.value = config.CONFIDENCE_MAX
        self.reasons = []

    def penalize(self, amount: int, reason: str):
        if amount <= 0:
            return
        self.value -= amount
        self.reasons.append(f"{reason} (-{amount})")

    def result(self) -> int:
        return int(max(config.CONFIDENCE_MIN, min(config.CONFIDENCE_MAX, self.value)))


def _rows(weather: dict) -> list:
    return (weather or {}).get("trend") or []


def _col(rows: list, key: str, fallback_key: Optional[str] = None) -> np.ndarray:
    values = []
    for row in rows:
        value = row.get(key)
        if value is None and fallback_key:
            value = row.get(fallback_key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            values.append(float(value))
    return np.asarray(values, dtype=float)


def _row_feels_like(rows: list) -> np.ndarray:
    values = []
    for row in rows:
        value = row.get("feels_like")
        if value is None:
            value = compute_feels_like(row.get("temp"), row.get("wind"))
        if value is not None:
            values.append(float(value))
    return np.asarray(values, dtype=float)


class SafetyScoreEngine:
    """
    Turns reconciled hazard inputs into a 0-100 score.

    Each rule family contributes factors to a per-category ledger whose
    total is capped; confidence is tracked by a separate ledger that only
    ever decrements for missing, stale or distant data.
    """

    def __init__(self, group_caps: Optional[dict] = None):
        self.group_caps = dict(group_caps or config.GROUP_CAPS)

    def score(
        self,
        weather: dict,
        avalanche=None,
        alerts: Optional[dict] = None,
        air_quality: Optional[dict] = None,
        fire_risk: Optional[dict] = None,
        heat_risk: Optional[dict] = None,
        rainfall: Optional[dict] = None,
        selected_date: Optional[str] = None,
        solar: Optional[dict] = None,
        start_clock: Optional[str] = None,
        now: Optional[datetime] = None,
        travel_window_hours: Optional[int] = None,
    ) -> SafetyScoreResult:
        now = now or utcnow()
        weather = weather or {}
        window_hours = max(1, len(_rows(weather)) or clamp_window_hours(travel_window_hours))
        ledger = _FactorLedger(self.group_caps)
        confidence = _ConfidenceLedger()

        lead_hours = self._lead_hours(weather, selected_date, now)
        alerts_relevant = lead_hours is None or lead_hours <= config.ALERT_LEAD_HOURS
        avalanche_relevant = avalanche is not None and avalanche.relevant is not False
        weather_unavailable = is_weather_unavailable(weather)

        self._avalanche_factors(ledger, avalanche, avalanche_relevant)
        if weather_unavailable:
            ledger.apply(
                "Weather Unavailable", 20,
                "Weather data could not be retrieved; conditions at the objective are unknown.",
                "Weather feeds",
            )
        else:
            self._wind_factors(ledger, weather, window_hours)
            self._storm_factors(ledger, weather, rainfall)
            self._visibility_factors(ledger, weather)
            self._temperature_factors(ledger, weather, heat_risk)
            self._darkness_factors(ledger, weather, solar, start_clock)
            self._volatility_factors(ledger, weather, window_hours)
        self._surface_factors(ledger, rainfall)
        self._forecast_uncertainty(ledger, lead_hours, alerts_relevant)
        self._alert_factors(ledger, alerts, alerts_relevant)
        self._air_quality_factors(ledger, air_quality)
        self._fire_factors(ledger, fire_risk)

        self._weather_confidence(confidence, weather, weather_unavailable, now)
        self._avalanche_confidence(confidence, avalanche, avalanche_relevant, now)
        self._feed_confidence(confidence, alerts, alerts_relevant, air_quality, rainfall, fire_risk, now)
        if lead_hours is not None:
            lead_penalty = graded(lead_hours, [(72, 8), (48, 6), (24, 4)])
            confidence.penalize(lead_penalty, f"Selected start is {round(lead_hours)}h ahead")

        group_impacts = ledger.group_impacts()
        deduction = sum(g["capped"] for g in group_impacts.values())
        score = max(0, int(round(100 - deduction)))
        factors = ledger.sorted_factors()

        return SafetyScoreResult(
            score=min(100, score),
            confidence=confidence.result(),
            primary_hazard=factors[0].hazard if factors else "None",
            factors=factors,
            group_impacts=group_impacts,
            explanations=ledger.explanations or [config.STABLE_EXPLANATION],
            confidence_reasons=confidence.reasons,
            sources_used=self._sources_used(weather, avalanche, avalanche_relevant, alerts, alerts_relevant,
                                            air_quality, rainfall, heat_risk, fire_risk),
            air_quality_category=(air_quality or {}).get("category") or "Unknown",
        )

    @staticmethod
    def _lead_hours(weather: dict, selected_date: Optional[str], now: datetime) -> Optional[float]:
        start = parse_iso(weather.get("forecast_start_time"))
        if start is None and selected_date:
            start = parse_iso(f"{selected_date}T00:00:00+00:00")
        return hours_between(start, now)

    # Factor families

    @staticmethod
    def _avalanche_factors(ledger: _FactorLedger, bulletin, relevant: bool):
        if bulletin is None or not relevant:
            return
        source = bulletin.center or "Avalanche center"
        if bulletin.danger_unknown:
            ledger.apply("Avalanche Uncertainty", 16, config.AVALANCHE_UNKNOWN_MESSAGE, source)
            return
        level = bulletin.danger_level
        messages = {
            4: "High avalanche danger reported. Avoid avalanche terrain and steep loaded slopes.",
            3: "Considerable avalanche danger reported. Careful snowpack evaluation and conservative terrain are essential.",
            2: "Moderate avalanche danger reported. Heightened avalanche conditions on specific terrain features.",
            1: "Low avalanche danger reported. Watch for unstable snow on isolated terrain features.",
        }
        impact = graded(level, [(4, 52), (3, 34), (2, 15), (1, 4)])
        ledger.apply("Avalanche", impact, messages.get(min(level, 4), ""), source)
        if len(bulletin.problems or []) >= 3:
            ledger.apply(
                "Avalanche", 6,
                f"{len(bulletin.problems)} avalanche problems are listed in the forecast.",
                source,
            )

    @staticmethod
    def _wind_factors(ledger: _FactorLedger, weather: dict, window_hours: int):
        rows = _rows(weather)
        wind = weather.get("wind_speed") or 0
        gust = weather.get("wind_gust") or 0
        row_gusts = _col(rows, "gust", "wind")
        trend_peak = float(np.max(row_gusts)) if row_gusts.size else 0.0
        effective = max(wind, gust, trend_peak)

        if effective >= 50 or wind >= 35:
            impact = 20
        elif effective >= 40 or wind >= 25:
            impact = 12
        elif effective >= 30 or wind >= 18:
            impact = 6
        else:
            impact = 0
        ledger.apply(
            "Wind", impact,
            f"Strong winds expected: sustained {round(wind)} mph with gusts to {round(effective)} mph.",
            "NOAA/NWS hourly forecast",
        )

        severe_hours = sum(
            1 for row in rows if (row.get("wind") or 0) >= 30 or (row.get("gust") or 0) >= 45
        )
        strong_hours = sum(
            1 for row in rows if (row.get("wind") or 0) >= 20 or (row.get("gust") or 0) >= 30
        )
        if severe_hours >= 2:
            ledger.apply(
                "Wind", graded(severe_hours, [(4, 8), (2, 5)]),
                f"Damaging winds persist for {severe_hours} hours of the travel window.",
                "NOAA/NWS hourly trend",
            )
        else:
            ledger.apply(
                "Wind", graded(strong_hours, [(6, 4), (3, 2)]),
                f"Strong winds persist for {strong_hours} hours of the travel window.",
                "NOAA/NWS hourly trend",
            )

        if trend_peak >= 45 and gust < 45:
            ledger.apply(
                "Wind", 6,
                f"Peak gusts in the next {window_hours} hours reach {round(trend_peak)} mph.",
                "NOAA/NWS hourly trend",
            )

    @staticmethod
    def _storm_factors(ledger: _FactorLedger, weather: dict, rainfall: Optional[dict]):
        rows = _rows(weather)
        precip = _col(rows, "precip_chance")
        current = weather.get("precip_chance")
        peak = float(np.max(precip)) if precip.size else current
        ledger.apply(
            "Storm", graded(peak, [(80, 12), (60, 8), (40, 4)]),
            f"Precipitation chance peaks near {round(peak or 0)}% during the travel window.",
            "NOAA/NWS hourly forecast",
        )

        high_hours = int(np.sum(precip >= 60)) if precip.size else 0
        moderate_hours = int(np.sum(precip >= 40)) if precip.size else 0
        if high_hours >= 2:
            ledger.apply(
                "Storm", graded(high_hours, [(4, 7), (2, 4)]),
                f"Precipitation is likely for {high_hours} hours of the travel window.",
                "NOAA/NWS hourly trend",
            )
        else:
            ledger.apply(
                "Storm", 3 if moderate_hours >= 6 else 0,
                f"Precipitation is possible for {moderate_hours} hours of the travel window.",
                "NOAA/NWS hourly trend",
            )

        description = str(weather.get("description") or "")
        if STORM_RE.search(description):
            ledger.apply("Storm", 18, f"Severe convective or blizzard weather forecast ({description}).",
                         "NOAA/NWS hourly forecast")
        elif WINTER_RE.search(description):
            ledger.apply("Winter Weather", 10, f"Winter precipitation forecast ({description}).",
                         "NOAA/NWS hourly forecast")

        expected = (rainfall or {}).get("expected") or {}
        rain = expected.get("rain_window_in")
        snow = expected.get("snow_window_in")
        hours = expected.get("window_hours") or config.DEFAULT_TRAVEL_WINDOW_HOURS
        ledger.apply(
            "Storm", graded(rain, [(0.5, 6), (0.2, 3)]),
            f"About {rain} in of rain expected in the next {hours}h.",
            "Open-Meteo precipitation forecast",
        )
        ledger.apply(
            "Winter Weather", graded(snow, [(4, 7), (1.5, 3)]),
            f"About {snow} in of snow expected in the next {hours}h.",
            "Open-Meteo precipitation forecast",
        )

    @staticmethod
    def _visibility_factors(ledger: _FactorLedger, weather: dict):
        risk = weather.get("visibility_risk") or {}
        score = risk.get("score")
        if score is not None:
            ledger.apply(
                "Visibility", graded(score, [(80, 12), (60, 9), (40, 6), (20, 3)]),
                f"{risk.get('level', 'Elevated')} visibility risk for the travel window.",
                "Derived visibility risk",
            )
        elif OBSCURANT_RE.search(str(weather.get("description") or "")):
            ledger.apply("Visibility", 6, "Fog, smoke or haze may reduce visibility.", "NOAA/NWS hourly forecast")

    @staticmethod
    def _temperature_factors(ledger: _FactorLedger, weather: dict, heat_risk: Optional[dict]):
        rows = _rows(weather)
        feels = _row_feels_like(rows)
        current_feels = weather.get("feels_like")
        min_feels = float(np.min(feels)) if feels.size else current_feels
        ledger.apply(
            "Cold", graded(min_feels, [(-10, 15), (0, 10), (15, 6), (25, 3)], op=operator.le),
            f"Wind chill drops to about {round(min_feels) if min_feels is not None else 'n/a'}F.",
            "NOAA/NWS hourly forecast",
        )
        extreme_hours = int(np.sum(feels <= 0)) if feels.size else 0
        cold_hours = int(np.sum(feels <= 15)) if feels.size else 0
        if extreme_hours >= 3:
            ledger.apply("Cold", 6, f"Dangerous wind chill persists for {extreme_hours} hours.", "NOAA/NWS hourly trend")
        elif cold_hours >= 5:
            ledger.apply("Cold", 4, f"Frostbite-range wind chill persists for {cold_hours} hours.", "NOAA/NWS hourly trend")

        heat_level = (heat_risk or {}).get("level") if (heat_risk or {}).get("status") == "ok" else None
        if heat_level:
            ledger.apply(
                "Heat", graded(heat_level, [(4, 14), (3, 10), (2, 6), (1, 2)]),
                f"{heat_risk.get('label', 'Elevated')} heat-stress risk. {heat_risk.get('guidance', '')}".strip(),
                "Derived heat risk",
            )
            return
        temps = _col(rows, "temp")
        candidates = list(temps) + ([current_feels] if current_feels is not None else [])
        if not candidates:
            return
        max_feels = max(candidates)
        hot_hours = int(np.sum(temps >= 85)) if temps.size else 0
        if max_feels >= 90:
            ledger.apply("Heat", 6, f"Temperatures reach about {round(max_feels)}F.", "NOAA/NWS hourly forecast")
        elif max_feels >= 82 and hot_hours >= 4:
            ledger.apply("Heat", 3, f"Warm temperatures persist for {hot_hours} hours.", "NOAA/NWS hourly trend")

    @staticmethod
    def _darkness_factors(ledger: _FactorLedger, weather: dict, solar: Optional[dict], start_clock: Optional[str]):
        if weather.get("is_daytime") is not False:
            return
        start_minutes = parse_clock_minutes(start_clock)
        if start_minutes is None:
            start_minutes = clock_of_iso(weather.get("forecast_start_time"))
        sunrise_minutes = parse_clock_minutes((solar or {}).get("sunrise"))
        if start_minutes is not None and sunrise_minutes is not None and start_minutes < sunrise_minutes:
            return
        ledger.apply("Darkness", 5, "Travel window starts in darkness; navigation and hazard spotting are harder.",
                     "NOAA/NWS hourly forecast")

    @staticmethod
    def _volatility_factors(ledger: _FactorLedger, weather: dict, window_hours: int):
        temps = _col(_rows(weather), "temp")
        if temps.size < 2:
            return
        swing = float(np.max(temps) - np.min(temps))
        ledger.apply(
            "Weather Volatility", 6 if swing >= 18 else 0,
            f"Large {window_hours}-hour temperature swing ({round(swing)}F) suggests unstable conditions.",
            "NOAA/NWS hourly trend",
        )

    @staticmethod
    def _surface_factors(ledger: _FactorLedger, rainfall: Optional[dict]):
        if not rainfall:
            return
        if rainfall.get("fallback_mode") == "zeroed_totals":
            ledger.apply("Surface Conditions", 4,
                         "Recent precipitation totals are unavailable; surface conditions are uncertain.",
                         "Open-Meteo precipitation history")
            return
        totals = rainfall.get("totals") or {}
        rain = totals.get("rain_past_24h_in")
        snow = totals.get("snow_past_24h_in")
        ledger.apply("Surface Conditions", graded(rain, [(0.75, 7), (0.3, 4)]),
                     f"{rain} in of rain in the past 24h leaves wet, slick surfaces.",
                     "Open-Meteo precipitation history")
        ledger.apply("Surface Conditions", graded(snow, [(6, 8), (2, 4)]),
                     f"{snow} in of new snow in the past 24h.",
                     "Open-Meteo precipitation history")

    @staticmethod
    def _forecast_uncertainty(ledger: _FactorLedger, lead_hours: Optional[float], alerts_relevant: bool):
        if lead_hours is None or lead_hours <= 6:
            return
        impact = graded(lead_hours, [(96, 10), (72, 8), (48, 6), (24, 4)]) or 2
        if not alerts_relevant:
            impact += 2
        ledger.apply(
            "Forecast Uncertainty", min(impact, 14),
            f"Selected start is about {round(lead_hours)}h out; forecast skill drops with lead time.",
            "Forecast lead time",
        )

    @staticmethod
    def _alert_factors(ledger: _FactorLedger, alerts: Optional[dict], alerts_relevant: bool):
        if not alerts_relevant or not alerts or alerts.get("status") != "ok":
            return
        if not alerts.get("active_count"):
            return
        severity = str(alerts.get("highest_severity") or "").lower()
        impact = {"extreme": 24, "severe": 16, "moderate": 10}.get(severity, 5)
        events = []
        for alert in alerts.get("alerts") or []:
            event = alert.get("event")
            if event and event not in events:
                events.append(event)
        ledger.apply(
            "Official Alert", impact,
            f"Active NWS alert(s): {', '.join(events[:3]) or 'Weather Alert'}.",
            "NOAA/NWS Active Alerts",
        )

    @staticmethod
    def _air_quality_factors(ledger: _FactorLedger, air_quality: Optional[dict]):
        if not air_quality or air_quality.get("status") == "not_applicable_future_date":
            return
        aqi = air_quality.get("us_aqi")
        ledger.apply(
            "Air Quality", graded(aqi, [(201, 20), (151, 14), (101, 8), (51, 3)]),
            f"US AQI near {aqi} ({air_quality.get('category', 'Unknown')}).",
            "Open-Meteo Air Quality API",
        )

    @staticmethod
    def _fire_factors(ledger: _FactorLedger, fire_risk: Optional[dict]):
        if not fire_risk or fire_risk.get("status") != "ok":
            return
        level = fire_risk.get("level")
        ledger.apply(
            "Fire Danger", graded(level, [(4, 16), (3, 10), (2, 5)]),
            f"{fire_risk.get('label', 'Elevated')} fire danger. {fire_risk.get('guidance', '')}".strip(),
            fire_risk.get("source", "Derived fire risk"),
        )

    # Confidence

    @staticmethod
    def _weather_confidence(confidence: _ConfidenceLedger, weather: dict, unavailable: bool, now: datetime):
        if unavailable:
            confidence.penalize(30, "Weather data unavailable")
        else:
            issued = parse_iso(weather.get("issued_time"))
            if issued is None:
                confidence.penalize(8, "Forecast issue time missing")
            else:
                age = hours_between(now, issued)
                confidence.penalize(
                    graded(age, [(18, 12), (10, 7), (6, 4)], op=operator.gt),
                    f"Forecast issued {round(age)}h ago",
                )
        if len(_rows(weather)) < config.TREND_MIN_POINTS:
            confidence.penalize(6, "Hourly trend covers fewer than 6 hours")

    @staticmethod
    def _avalanche_confidence(confidence: _ConfidenceLedger, bulletin, relevant: bool, now: datetime):
        if bulletin is None or not relevant:
            return
        if bulletin.danger_unknown:
            confidence.penalize(20, "Avalanche danger unknown")
            return
        published = parse_iso(bulletin.published_time)
        if published is None:
            confidence.penalize(8, "Avalanche bulletin publish time missing")
            return
        age = hours_between(now, published)
        confidence.penalize(
            graded(age, [(72, 12), (48, 8), (24, 4)], op=operator.gt),
            f"Avalanche bulletin published {round(age)}h ago",
        )

    @staticmethod
    def _feed_confidence(confidence, alerts, alerts_relevant, air_quality, rainfall, fire_risk, now):
        alert_status = (alerts or {}).get("status", "unavailable")
        if alerts_relevant and alert_status == "unavailable":
            confidence.penalize(8, "NWS alerts unavailable")
        elif not alerts_relevant:
            confidence.penalize(4, "NWS alerts do not cover the selected start")

        aq_status = (air_quality or {}).get("status", "unavailable")
        if aq_status != "not_applicable_future_date":
            if aq_status == "unavailable":
                confidence.penalize(6, "Air quality unavailable")
            elif aq_status == "no_data":
                confidence.penalize(3, "Air quality has no data for the selected time")

        rain_status = (rainfall or {}).get("status", "unavailable")
        if rain_status == "unavailable":
            confidence.penalize(5, "Precipitation history unavailable")
        elif rain_status == "no_data":
            confidence.penalize(3, "Precipitation history has no data")
        elif rainfall.get("fallback_mode") == "zeroed_totals":
            confidence.penalize(8, "Precipitation totals fell back to unknown values")
        else:
            anchor = parse_iso(rainfall.get("anchor_time"))
            if anchor is None:
                confidence.penalize(3, "Precipitation anchor time missing")
            else:
                age = hours_between(now, anchor)
                confidence.penalize(
                    graded(age, [(36, 7), (18, 4), (10, 2)], op=operator.gt),
                    f"Precipitation anchor is {round(age)}h old",
                )

        if not fire_risk or fire_risk.get("status") != "ok":
            confidence.penalize(3, "Fire risk unavailable")

    @staticmethod
    def _sources_used(weather, avalanche, avalanche_relevant, alerts, alerts_relevant,
                      air_quality, rainfall, heat_risk, fire_risk) -> list:
        sources = []
        if not is_weather_unavailable(weather):
            details = (weather or {}).get("source_details") or {}
            primary = details.get("primary")
            sources.append("Open-Meteo hourly forecast" if primary == "Open-Meteo" else "NOAA/NWS hourly forecast")
            if details.get("blended"):
                sources.append("Open-Meteo forecast supplement")
        if avalanche is not None and avalanche_relevant:
            if avalanche.coverage_status == "reported":
                sources.append(f"{avalanche.center} avalanche forecast")
            else:
                sources.append("Avalanche center coverage check")
        if alerts_relevant and (alerts or {}).get("status") in ("ok", "none", "none_for_selected_start"):
            sources.append("NOAA/NWS active alerts")
        aq_status = (air_quality or {}).get("status")
        if aq_status in ("ok", "no_data"):
            sources.append("Open-Meteo air quality")
        if (rainfall or {}).get("status") in ("ok", "partial", "no_data") and rainfall.get("fallback_mode") != "zeroed_totals":
            sources.append("Open-Meteo precipitation history")
        if (heat_risk or {}).get("status") == "ok":
            sources.append("Derived heat risk")
        if (fire_risk or {}).get("status") == "ok":
            sources.append("Derived fire risk")
        return sources


def calculate_safety_score(**kwargs) -> SafetyScoreResult:
    """Convenience wrapper around SafetyScoreEngine().score()."""
    return SafetyScoreEngine().score(**kwargs)
