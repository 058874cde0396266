#!/usr/bin/env python3
"""
Trail Safety Score - Main Entry Point

Fetches weather, avalanche, alert, air quality, precipitation and snowpack
feeds for one objective and plan window, reconciles them and prints a
safety score with the hazards that drove it.
"""

import argparse
import asyncio
import json
import logging
from datetime import datetime

import config
from trailsafe.fetch import build_client
from trailsafe.geo import MapLayerCache
from trailsafe.service import InvalidRequest, build_safety_report, validate_request
from trailsafe.weather import ForecastRangeError


async def _run(params: dict) -> dict:
    async with build_client() as client:
        return await build_safety_report(
            client,
            MapLayerCache(),
            params["lat"],
            params["lon"],
            params["date"],
            params["start"],
            params["travel_window_hours"],
        )


def main():
    """Main entry point for the trail safety report."""
    args = parse_args()
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    try:
        params = validate_request(args.lat, args.lon, args.date, args.start, args.window)
    except InvalidRequest as exc:
        print(f"ERROR: {exc}")
        return 1

    if not args.json:
        print("=" * 60)
        print("Trail Safety Score")
        print(f"Objective: {params['lat']:.4f}, {params['lon']:.4f}")
        print(f"Plan: {params['date']} start {params['start'] or 'first forecast hour'}, "
              f"{params['travel_window_hours']}h window")
        print(f"Analysis time: {datetime.now().strftime('%Y-%m-%d %H:%M')}")
        print("=" * 60)
        print("\nFetching hazard feeds...")

    try:
        report = asyncio.run(_run(params))
    except ForecastRangeError as exc:
        print(f"ERROR: {exc}")
        return 1

    if args.json:
        print(json.dumps(report, indent=2, default=str))
        return 0

    print_report(report)
    return 0


def print_report(report: dict):
    safety = report.get("safety") or {}
    weather = report.get("weather") or {}
    avalanche = report.get("avalanche") or {}
    terrain = report.get("terrain_condition") or {}

    print("\n" + "=" * 60)
    print(f"SAFETY SCORE: {safety.get('score', 'n/a')}/100  (confidence {safety.get('confidence', 'n/a')}%)")
    print(f"Primary hazard: {safety.get('primary_hazard', 'Unknown')}")
    print("=" * 60)

    print(f"\nWeather ({(weather.get('source_details') or {}).get('primary', 'n/a')}):")
    if weather.get("temp") is not None:
        print(f"  {weather['temp']}°F (feels {weather.get('feels_like')}°F), "
              f"wind {weather.get('wind_speed')} mph gusting {weather.get('wind_gust')} mph")
        print(f"  {weather.get('description')}, {weather.get('precip_chance')}% precip")
    else:
        print(f"  {config.WEATHER_UNAVAILABLE_DESCRIPTION}")

    print(f"\nAvalanche: {avalanche.get('center')} - {avalanche.get('risk')} ({avalanche.get('coverage_status')})")
    if avalanche.get("relevance_reason"):
        print(f"  {avalanche['relevance_reason']}")
    if avalanche.get("stale_warning"):
        print(f"  Warning: {avalanche['stale_warning']}")

    if terrain:
        print(f"\nTrail surface: {terrain.get('label')} ({terrain.get('confidence')} confidence)")

    factors = safety.get("factors") or []
    if factors:
        print("\nFactors:")
        for factor in factors:
            print(f"  -{factor['impact']:>3}  {factor['hazard']}: {factor['message']}")
    else:
        print(f"\n{config.STABLE_EXPLANATION}")

    if safety.get("confidence_reasons"):
        print("\nConfidence reduced by:")
        for reason in safety["confidence_reasons"]:
            print(f"  - {reason}")

    print("\nSources: " + ", ".join(safety.get("sources_used") or []))
    if report.get("partial_data"):
        print(f"\nNOTE: {report.get('api_warning')}")


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Score backcountry travel hazards for one objective and plan window"
    )
    parser.add_argument("--lat", type=str, required=True, help="Objective latitude (decimal degrees)")
    parser.add_argument("--lon", type=str, required=True, help="Objective longitude (decimal degrees)")
    parser.add_argument("--date", type=str, default=None, help="Plan date YYYY-MM-DD (default: today)")
    parser.add_argument("--start", type=str, default=None, help="Start time HH:MM (local to the objective)")
    parser.add_argument(
        "--window",
        type=int,
        default=config.DEFAULT_TRAVEL_WINDOW_HOURS,
        help="Travel window in hours (1-24)",
    )
    parser.add_argument("--json", action="store_true", help="Print the full report as JSON")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args()


if __name__ == "__main__":
    exit(main())
