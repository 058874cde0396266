"""FastAPI surface for the safety report."""

import logging
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.responses import JSONResponse

import config
from .feeds import SnotelStationCache
from .fetch import build_client
from .geo import MapLayerCache
from .service import InvalidRequest, build_safety_report, validate_request
from .weather import ForecastRangeError

logger = logging.getLogger(__name__)


def create_app(
    transport: Optional[httpx.AsyncBaseTransport] = None,
    cache: Optional[MapLayerCache] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        transport: Optional httpx transport used for every upstream call.
        cache: Map-layer cache shared across requests; a fresh one by default.
    """
    app = FastAPI(
        title="Trail Safety Score",
        description="Hazard-feed reconciliation and safety scoring for one point and plan window",
        version="0.1.0",
    )
    app.state.map_layer_cache = cache or MapLayerCache()
    app.state.snotel_stations = SnotelStationCache()
    app.state.transport = transport

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.get("/safety")
    async def safety(
        lat: Optional[str] = None,
        lon: Optional[str] = None,
        date: Optional[str] = None,
        start: Optional[str] = None,
        travel_window_hours: Optional[str] = None,
    ):
        try:
            params = validate_request(lat, lon, date, start, travel_window_hours)
        except InvalidRequest as exc:
            return JSONResponse(status_code=400, content={"error": str(exc)})

        async with build_client(app.state.transport) as client:
            try:
                report = await build_safety_report(
                    client,
                    app.state.map_layer_cache,
                    params["lat"],
                    params["lon"],
                    params["date"],
                    params["start"],
                    params["travel_window_hours"],
                    stations=app.state.snotel_stations,
                )
            except ForecastRangeError as exc:
                return JSONResponse(
                    status_code=400,
                    content={"error": str(exc), "available_range": exc.available},
                )
        return report

    return app


app = create_app()


def run(host: str = "127.0.0.1", port: int = 8000):
    """Serve the API with uvicorn (install the "serve" extra)."""
    import uvicorn

    logger.info("Starting trail safety API on %s:%d (map layer TTL %ss)", host, port, config.MAP_LAYER_TTL_SECONDS)
    uvicorn.run(app, host=host, port=port)
