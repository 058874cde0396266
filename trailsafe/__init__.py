"""Trail Safety Score - hazard feed reconciliation and scoring package."""

from .avalanche import AvalancheDetailAggregator, assess_avalanche
from .geo import MapLayerCache, resolve_zone
from .relevance import evaluate_relevance
from .scoring import SafetyScoreEngine, calculate_safety_score
from .service import InvalidRequest, build_safety_report, validate_request
from .terrain import classify_terrain
from .weather import ForecastRangeError, WeatherReconciler

__all__ = [
    "AvalancheDetailAggregator",
    "assess_avalanche",
    "MapLayerCache",
    "resolve_zone",
    "evaluate_relevance",
    "SafetyScoreEngine",
    "calculate_safety_score",
    "InvalidRequest",
    "build_safety_report",
    "validate_request",
    "classify_terrain",
    "ForecastRangeError",
    "WeatherReconciler",
]
