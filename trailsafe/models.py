"""Core result types passed between the hazard modules."""

from dataclasses import asdict, dataclass, field
from typing import Optional

import config


@dataclass
class ZoneMatch:
    """Result of resolving a point against the hazard-zone map layer."""

    feature: Optional[dict]
    mode: str  # polygon | nearest | none
    distance_km: Optional[float] = None


@dataclass
class DetailCandidate:
    """One scored avalanche detail record pulled out of an upstream payload."""

    shape: str  # known | partial | unrecognized
    score: int
    payload: dict
    bottom_line: str = ""
    problems: list = field(default_factory=list)
    has_danger: bool = False

    @property
    def useful(self) -> bool:
        return self.shape != "unrecognized"


@dataclass
class BulletinDetail:
    bottom_line: str = ""
    problems: list = field(default_factory=list)
    elevations: Optional[dict] = None
    published_time: Optional[str] = None
    expires_time: Optional[str] = None
    source: str = "map_layer"


@dataclass
class AvalancheBulletin:
    """Avalanche bulletin for one forecast zone and selected date."""

    center: str
    center_id: Optional[str] = None
    zone: Optional[str] = None
    zone_id: Optional[str] = None
    link: Optional[str] = None
    risk: str = "Unknown"
    danger_level: int = 0
    danger_unknown: bool = True
    coverage_status: str = "no_center_coverage"
    bottom_line: str = ""
    problems: list = field(default_factory=list)
    elevations: Optional[dict] = None
    published_time: Optional[str] = None
    expires_time: Optional[str] = None
    relevant: Optional[bool] = None
    relevance_reason: Optional[str] = None
    stale_warning: Optional[str] = None
    detail_source: str = "map_layer"
    travel_advice: str = ""
    match_mode: str = "none"
    distance_km: Optional[float] = None

    @property
    def risk_label(self) -> str:
        if 0 <= self.danger_level < len(config.DANGER_LEVEL_LABELS):
            return config.DANGER_LEVEL_LABELS[self.danger_level]
        return "Unknown"

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("travel_advice", None)
        return data


@dataclass
class HazardFactor:
    hazard: str
    impact: int
    message: str
    source: str
    group: str


@dataclass
class SafetyScoreResult:
    """Composite score plus the trace that explains it."""

    score: int
    confidence: int
    primary_hazard: str
    factors: list
    group_impacts: dict
    explanations: list
    confidence_reasons: list
    sources_used: list
    air_quality_category: str = "Unknown"

    def to_dict(self) -> dict:
        return asdict(self)
