"""Avalanche bulletin assembly: map-layer summary, detail race and page scrape."""

import json
import logging
import re
from datetime import datetime
from typing import Optional
from urllib.parse import quote, urlparse

import httpx
from bs4 import BeautifulSoup

import config
from .fetch import best_of, fetch_json, fetch_text, settle_all
from .geo import MapLayerCache, MapLayerUnavailable, resolve_zone
from .models import AvalancheBulletin, BulletinDetail, DetailCandidate, ZoneMatch
from .timeutil import hours_between, parse_iso

logger = logging.getLogger(__name__)

NO_FORECAST_RE = re.compile(
    r"no (current )?avalanche forecast|outside (the )?forecast season|not issuing forecasts"
    r"|forecast season has ended|off[- ]?season",
    re.IGNORECASE,
)
RATED_WORD_RE = re.compile(r"\b(low|moderate|considerable|high|extreme)\b", re.IGNORECASE)
HAZARD_KEYWORD_RE = re.compile(r"avalanche|danger|snow|terrain|slab|trigger|wind", re.IGNORECASE)

SCRAPE_BOTTOM_LINE_RE = re.compile(r'"(bottom_line|bottom_line_summary|overall_summary)"\s*:\s*"((?:[^"\\]|\\.)+)"')
SCRAPE_SUMMARY_RE = re.compile(r'"summary"\s*:\s*"((?:[^"\\]|\\.){100,})"')
SCRAPE_PROBLEM_RE = re.compile(r'"avalanche_problem_id"\s*:\s*\d+\s*,\s*"name"\s*:\s*"([^"]+)"')
SCRAPE_DANGER_RE = {
    "above": re.compile(r'"danger_upper"\s*:\s*(\d)'),
    "at": re.compile(r'"danger_middle"\s*:\s*(\d)'),
    "below": re.compile(r'"danger_lower"\s*:\s*(\d)'),
}
SUMMARY_CSS_SELECTOR = '[class*="field--name-field-avalanche-summary"], [class*="field-bottom-line"]'
NEXT_DATA_KEYS = ("bottom_line", "bottomLine", "summary", "forecastSummary", "discussion")
UTAH_FORECAST_PATH_RE = re.compile(r"^/forecast/([^/]+)/?$")

LIKELIHOOD_WORDS = {1: "unlikely", 2: "possible", 3: "likely", 4: "very likely", 5: "certain"}
OFFICIAL_SUMMARY_PREFIX = "OFFICIAL SUMMARY: "


def clean_forecast_text(value) -> str:
    """Strip markup and entities from forecast prose and collapse whitespace."""
    if not value:
        return ""
    text = str(value).replace("\\n", " ").replace("\\r", " ")
    if "<" in text or "&" in text:
        text = BeautifulSoup(text, "html.parser").get_text(" ")
    return re.sub(r"\s+", " ", text).strip()


def _unescape_json_string(raw: str) -> str:
    try:
        return json.loads(f'"{raw}"')
    except ValueError:
        return raw


def zone_token(value) -> str:
    return re.sub(r"[^a-z0-9]", "", str(value or "").lower())


def normalize_external_link(link: Optional[str]) -> Optional[str]:
    if not link:
        return None
    url = str(link).strip()
    if url.startswith("http://"):
        url = "https://" + url[len("http://"):]
    url = url.replace("://www.nwac.us", "://nwac.us")
    url = url.replace("://mountwashingtonavalanchecenter.org", "://www.mountwashingtonavalanchecenter.org")
    if "avalanche.state.co.us" in url and url.rstrip("/").endswith("/home"):
        url = url.rstrip("/")[: -len("/home")] + "/"
    return url


def slug_from_link(link: Optional[str]) -> Optional[str]:
    if not link:
        return None
    if "#/" in link:
        slug = link.split("#/", 1)[1].strip("/")
        return slug or None
    path = urlparse(link).path.rstrip("/")
    slug = path.rsplit("/", 1)[-1] if path else ""
    return slug or None


def balanced_chunks(text: str) -> list:
    """
    Return every top-level balanced {...} or [...] chunk in text.

    Brackets inside JSON strings (including escaped quotes) are ignored. A
    mismatched closer abandons the chunk in progress.
    """
    chunks = []
    stack = []
    start = None
    in_string = False
    escaped = False
    closers = {"{": "}", "[": "]"}

    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and stack:
            in_string = True
        elif ch in closers:
            if not stack:
                start = i
            stack.append(closers[ch])
        elif ch in ("}", "]") and stack:
            if ch != stack[-1]:
                stack, start = [], None
                continue
            stack.pop()
            if not stack and start is not None:
                chunks.append(text[start:i + 1])
                start = None
    return chunks


def parse_json_payloads(text: str) -> list:
    """Best-effort extraction of JSON documents from a possibly polluted body."""
    if not text:
        return []
    stripped = text.strip()
    slices = [stripped]
    warning = re.search(r"<br|<b>warning", stripped, re.IGNORECASE)
    if warning:
        slices.append(stripped[: warning.start()].strip())
    first = min((i for i in (stripped.find("{"), stripped.find("[")) if i >= 0), default=-1)
    if first > 0:
        slices.append(stripped[first:])
    slices.extend(balanced_chunks(stripped))

    payloads = []
    seen = set()
    for chunk in slices:
        if not chunk or chunk in seen:
            continue
        seen.add(chunk)
        try:
            parsed = json.loads(chunk)
        except ValueError:
            continue
        if isinstance(parsed, (dict, list)):
            payloads.append(parsed)
    return payloads


def normalize_likelihood(value) -> str:
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        return LIKELIHOOD_WORDS.get(int(value), str(value))
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return LIKELIHOOD_WORDS.get(int(text), text)
        return text
    if isinstance(value, list):
        parts = []
        for item in value:
            part = normalize_likelihood(item)
            if part and part not in parts:
                parts.append(part)
        return " to ".join(parts)
    if isinstance(value, dict):
        for key in ("label", "name", "text", "display", "value"):
            if value.get(key) not in (None, ""):
                return normalize_likelihood(value[key])
        low = value.get("min", value.get("low"))
        high = value.get("max", value.get("high"))
        return normalize_likelihood([v for v in (low, high) if v is not None])
    return ""


def normalize_location(value) -> list:
    out = []

    def add(item):
        item = str(item).strip()
        if item and item not in out:
            out.append(item)

    def walk(node):
        if node is None or isinstance(node, bool):
            return
        if isinstance(node, list):
            for item in node:
                walk(item)
        elif isinstance(node, str):
            for part in node.split(","):
                add(part)
        elif isinstance(node, dict):
            for key, nested in node.items():
                if isinstance(nested, (list, dict, str)):
                    walk(nested)
                elif nested:
                    add(key)
        else:
            add(node)

    walk(value)
    return out


def _first(record: dict, keys):
    for key in keys:
        value = record.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def normalize_problems(record: dict) -> list:
    raw = _first(record, ("forecast_avalanche_problems", "avalanche_problems", "problems"))
    if not isinstance(raw, list):
        return []
    problems = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            continue
        name = _first(item, ("name", "problem", "problem_name", "problem_type"))
        if isinstance(name, dict):
            name = name.get("name") or name.get("label")
        if not name:
            continue
        problem_id = item.get("id")
        if problem_id is None:
            problem_id = item.get("problem_id", item.get("avalanche_problem_id", index + 1))
        problems.append({
            "id": problem_id,
            "name": clean_forecast_text(name),
            "likelihood": normalize_likelihood(
                _first(item, ("likelihood", "trigger_likelihood", "probability", "chance"))
            ),
            "location": normalize_location(
                _first(item, ("location", "aspect_elevation", "terrain", "aspectElevation"))
            ),
            "discussion": clean_forecast_text(item.get("discussion")),
        })
    return problems


def extract_bottom_line(record: dict) -> str:
    return clean_forecast_text(
        _first(record, ("bottom_line", "bottom_line_summary", "bottom_line_summary_text", "overall_summary", "summary"))
    )


def has_danger_data(record: dict) -> bool:
    danger = record.get("danger")
    if isinstance(danger, list) and danger:
        return True
    return any(record.get(key) not in (None, "") for key in ("danger_low", "danger_mid", "danger_high", "danger_level"))


def infer_expires(record: dict) -> Optional[str]:
    value = _first(record, ("end_date", "expires", "expire_time", "expiration_time", "valid_until", "valid_to"))
    if value:
        return str(value)
    danger = record.get("danger")
    if isinstance(danger, list) and danger:
        current = next(
            (d for d in danger if isinstance(d, dict) and d.get("valid_day") == "current"),
            danger[0],
        )
        if isinstance(current, dict):
            value = _first(current, ("end_time", "expires", "valid_until", "valid_to", "valid_end"))
            if value:
                return str(value)
    return None


def _unwrap(item) -> Optional[dict]:
    if not isinstance(item, dict):
        return None
    props = item.get("properties")
    if isinstance(props, dict):
        record = dict(props)
        if "id" not in record and item.get("id") is not None:
            record["id"] = item["id"]
        return record
    return item


def collect_candidate_records(payload) -> list:
    """Pull every plausible product record out of one parsed payload."""
    raw = []
    if isinstance(payload, list):
        raw.extend(payload)
    elif isinstance(payload, dict):
        raw.append(payload)
        for key in ("features", "products", "data", "product", "properties", "payload"):
            nested = payload.get(key)
            if isinstance(nested, list):
                raw.extend(nested)
            elif isinstance(nested, dict):
                raw.append(nested)

    records = []
    seen = set()
    for item in raw:
        record = _unwrap(item)
        if not record:
            continue
        signature = "|".join(str(x) for x in (
            record.get("id"),
            record.get("zone_id"),
            record.get("name"),
            record.get("published_time"),
            len(normalize_problems(record)),
        ))
        if signature in seen:
            continue
        seen.add(signature)
        records.append(record)
    return records


def _record_zone_fields(record: dict):
    ids = set()
    names = []
    for key in ("zone_id", "forecast_zone_id", "id"):
        if record.get(key) not in (None, ""):
            ids.add(str(record[key]))
    for key in ("zone_name", "name", "zone_slug", "slug"):
        if record.get(key):
            names.append(str(record[key]))
    zones = record.get("forecast_zone")
    if isinstance(zones, dict):
        zones = [zones]
    if isinstance(zones, list):
        for zone in zones:
            if not isinstance(zone, dict):
                continue
            for key in ("id", "zone_id"):
                if zone.get(key) not in (None, ""):
                    ids.add(str(zone[key]))
            if zone.get("name"):
                names.append(str(zone["name"]))
    return ids, [zone_token(n) for n in names if zone_token(n)]


def _record_center_id(record: dict) -> str:
    center = record.get("center_id")
    if not center and isinstance(record.get("avalanche_center"), dict):
        center = record["avalanche_center"].get("id")
    return str(center or "").upper()


def score_candidate(record: dict, center_id: Optional[str] = None, zone_hint: Optional[dict] = None) -> DetailCandidate:
    """
    Score one detail record against the zone we are looking for.

    Problems, a real bottom line and danger ratings all add weight; an exact
    zone id dominates everything else. Records with none of the useful parts
    are classified unrecognized and pushed well below zero.
    """
    zone_hint = zone_hint or {}
    problems = normalize_problems(record)
    bottom_line = extract_bottom_line(record)
    danger = has_danger_data(record)

    score = 0
    if problems:
        score += config.DETAIL_SCORE_PROBLEMS_BASE + min(
            config.DETAIL_SCORE_PROBLEMS_MAX, config.DETAIL_SCORE_PER_PROBLEM * len(problems)
        )
    score += min(config.DETAIL_SCORE_BOTTOM_LINE_MAX, len(bottom_line))
    if danger:
        score += config.DETAIL_SCORE_DANGER
    if center_id and _record_center_id(record) == str(center_id).upper():
        score += config.DETAIL_SCORE_CENTER_MATCH

    ids, tokens = _record_zone_fields(record)
    hint_id = zone_hint.get("id")
    hint_tokens = [t for t in zone_hint.get("tokens", []) if t]
    if hint_id is not None and str(hint_id) in ids:
        score += config.DETAIL_SCORE_ZONE_ID_MATCH
    elif any(t == h for t in tokens for h in hint_tokens):
        score += config.DETAIL_SCORE_ZONE_TOKEN_MATCH
    elif any(t in h or h in t for t in tokens for h in hint_tokens):
        score += config.DETAIL_SCORE_ZONE_TOKEN_PARTIAL

    if len(bottom_line) > config.DETAIL_LONG_TEXT_CHARS:
        score -= config.DETAIL_SCORE_LONG_PENALTY

    useful = len(bottom_line) > config.DETAIL_USEFUL_BOTTOM_LINE_CHARS or bool(problems) or danger
    if not useful:
        score -= config.DETAIL_SCORE_NOT_USEFUL_PENALTY
        shape = "unrecognized"
    elif problems and len(bottom_line) > config.DETAIL_USEFUL_BOTTOM_LINE_CHARS:
        shape = "known"
    else:
        shape = "partial"

    return DetailCandidate(
        shape=shape,
        score=score,
        payload=record,
        bottom_line=bottom_line,
        problems=problems,
        has_danger=danger,
    )


def pick_best_candidate(candidates) -> Optional[DetailCandidate]:
    return best_of(candidates, key=lambda c: c.score, accept=lambda c: c.useful)


def _level_entry(level) -> Optional[dict]:
    try:
        level = int(level)
    except (TypeError, ValueError):
        return None
    level = max(0, min(5, level))
    return {"level": level, "label": config.DANGER_LEVEL_LABELS[level]}


def _elevations_from_bands(above, at, below) -> Optional[dict]:
    bands = {"above": _level_entry(above), "at": _level_entry(at), "below": _level_entry(below)}
    if all(v is None for v in bands.values()):
        return None
    return bands


def elevations_from_record(record: dict) -> Optional[dict]:
    danger = record.get("danger")
    if isinstance(danger, list) and danger:
        current = next(
            (d for d in danger if isinstance(d, dict) and d.get("valid_day") == "current"),
            danger[0],
        )
        if isinstance(current, dict):
            bands = _elevations_from_bands(current.get("upper"), current.get("middle"), current.get("lower"))
            if bands:
                return bands
    return _elevations_from_bands(record.get("danger_high"), record.get("danger_mid"), record.get("danger_low"))


def detail_from_candidate(candidate: DetailCandidate) -> BulletinDetail:
    record = candidate.payload
    bottom_line = candidate.bottom_line
    if len(bottom_line) <= config.DETAIL_USEFUL_BOTTOM_LINE_CHARS:
        bottom_line = ""
    published = record.get("published_time") or record.get("updated_at")
    return BulletinDetail(
        bottom_line=bottom_line,
        problems=candidate.problems,
        elevations=elevations_from_record(record),
        published_time=str(published) if published else None,
        expires_time=infer_expires(record),
        source="avalanche_org_product",
    )


def utah_json_url(link: Optional[str]) -> Optional[str]:
    if not link:
        return None
    parsed = urlparse(link)
    host = (parsed.hostname or "").lower()
    if host not in ("utahavalanchecenter.org", "www.utahavalanchecenter.org"):
        return None
    match = UTAH_FORECAST_PATH_RE.match(parsed.path or "")
    if not match:
        return None
    return f"https://utahavalanchecenter.org/forecast/{match.group(1)}/json"


def parse_utah_json(payload) -> Optional[BulletinDetail]:
    """Read the UAC advisory JSON shape: advisories[0].advisory."""
    if not isinstance(payload, dict):
        return None
    advisories = payload.get("advisories")
    if not isinstance(advisories, list) or not advisories:
        return None
    advisory = advisories[0].get("advisory") if isinstance(advisories[0], dict) else None
    if not isinstance(advisory, dict):
        return None

    bottom_line = clean_forecast_text(
        _first(advisory, ("bottom_line", "current_conditions", "mountain_weather"))
    )
    problems = []
    for n in range(1, 4):
        name = clean_forecast_text(advisory.get(f"avalanche_problem_{n}"))
        if not name:
            continue
        problems.append({
            "id": n,
            "name": name,
            "likelihood": "",
            "location": [],
            "discussion": clean_forecast_text(advisory.get(f"avalanche_problem_{n}_description")),
        })

    published = None
    stamp = advisory.get("date_issued_timestamp")
    if stamp not in (None, ""):
        issued = parse_iso(float(stamp)) if str(stamp).replace(".", "", 1).isdigit() else None
        if issued is not None:
            published = issued.isoformat()

    if not bottom_line and not problems:
        return None
    return BulletinDetail(
        bottom_line=bottom_line,
        problems=problems,
        published_time=published,
        source="uac_json",
    )


def pick_best_bottom_line(candidates) -> str:
    best = ""
    best_score = None
    for raw in candidates:
        text = clean_forecast_text(raw)
        if len(text) < config.SCRAPE_MIN_CANDIDATE_CHARS:
            continue
        score = len(text)
        if HAZARD_KEYWORD_RE.search(text):
            score += config.SCRAPE_KEYWORD_BONUS
        if len(text) > config.DETAIL_LONG_TEXT_CHARS:
            score -= config.DETAIL_SCORE_LONG_PENALTY
        if best_score is None or score > best_score:
            best, best_score = text, score
    return best


def _walk_next_data(node, found: list):
    if isinstance(node, dict):
        for key, value in node.items():
            if key in NEXT_DATA_KEYS and isinstance(value, str) and len(value) >= 80:
                found.append(value)
            else:
                _walk_next_data(value, found)
    elif isinstance(node, list):
        for item in node:
            _walk_next_data(item, found)


def scrape_center_page(html: str, center_id: Optional[str] = None) -> BulletinDetail:
    """Ordered fallbacks for pulling a bottom line out of a center's HTML page."""
    candidates = [_unescape_json_string(m.group(2)) for m in SCRAPE_BOTTOM_LINE_RE.finditer(html)]

    soup = BeautifulSoup(html, "html.parser")
    candidates.extend(node.get_text(" ") for node in soup.select(SUMMARY_CSS_SELECTOR))
    candidates.extend(_unescape_json_string(m.group(1)) for m in SCRAPE_SUMMARY_RE.finditer(html))

    if str(center_id or "").upper() == config.CAIC_CENTER_ID:
        script = soup.find("script", id="__NEXT_DATA__")
        if script is not None and script.string:
            try:
                found = []
                _walk_next_data(json.loads(script.string), found)
                candidates.extend(found)
            except ValueError:
                logger.debug("CAIC __NEXT_DATA__ script is not valid JSON")

    problems = []
    for index, match in enumerate(SCRAPE_PROBLEM_RE.finditer(html)):
        name = clean_forecast_text(match.group(1))
        if name and name not in [p["name"] for p in problems]:
            problems.append({"id": index + 1, "name": name, "likelihood": "", "location": [], "discussion": ""})

    bands = {}
    for band, pattern in SCRAPE_DANGER_RE.items():
        match = pattern.search(html)
        bands[band] = int(match.group(1)) if match else None

    return BulletinDetail(
        bottom_line=pick_best_bottom_line(candidates),
        problems=problems,
        elevations=_elevations_from_bands(bands["above"], bands["at"], bands["below"]),
        source="center_page",
    )


def unknown_bulletin(status: str) -> AvalancheBulletin:
    bottom_line = {
        "temporarily_unavailable": config.AVALANCHE_UNAVAILABLE_MESSAGE,
        "no_active_forecast": config.AVALANCHE_OFF_SEASON_MESSAGE,
    }.get(status, config.AVALANCHE_UNKNOWN_MESSAGE)
    return AvalancheBulletin(
        center=config.UNKNOWN_BULLETIN_CENTERS.get(status, "No Avalanche Center Coverage"),
        risk="Unknown",
        danger_level=0,
        danger_unknown=True,
        coverage_status=status,
        bottom_line=bottom_line,
    )


def _int_level(value, default: int = 0) -> int:
    try:
        return max(0, min(5, int(value)))
    except (TypeError, ValueError):
        return default


def bulletin_from_zone(match: ZoneMatch) -> AvalancheBulletin:
    """Base bulletin straight from the map-layer feature properties."""
    feature = match.feature or {}
    props = feature.get("properties") or {}

    risk_text = str(props.get("danger") or "").strip()
    travel_advice = clean_forecast_text(props.get("travel_advice"))
    level = _int_level(props.get("danger_level"))

    no_forecast_language = bool(NO_FORECAST_RE.search(f"{risk_text} {travel_advice}"))
    has_issued_window = bool(props.get("start_date") or props.get("end_date"))
    no_rating = level <= 0 and not RATED_WORD_RE.search(risk_text)
    no_active = bool(props.get("off_season")) or no_forecast_language or (not has_issued_window and no_rating)

    danger_unknown = no_active or no_rating
    coverage = "no_active_forecast" if no_active else "reported"

    link = normalize_external_link(props.get("link") or props.get("center_link"))
    published = props.get("published_time")
    expires = props.get("expires") or props.get("expire_time") or props.get("end_date")

    elevations = _elevations_from_bands(
        props.get("danger_high", level),
        props.get("danger_mid", level),
        props.get("danger_low", level),
    )

    if danger_unknown:
        risk = "Unknown" if no_active else (risk_text.title() or "No Rating")
    else:
        risk = risk_text.title() or config.DANGER_LEVEL_LABELS[level]

    return AvalancheBulletin(
        center=str(props.get("center") or "Avalanche Center"),
        center_id=props.get("center_id"),
        zone=props.get("name"),
        zone_id=str(feature["id"]) if feature.get("id") is not None else None,
        link=link,
        risk=risk,
        danger_level=level,
        danger_unknown=danger_unknown,
        coverage_status=coverage,
        bottom_line=config.AVALANCHE_OFF_SEASON_MESSAGE if no_active else travel_advice,
        elevations=elevations,
        published_time=str(published) if published else None,
        expires_time=str(expires) if expires else None,
        travel_advice=travel_advice,
        match_mode=match.mode,
        distance_km=match.distance_km,
    )


def needs_scrape(detail: BulletinDetail, travel_advice: str, center_id: Optional[str]) -> bool:
    bottom_line = detail.bottom_line or ""
    generic = (
        not bottom_line
        or bottom_line == travel_advice
        or bottom_line.startswith(OFFICIAL_SUMMARY_PREFIX)
    )
    if generic:
        return True
    if not detail.problems and len(bottom_line) < config.DETAILED_BOTTOM_LINE_CHARS:
        return True
    if str(center_id or "").upper() == config.CAIC_CENTER_ID and len(bottom_line) < config.CAIC_MIN_BOTTOM_LINE_CHARS:
        return True
    return False


def merge_detail(base: BulletinDetail, extra: Optional[BulletinDetail]) -> BulletinDetail:
    """Fill gaps in base from extra; a better bottom line wins on ranking."""
    if extra is None:
        return base
    bottom_line = pick_best_bottom_line([base.bottom_line, extra.bottom_line]) or base.bottom_line
    return BulletinDetail(
        bottom_line=bottom_line,
        problems=base.problems or extra.problems,
        elevations=base.elevations or extra.elevations,
        published_time=base.published_time or extra.published_time,
        expires_time=base.expires_time or extra.expires_time,
        source=extra.source if bottom_line != base.bottom_line else base.source,
    )


class AvalancheDetailAggregator:
    """
    Assembles the richest bulletin detail available for one zone.

    Detail endpoints are raced and the best-scoring useful record kept. When the
    result is still thin, a center's machine-readable feed is preferred over
    scraping its page. Nothing here raises; every path degrades to the
    map-layer summary.
    """

    def __init__(self, client: httpx.AsyncClient, product_url: str = config.AVALANCHE_PRODUCT_URL):
        self.client = client
        self.product_url = product_url

    def detail_urls(self, zone_id, center_id, slug) -> list:
        urls = []
        if center_id and zone_id is not None:
            urls.append(f"{self.product_url}?type=forecast&center_id={quote(str(center_id))}&zone_id={quote(str(zone_id))}")
        if zone_id is not None:
            urls.append(f"{self.product_url}/{quote(str(zone_id))}")
        if center_id and slug:
            urls.append(f"{self.product_url}?type=forecast&center_id={quote(str(center_id))}&zone_id={quote(slug, safe='')}")
        return urls

    async def _fetch_candidates(self, url: str, center_id, zone_hint) -> list:
        body = await fetch_text(self.client, url)
        candidates = []
        for payload in parse_json_payloads(body):
            for record in collect_candidate_records(payload):
                candidates.append(score_candidate(record, center_id, zone_hint))
        return candidates

    async def race(self, zone_id, center_id, link, zone_name) -> Optional[DetailCandidate]:
        slug = slug_from_link(link)
        zone_hint = {"id": zone_id, "tokens": [zone_token(zone_name), zone_token(slug)]}
        urls = self.detail_urls(zone_id, center_id, slug)
        if not urls:
            return None
        results = await settle_all(*(self._fetch_candidates(url, center_id, zone_hint) for url in urls))
        for url, result in zip(urls, results):
            if isinstance(result, Exception):
                logger.info("Avalanche detail fetch failed for %s: %s", url, result)
        candidates = [c for result in results if isinstance(result, list) for c in result]
        return pick_best_candidate(candidates)

    async def _center_fallback(self, link: str, center_id) -> Optional[BulletinDetail]:
        json_url = utah_json_url(link)
        if json_url:
            try:
                detail = parse_utah_json(await fetch_json(self.client, json_url))
                if detail is not None:
                    return detail
            except (httpx.HTTPError, ValueError) as exc:
                logger.info("UAC JSON fetch failed for %s: %s", json_url, exc)
        try:
            html = await fetch_text(self.client, link)
        except httpx.HTTPError as exc:
            logger.info("Center page scrape failed for %s: %s", link, exc)
            return None
        return scrape_center_page(html, center_id)

    async def aggregate(self, zone_match: ZoneMatch, center_id: Optional[str]) -> BulletinDetail:
        feature = zone_match.feature or {}
        props = feature.get("properties") or {}
        travel_advice = clean_forecast_text(props.get("travel_advice"))
        link = normalize_external_link(props.get("link") or props.get("center_link"))
        zone_id = feature.get("id")

        detail = BulletinDetail(bottom_line=travel_advice, source="map_layer")
        best = await self.race(zone_id, center_id, link, props.get("name"))
        if best is not None and len(best.payload) > 5:
            detail = detail_from_candidate(best)
            if not detail.bottom_line:
                detail.bottom_line = travel_advice

        if link and needs_scrape(detail, travel_advice, center_id):
            detail = merge_detail(detail, await self._center_fallback(link, center_id))

        if travel_advice and detail.bottom_line == travel_advice:
            detail.bottom_line = OFFICIAL_SUMMARY_PREFIX + travel_advice
        return detail


def apply_detail(bulletin: AvalancheBulletin, detail: BulletinDetail) -> AvalancheBulletin:
    if detail.bottom_line and bulletin.coverage_status == "reported":
        bulletin.bottom_line = detail.bottom_line
    if detail.problems:
        bulletin.problems = detail.problems
    if detail.elevations:
        bulletin.elevations = detail.elevations
    if detail.published_time:
        bulletin.published_time = detail.published_time
    if detail.expires_time:
        bulletin.expires_time = detail.expires_time
    bulletin.detail_source = detail.source
    return bulletin


def apply_overall_danger(bulletin: AvalancheBulletin) -> AvalancheBulletin:
    """Overall level is the worst band, never an average across bands."""
    if bulletin.coverage_status != "reported" or bulletin.danger_unknown:
        return bulletin
    levels = [
        band["level"]
        for band in (bulletin.elevations or {}).values()
        if band and band.get("level", 0) > 0
    ]
    if levels:
        bulletin.danger_level = max(levels)
        bulletin.risk = config.DANGER_LEVEL_LABELS[bulletin.danger_level]
    return bulletin


def apply_staleness(
    bulletin: AvalancheBulletin,
    selected_start: Optional[datetime],
    now: datetime,
) -> AvalancheBulletin:
    """Downgrade old or expired bulletins so they are treated as unknown danger."""
    if bulletin.coverage_status != "reported":
        return bulletin

    expires = parse_iso(bulletin.expires_time)
    if expires is not None and selected_start is not None and expires < selected_start:
        bulletin.coverage_status = "expired_for_selected_start"
        bulletin.danger_unknown = True
        bulletin.stale_warning = "Avalanche bulletin expires before the selected start time."
        return bulletin

    age = hours_between(now, parse_iso(bulletin.published_time))
    if age is None:
        return bulletin
    if age > config.BULLETIN_STALE_HOURS:
        bulletin.danger_unknown = True
        bulletin.stale_warning = (
            f"Avalanche bulletin is {round(age)} hours old; treat danger as unknown until a new forecast is issued."
        )
    elif age > config.BULLETIN_SOFT_STALE_HOURS:
        bulletin.stale_warning = f"Avalanche bulletin is {round(age)} hours old; check for a newer forecast."
    return bulletin


async def assess_avalanche(
    client: httpx.AsyncClient,
    cache: MapLayerCache,
    lat: float,
    lon: float,
    selected_start: Optional[datetime],
    now: datetime,
) -> AvalancheBulletin:
    """Resolve the zone, aggregate detail and apply danger/staleness rules."""
    try:
        features = await cache.features(client)
    except MapLayerUnavailable as exc:
        logger.warning("Avalanche map layer unavailable: %s", exc)
        return unknown_bulletin("temporarily_unavailable")

    try:
        match = resolve_zone(features, lat, lon)
        if match.feature is None:
            return unknown_bulletin("no_center_coverage")

        bulletin = bulletin_from_zone(match)
        if bulletin.coverage_status == "reported":
            aggregator = AvalancheDetailAggregator(client)
            detail = await aggregator.aggregate(match, bulletin.center_id)
            apply_detail(bulletin, detail)
        apply_overall_danger(bulletin)
        return apply_staleness(bulletin, selected_start, now)
    except Exception:
        logger.exception("Avalanche assessment failed for %.4f, %.4f", lat, lon)
        return unknown_bulletin("temporarily_unavailable")
