"""Configuration constants for the Trail Safety Score service."""

# HTTP client
REQUEST_TIMEOUT_SECONDS = 12.0
USER_AGENT = "trailsafe/0.1 (trail safety score; contact: ops@trailsafe.local)"

# Upstream endpoints
NWS_POINTS_URL = "https://api.weather.gov/points/{lat},{lon}"
NWS_ALERTS_URL = "https://api.weather.gov/alerts/active"
OPEN_METEO_BASE_URL = "https://api.open-meteo.com/v1/forecast"
OPEN_METEO_AIR_QUALITY_URL = "https://air-quality-api.open-meteo.com/v1/air-quality"
AVALANCHE_MAP_LAYER_URL = "https://api.avalanche.org/v2/public/products/map-layer"
AVALANCHE_PRODUCT_URL = "https://api.avalanche.org/v2/public/product"
NOHRSC_IDENTIFY_URL = (
    "https://mapservices.weather.noaa.gov/raster/rest/services/snow/"
    "NOHRSC_Snow_Analysis/MapServer/identify"
)
SOLAR_URL = "https://api.sunrisesunset.io/json"
AWDB_STATIONS_URL = "https://wcc.sc.egov.usda.gov/awdbRestApi/services/v1/stations"
AWDB_DATA_URL = "https://wcc.sc.egov.usda.gov/awdbRestApi/services/v1/data"

# Hourly parameters for the Open-Meteo forecast fallback
WEATHER_PARAMS = [
    "temperature_2m",
    "dew_point_2m",
    "relative_humidity_2m",
    "precipitation_probability",
    "cloud_cover",
    "surface_pressure",
    "weather_code",
    "wind_speed_10m",
    "wind_gusts_10m",
    "wind_direction_10m",
    "is_day",
]
RAINFALL_PARAMS = ["precipitation", "rain", "snowfall"]
AIR_QUALITY_PARAMS = ["us_aqi", "pm2_5", "pm10", "ozone"]

# Map layer cache
MAP_LAYER_TTL_SECONDS = 10 * 60

# SNOTEL stations
SNOTEL_STATION_TTL_SECONDS = 12 * 60 * 60
SNOTEL_NETWORKS = ("SNTL", "SNTLT", "MSNT")
SNOTEL_MAX_STATION_KM = 140.0
SNOTEL_NEAR_OBJECTIVE_KM = 80.0
SNOTEL_LOOKBACK_DAYS = 7

# Zone resolution
EARTH_RADIUS_KM = 6371.0
ZONE_FALLBACK_CAP_KM = 40.0
UTAH_REGION_CAP_KM = 90.0
UTAH_REGION_BOUNDS = {
    "north": 42.3,
    "south": 36.8,
    "east": -108.8,
    "west": -114.2,
}
UTAH_CENTER_ID = "UAC"
CAIC_CENTER_ID = "CAIC"

# Request defaults
DEFAULT_TRAVEL_WINDOW_HOURS = 12
MIN_TRAVEL_WINDOW_HOURS = 1
MAX_TRAVEL_WINDOW_HOURS = 24

# Unit conversions
METERS_TO_FEET = 3.28084
MM_TO_INCHES = 0.0393701
CM_TO_INCHES = 0.393701
METERS_TO_INCHES = 39.3701

# Avalanche danger
DANGER_LEVEL_LABELS = ["No Rating", "Low", "Moderate", "Considerable", "High", "Extreme"]
BULLETIN_STALE_HOURS = 72
BULLETIN_SOFT_STALE_HOURS = 48

AVALANCHE_UNKNOWN_MESSAGE = (
    "No official avalanche center forecast covers this objective. Avalanche terrain can "
    "still be dangerous. Treat conditions as unknown and use conservative terrain choices."
)
AVALANCHE_OFF_SEASON_MESSAGE = (
    "Local avalanche center is not currently issuing forecasts for this zone (likely "
    "off-season). This does not imply zero risk; assess snow and terrain conditions directly."
)
AVALANCHE_UNAVAILABLE_MESSAGE = (
    "Avalanche center data could not be retrieved right now. Avalanche terrain can still "
    "be dangerous. Treat risk as unknown and use conservative terrain choices."
)
UNKNOWN_BULLETIN_CENTERS = {
    "temporarily_unavailable": "Avalanche Data Unavailable",
    "no_active_forecast": "Avalanche Forecast Off-Season",
    "no_center_coverage": "No Avalanche Center Coverage",
}

# Detail candidate scoring
DETAIL_SCORE_PROBLEMS_BASE = 600
DETAIL_SCORE_PER_PROBLEM = 40
DETAIL_SCORE_PROBLEMS_MAX = 240
DETAIL_SCORE_BOTTOM_LINE_MAX = 320
DETAIL_SCORE_DANGER = 180
DETAIL_SCORE_CENTER_MATCH = 120
DETAIL_SCORE_ZONE_ID_MATCH = 900
DETAIL_SCORE_ZONE_TOKEN_MATCH = 700
DETAIL_SCORE_ZONE_TOKEN_PARTIAL = 350
DETAIL_SCORE_LONG_PENALTY = 250
DETAIL_SCORE_NOT_USEFUL_PENALTY = 500
DETAIL_LONG_TEXT_CHARS = 1500
DETAIL_USEFUL_BOTTOM_LINE_CHARS = 20
DETAILED_BOTTOM_LINE_CHARS = 120
CAIC_MIN_BOTTOM_LINE_CHARS = 180
SCRAPE_MIN_CANDIDATE_CHARS = 40
SCRAPE_KEYWORD_BONUS = 200

# Relevance
HIGH_ELEVATION_FT = 8500
MID_ELEVATION_FT = 6500
HIGH_LATITUDE_DEG = 42
WINTER_MONTHS = {11, 12, 1, 2, 3, 4}
SHOULDER_MONTHS = {5, 6, 10}
SNOW_WINDOW_RELEVANT_IN = 6.0

SNOWPACK_MATERIAL_DEPTH_IN = 6.0
SNOWPACK_MATERIAL_SWE_IN = 1.5
SNOWPACK_MEASURABLE_DEPTH_IN = 2.0
SNOWPACK_MEASURABLE_SWE_IN = 0.5
SNOWPACK_LOW_DEPTH_IN = 1.0
SNOWPACK_LOW_SWE_IN = 0.25

# Safety score group caps
GROUP_CAPS = {
    "avalanche": 55,
    "weather": 42,
    "alerts": 24,
    "airQuality": 20,
    "fire": 18,
}

CONFIDENCE_MIN = 20
CONFIDENCE_MAX = 100

# Alerts are only trusted for this many hours ahead of the selected start
ALERT_LEAD_HOURS = 48
# Air quality forecasts are not published beyond this lead
AIR_QUALITY_LEAD_HOURS = 96
MAX_ALERTS = 6

ALERT_SEVERITY_RANK = {
    "unknown": 0,
    "minor": 1,
    "moderate": 2,
    "severe": 3,
    "extreme": 4,
}

AQI_CATEGORIES = [
    (50, "Good"),
    (100, "Moderate"),
    (150, "Unhealthy for Sensitive Groups"),
    (200, "Unhealthy"),
    (300, "Very Unhealthy"),
]
AQI_TOP_CATEGORY = "Hazardous"

FIRE_LEVEL_LABELS = ["Low", "Guarded", "Elevated", "High", "Extreme"]
HEAT_LEVEL_LABELS = ["Low", "Caution", "Elevated", "High", "Extreme"]

VISIBILITY_LEVELS = [
    (80, "Extreme"),
    (60, "High"),
    (40, "Moderate"),
    (20, "Low"),
]

WEATHER_UNAVAILABLE_DESCRIPTION = "Weather data unavailable"
STABLE_EXPLANATION = "Conditions appear stable for the selected plan window."
TREND_MIN_POINTS = 6

# Open-Meteo weather codes
WEATHER_CODE_LABELS = {
    0: "Clear",
    1: "Mainly Clear",
    2: "Partly Cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Depositing Rime Fog",
    51: "Light Drizzle",
    53: "Drizzle",
    55: "Heavy Drizzle",
    56: "Light Freezing Drizzle",
    57: "Freezing Drizzle",
    61: "Light Rain",
    63: "Rain",
    65: "Heavy Rain",
    66: "Light Freezing Rain",
    67: "Freezing Rain",
    71: "Light Snow",
    73: "Snow",
    75: "Heavy Snow",
    77: "Snow Grains",
    80: "Light Rain Showers",
    81: "Rain Showers",
    82: "Heavy Rain Showers",
    85: "Snow Showers",
    86: "Heavy Snow Showers",
    95: "Thunderstorm",
    96: "Thunderstorm With Hail",
    99: "Severe Thunderstorm With Hail",
}

CARDINAL_DIRECTIONS = [
    "N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
    "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW",
]
