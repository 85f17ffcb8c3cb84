# runtime settings, read once from the environment
import os
from typing import Optional, Tuple


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_position(name: str) -> Optional[Tuple[float, float]]:
    """Parse "lat,lon" into (lat, lon); None when unset or malformed."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        lat, lon = (float(part) for part in raw.split(","))
    except ValueError:
        return None
    return lat, lon


API_BASE_URL = os.getenv("STOREFRONT_API_URL", "http://localhost:5000/api")
PUSH_URL = os.getenv("STOREFRONT_PUSH_URL", "ws://localhost:5000/ws")
REQUEST_TIMEOUT = _env_float("STOREFRONT_REQUEST_TIMEOUT", 30.0)

GEO_ENABLED = _env_bool("STOREFRONT_GEO_ENABLED", True)
GEO_TIMEOUT = _env_float("STOREFRONT_GEO_TIMEOUT", 10.0)
GEO_MAX_CACHE_AGE = _env_float("STOREFRONT_GEO_MAX_CACHE_AGE", 60.0)
GEO_HIGH_ACCURACY = _env_bool("STOREFRONT_GEO_HIGH_ACCURACY", True)
GEO_FIXED_POSITION = _env_position("STOREFRONT_GEO_FIXED_POSITION")
GEO_IP_LOOKUP_URL = os.getenv("STOREFRONT_GEO_IP_URL", "http://ip-api.com/json/")

GEOCODE_URL = os.getenv(
    "STOREFRONT_GEOCODE_URL", "https://nominatim.openstreetmap.org/reverse"
)
GEOCODE_USER_AGENT = os.getenv("STOREFRONT_GEOCODE_USER_AGENT", "storefront-sync/1.0")
GEOCODE_LANGUAGE = os.getenv("STOREFRONT_GEOCODE_LANG", "en")
GEOCODE_MIN_DELAY = _env_float("STOREFRONT_GEOCODE_MIN_DELAY", 1.0)

LOCATION_SETTLE_DELAY = _env_float("STOREFRONT_LOCATION_SETTLE_DELAY", 1.5)

SESSION_DB_PATH = os.getenv("STOREFRONT_SESSION_DB", "data/session.sqlite")

CATALOG_PAGE_SIZE = 8
TRENDING_PAGE_SIZE = 4
ORDERS_PAGE_SIZE = 10
