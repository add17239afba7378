"""Project configuration.

Loads scan parameters from scan_config.json when available, falling back to
sensible defaults. Keep provider request shapes centralized here.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

_REPO_ROOT = Path(__file__).resolve().parent.parent


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


# --- Provider endpoints ---

DATAFORSEO_BASE_URL = "https://api.dataforseo.com"
MAPS_SEARCH_PATH = "/v3/serp/google/maps/live/advanced"
PROVIDER_STATUS_OK = 20000

# --- Provider request shape ---

DEFAULT_LANGUAGE_CODE = "en"
DEFAULT_DEVICE = "desktop"
SUPPORTED_DEVICES: Tuple[str, ...] = ("desktop", "mobile")
DEFAULT_DEPTH = 20
COORD_DECIMALS = 7

# Upper bound (km) of each radius band -> map zoom level.
ZOOM_BY_RADIUS_KM: List[Tuple[float, int]] = [
    (0.8, 15),
    (1.6, 14),
    (3.2, 13),
    (8.0, 12),
    (16.0, 11),
    (24.0, 10),
]
ZOOM_FALLBACK = 9

# --- Grid ---

GRID_SIZES: Tuple[int, ...] = (3, 5, 7, 9)
DEFAULT_GRID_SIZE = 5
DEFAULT_RADIUS_KM = 3.0
KM_PER_DEGREE_LAT = 111.0

# --- Orchestration ---

BATCH_SIZE = 5
BATCH_DELAY_SECONDS = 1.0
TOP_COMPETITORS = 5

# --- Matching ---

MATCH_OVERLAP_THRESHOLD = 0.75
MATCH_MIN_SIGNIFICANT_WORDS = 2

STOPWORDS = frozenset(
    {
        "the", "and", "of", "in", "at", "to", "for", "a", "an", "is", "on", "by",
        "llc", "inc", "corp", "co", "ltd", "group", "services", "service",
        "solutions", "consulting", "management", "associates", "enterprise",
        "enterprises", "company", "professional", "professionals", "center",
        "centre", "shop", "store", "studio", "agency", "firm",
    }
)

# --- Cache ---

CACHE_COORD_PRECISION = 5

# --- Cost ---

COST_PER_CHECK = 0.002
SCAN_CREDITS_PER_RUN = 1
DEFAULT_ACCOUNT_ID = "default"

# --- HTTP ---

HTTP_TIMEOUT_SECONDS = 60
HTTP_RETRY_MAX = 3
HTTP_BACKOFF_BASE = 0.5
HTTP_BACKOFF_MAX = 8.0

# --- Storage and outputs ---

DB_PATH = "rankgrid.db"
OUTPUT_DIR = "out"
PROGRESS_WRITE_INTERVAL_SECONDS = 2.0
SCAN_WORKERS = 2

# --- Keyword presets ---

KEYWORD_PRESETS: Dict[str, Dict[str, Any]] = {
    "electrician": {
        "label": "Electrician",
        "keywords": ["electrician", "electrical repair", "emergency electrician", "electrical contractor"],
    },
    "plumber": {
        "label": "Plumber",
        "keywords": ["plumber", "plumbing repair", "emergency plumber", "drain cleaning"],
    },
    "hvac": {
        "label": "HVAC",
        "keywords": ["hvac", "air conditioning repair", "heating repair", "ac installation"],
    },
    "roofing": {
        "label": "Roofing",
        "keywords": ["roofing contractor", "roof repair", "roof replacement", "roofing company"],
    },
    "autobody": {
        "label": "Auto Body",
        "keywords": ["auto body shop", "collision repair", "auto painting", "dent repair"],
    },
    "painter": {
        "label": "Painter",
        "keywords": ["painter", "house painting", "interior painting", "painting contractor"],
    },
}


@dataclass(frozen=True)
class ProviderCredentials:
    login: str
    password: str


def get_provider_credentials() -> ProviderCredentials:
    login = (os.environ.get("DATAFORSEO_LOGIN") or "").strip()
    password = (os.environ.get("DATAFORSEO_PASSWORD") or "").strip()
    if not login or not password:
        raise ConfigError(
            "DATAFORSEO_LOGIN and DATAFORSEO_PASSWORD must be set in the environment."
        )
    return ProviderCredentials(login=login, password=password)


def apply_env_overrides() -> None:
    """Override tunables from RANKGRID_* environment variables."""
    globals_ref = globals()

    threshold = os.environ.get("RANKGRID_MATCH_OVERLAP_THRESHOLD")
    if threshold:
        value = float(threshold)
        if not 0.0 < value <= 1.0:
            raise ConfigError("RANKGRID_MATCH_OVERLAP_THRESHOLD must be in (0, 1]")
        globals_ref["MATCH_OVERLAP_THRESHOLD"] = value

    batch_size = os.environ.get("RANKGRID_BATCH_SIZE")
    if batch_size:
        globals_ref["BATCH_SIZE"] = max(1, int(batch_size))

    batch_delay = os.environ.get("RANKGRID_BATCH_DELAY_SECONDS")
    if batch_delay:
        globals_ref["BATCH_DELAY_SECONDS"] = max(0.0, float(batch_delay))

    db_path = os.environ.get("RANKGRID_DB_PATH")
    if db_path:
        globals_ref["DB_PATH"] = db_path


def load_scan_config(path: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Load a scan definition from a JSON file.

    Returns the normalized dict, or None if the file is not found. Provider
    knobs found in the file (language, device, depth) also update the module
    defaults so later scans pick them up.
    """
    if path is None:
        path = str(_REPO_ROOT / "scan_config.json")

    config_path = Path(path)
    if not config_path.exists():
        return None

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    globals_ref = globals()

    business = data.get("business") or {}
    center = data.get("center") or {}
    if center.get("lat") is None and business.get("lat") is not None:
        center = {"lat": business.get("lat"), "lng": business.get("lng")}

    provider = data.get("provider") or {}
    if provider.get("language_code"):
        globals_ref["DEFAULT_LANGUAGE_CODE"] = str(provider["language_code"])
    if provider.get("device"):
        globals_ref["DEFAULT_DEVICE"] = str(provider["device"])
    if provider.get("depth") is not None:
        globals_ref["DEFAULT_DEPTH"] = int(provider["depth"])

    keywords = data.get("keywords") or []
    preset = data.get("preset")
    if preset:
        keywords = list(keywords) + list(preset_keywords(preset))

    return {
        "business": dict(business),
        "center": {"lat": center.get("lat"), "lng": center.get("lng", center.get("lon"))},
        "grid_size": int(data.get("grid_size", DEFAULT_GRID_SIZE)),
        "radius_km": float(data.get("radius_km", DEFAULT_RADIUS_KM)),
        "keywords": keywords,
    }


def preset_keywords(preset_id: str) -> List[str]:
    preset = KEYWORD_PRESETS.get(preset_id)
    if not preset:
        raise ConfigError(f"Unknown keyword preset: {preset_id}")
    return list(preset["keywords"])
