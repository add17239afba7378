"""Business identity helpers: Google Maps URL parsing and input detection."""
from __future__ import annotations

import re
from typing import Any, Dict, Optional
from urllib.parse import unquote, unquote_plus

from .matching import normalize_domain
from .models import BusinessIdentity

_PLACE_ID_RE = re.compile(r"place_id[=:]([A-Za-z0-9_-]+)")
_DATA_PLACE_ID_RE = re.compile(r"!19s(ChIJ[A-Za-z0-9_-]+)")
_FEATURE_ID_RE = re.compile(r"(0x[0-9a-fA-F]+:0x[0-9a-fA-F]+)")
_BANG_CID_RE = re.compile(r"!1s0x[0-9a-fA-F]+:0x([0-9a-fA-F]+)")
_CID_PARAM_RE = re.compile(r"[?&](?:ludocid|cid)=(\d+)")
_FTID_RE = re.compile(r"ftid=([^&]+)")
_COORD_RE = re.compile(r"@(-?\d+\.?\d*),(-?\d+\.?\d*)")
_PLACE_NAME_RE = re.compile(r"/place/([^/@]+)")

_MAPS_URL_RES = (
    re.compile(r"google\.[a-z.]+/maps", re.I),
    re.compile(r"maps\.google\.", re.I),
    re.compile(r"goo\.gl/maps", re.I),
)
_WEBSITE_RES = (re.compile(r"^https?://", re.I), re.compile(r"^[a-z0-9-]+\.[a-z]{2,}", re.I))
_PHONE_CHARS_RE = re.compile(r"^[+\d()\s.-]+$")

INPUT_MAPS_URL = "maps_url"
INPUT_WEBSITE = "website"
INPUT_PHONE = "phone"
INPUT_NAME = "name"


def _cid_from_hex(hex_part: str) -> Optional[str]:
    try:
        return str(int(hex_part, 16))
    except ValueError:
        return None


def parse_google_maps_url(url: str) -> Dict[str, Any]:
    """Pull identifiers out of a Google Maps share or place URL.

    Returns only the keys that were found: place_id, feature_id, cid, lat,
    lng and name.
    """
    out: Dict[str, Any] = {}
    if not url:
        return out

    m = _PLACE_ID_RE.search(url)
    if m:
        out["place_id"] = m.group(1)

    m = _FEATURE_ID_RE.search(url)
    if m:
        out["feature_id"] = m.group(1)
        cid = _cid_from_hex(m.group(1).split(":")[1])
        if cid:
            out["cid"] = cid

    if "cid" not in out:
        m = _BANG_CID_RE.search(url)
        if m:
            cid = _cid_from_hex(m.group(1))
            if cid:
                out["cid"] = cid

    if "cid" not in out:
        m = _CID_PARAM_RE.search(url)
        if m:
            out["cid"] = m.group(1)

    if "feature_id" not in out:
        m = _FTID_RE.search(url)
        if m:
            out["feature_id"] = unquote(m.group(1))

    m = _COORD_RE.search(url)
    if m:
        out["lat"] = float(m.group(1))
        out["lng"] = float(m.group(2))

    m = _PLACE_NAME_RE.search(url)
    if m:
        out["name"] = unquote_plus(m.group(1))

    if "place_id" not in out:
        m = _DATA_PLACE_ID_RE.search(url)
        if m:
            out["place_id"] = m.group(1)

    return out


def detect_input_type(text: str) -> str:
    value = (text or "").strip()
    if any(rx.search(value) for rx in _MAPS_URL_RES):
        return INPUT_MAPS_URL
    if any(rx.search(value) for rx in _WEBSITE_RES):
        return INPUT_WEBSITE
    digits = re.sub(r"\D", "", value)
    if len(digits) >= 7 and _PHONE_CHARS_RE.match(value):
        return INPUT_PHONE
    return INPUT_NAME


def build_identity(
    name: Optional[str] = None,
    domain: Optional[str] = None,
    cid: Optional[str] = None,
    place_id: Optional[str] = None,
    maps_url: Optional[str] = None,
    **extra: Any,
) -> BusinessIdentity:
    """Merge explicit fields with whatever a Maps URL yields.

    Explicit values win over parsed ones.
    """
    parsed = parse_google_maps_url(maps_url) if maps_url else {}
    website = extra.pop("website", None)
    feature_id = extra.pop("feature_id", None)
    lat = extra.pop("lat", None)
    lng = extra.pop("lng", None)
    return BusinessIdentity(
        name=name or parsed.get("name") or "",
        domain=normalize_domain(domain or website),
        website=website,
        cid=cid or parsed.get("cid"),
        place_id=place_id or parsed.get("place_id"),
        feature_id=feature_id or parsed.get("feature_id"),
        lat=lat if lat is not None else parsed.get("lat"),
        lng=lng if lng is not None else parsed.get("lng"),
        **extra,
    )
