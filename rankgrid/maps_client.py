"""Maps search client for the ranking provider, with response validation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from . import config
from .http import HttpClient, ProviderError, RequestMetrics

logger = logging.getLogger(__name__)

MAPS_ITEM_TYPE = "maps_search"
PAID_ITEM_TYPE = "maps_paid_item"
CONTAINER_TYPES = ("local_pack", "maps_pack", "local_results", "maps_local_pack")


class ProviderResponseError(ValueError):
    """A provider payload did not match the expected maps search schema."""


@dataclass(frozen=True)
class MapsItem:
    rank_group: int
    title: str
    domain: Optional[str] = None
    url: Optional[str] = None
    cid: Optional[str] = None
    place_id: Optional[str] = None
    feature_id: Optional[str] = None


class MapsClient:
    def __init__(
        self,
        http_client: HttpClient,
        base_url: str = config.DATAFORSEO_BASE_URL,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.http = http_client
        self.url = base_url.rstrip("/") + config.MAPS_SEARCH_PATH
        self.metrics = metrics

    def search(
        self,
        keyword: str,
        lat: float,
        lng: float,
        zoom: int,
        language_code: str = config.DEFAULT_LANGUAGE_CODE,
        device: str = config.DEFAULT_DEVICE,
        depth: int = config.DEFAULT_DEPTH,
    ) -> Dict[str, Any]:
        """Run one maps search and return the raw provider payload."""
        body = build_maps_search_body(keyword, lat, lng, zoom, language_code, device, depth)
        if self.metrics is not None:
            self.metrics.inc("network_calls")
        response = self.http.post_json(self.url, body)
        check_provider_status(response)
        return response


def build_maps_search_body(
    keyword: str,
    lat: float,
    lng: float,
    zoom: int,
    language_code: str = config.DEFAULT_LANGUAGE_CODE,
    device: str = config.DEFAULT_DEVICE,
    depth: int = config.DEFAULT_DEPTH,
) -> List[Dict[str, Any]]:
    if not keyword or not keyword.strip():
        raise ValueError("Keyword must be provided for maps searches.")
    if device not in config.SUPPORTED_DEVICES:
        raise ValueError(f"Unsupported device: {device}")
    coordinate = "{lat:.{n}f},{lng:.{n}f},{zoom}z".format(
        lat=float(lat), lng=float(lng), zoom=int(zoom), n=config.COORD_DECIMALS
    )
    return [
        {
            "keyword": keyword.strip(),
            "location_coordinate": coordinate,
            "language_code": language_code,
            "device": device,
            "depth": int(depth),
        }
    ]


def check_provider_status(response: Any) -> None:
    if not isinstance(response, dict):
        raise ProviderResponseError("Provider payload must be a JSON object")
    status = response.get("status_code")
    if status is not None and status != config.PROVIDER_STATUS_OK:
        raise ProviderError(f"Provider error {status}: {response.get('status_message')}")
    tasks = response.get("tasks") or []
    if not isinstance(tasks, list):
        raise ProviderResponseError("'tasks' must be a list")
    if tasks and isinstance(tasks[0], dict):
        task_status = tasks[0].get("status_code")
        if task_status is not None and task_status != config.PROVIDER_STATUS_OK:
            raise ProviderError(
                f"Provider task error {task_status}: {tasks[0].get('status_message')}"
            )


# Adapter/mapper for provider response fields

def extract_result(response: Dict[str, Any]) -> Dict[str, Any]:
    """Return the first task result object, or {} when the task has no result."""
    if not isinstance(response, dict):
        raise ProviderResponseError("Provider payload must be a JSON object")
    tasks = response.get("tasks")
    if tasks is None:
        # Already a bare result object (e.g. replayed fixtures).
        return response
    if not isinstance(tasks, list):
        raise ProviderResponseError("'tasks' must be a list")
    if not tasks or tasks[0] is None:
        return {}
    if not isinstance(tasks[0], dict):
        raise ProviderResponseError("Each task must be a JSON object")
    results = tasks[0].get("result") or []
    if not isinstance(results, list):
        raise ProviderResponseError("'result' must be a list")
    if not results or not isinstance(results[0], dict):
        return {}
    return results[0]


def extract_map_items(result: Dict[str, Any]) -> List[Dict[str, Any]]:
    if not result:
        return []

    items = result.get("items") or []
    if not isinstance(items, list):
        raise ProviderResponseError("'items' must be a list")

    if not items:
        for key in ("local_pack", "maps_pack", "local_results", "maps_search"):
            fallback = result.get(key)
            if isinstance(fallback, list):
                return _drop_paid(fallback)
        return []

    map_items = [i for i in items if isinstance(i, dict) and i.get("type") == MAPS_ITEM_TYPE]

    # A title-less maps_search wrapper carries the real entries in "items".
    if map_items and not map_items[0].get("title") and isinstance(map_items[0].get("items"), list):
        map_items = map_items[0]["items"]

    if not map_items:
        for item in items:
            if isinstance(item, dict) and item.get("type") in CONTAINER_TYPES:
                nested = item.get("items") or item.get("results") or []
                if not isinstance(nested, list):
                    raise ProviderResponseError(f"'{item.get('type')}' items must be a list")
                map_items = [n for n in nested if isinstance(n, dict) and n.get("type") != PAID_ITEM_TYPE]
                if map_items:
                    break

    if not map_items:
        for item in items:
            nested = item.get("items") if isinstance(item, dict) else None
            if isinstance(nested, list) and nested:
                nested = [
                    n for n in nested
                    if isinstance(n, dict) and n.get("type") != PAID_ITEM_TYPE and not n.get("is_paid")
                ]
                if nested:
                    map_items = nested
                    break

    if not map_items:
        map_items = [
            i for i in items
            if isinstance(i, dict) and i.get("title") and i.get("rank_group") is not None and not i.get("is_paid")
        ]

    return _drop_paid(map_items)


def _drop_paid(items: List[Any]) -> List[Dict[str, Any]]:
    return [
        i for i in items
        if isinstance(i, dict) and i.get("type") != PAID_ITEM_TYPE and not i.get("is_paid")
    ]


def parse_maps_item(raw: Dict[str, Any]) -> MapsItem:
    rank = raw.get("rank_group", raw.get("rank_absolute"))
    if isinstance(rank, bool) or rank is None:
        raise ProviderResponseError(f"Maps item missing rank: {str(raw)[:200]}")
    try:
        rank_group = int(rank)
    except (TypeError, ValueError) as exc:
        raise ProviderResponseError(f"Maps item rank is not an integer: {rank!r}") from exc
    title = raw.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ProviderResponseError(f"Maps item missing title: {str(raw)[:200]}")
    cid = raw.get("cid")
    return MapsItem(
        rank_group=rank_group,
        title=title.strip(),
        domain=_strip_or_none(raw.get("domain")),
        url=_strip_or_none(raw.get("url")),
        cid=str(cid).strip() if cid not in (None, "") else None,
        place_id=_strip_or_none(raw.get("place_id")),
        feature_id=_strip_or_none(raw.get("feature_id")),
    )


def parse_maps_response(response: Dict[str, Any]) -> List[MapsItem]:
    """Validate a provider payload into ranked MapsItem records."""
    try:
        result = extract_result(response)
        raw_items = extract_map_items(result)
        parsed = [parse_maps_item(raw) for raw in raw_items]
    except (AttributeError, KeyError, TypeError) as exc:
        # Shapes the walkers above do not anticipate are still schema errors.
        raise ProviderResponseError(f"Malformed maps payload: {exc}") from exc
    if not parsed:
        logger.debug("Maps response carried no organic items")
    return parsed


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None
