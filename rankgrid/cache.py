"""Per-scan memo of provider responses keyed by keyword and rounded coordinate."""
from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from . import config

CacheKey = Tuple[str, float, float]


def make_result_cache_key(
    keyword: str,
    lat: float,
    lng: float,
    precision: int = config.CACHE_COORD_PRECISION,
) -> CacheKey:
    return (
        " ".join((keyword or "").lower().split()),
        round(float(lat), precision),
        round(float(lng), precision),
    )


class ResultCache:
    """Session-scoped response cache.

    Lives for one orchestration run and is shared by the worker threads of a
    batch, so every access goes through a lock. A hit hands back the payload
    exactly as it was stored.
    """

    def __init__(
        self,
        precision: int = config.CACHE_COORD_PRECISION,
        seed: Optional[Mapping[CacheKey, Dict[str, Any]]] = None,
    ) -> None:
        self.precision = precision
        self._entries: Dict[CacheKey, Dict[str, Any]] = dict(seed or {})
        self._lock = threading.Lock()
        self._key_locks: Dict[CacheKey, threading.Lock] = {}
        self.hits = 0
        self.misses = 0

    def key(self, keyword: str, lat: float, lng: float) -> CacheKey:
        return make_result_cache_key(keyword, lat, lng, self.precision)

    def get(self, keyword: str, lat: float, lng: float) -> Optional[Dict[str, Any]]:
        key = self.key(keyword, lat, lng)
        with self._lock:
            payload = self._entries.get(key)
            if payload is None:
                self.misses += 1
            else:
                self.hits += 1
            return payload

    def put(self, keyword: str, lat: float, lng: float, payload: Dict[str, Any]) -> None:
        key = self.key(keyword, lat, lng)
        with self._lock:
            self._entries[key] = payload

    def get_or_fetch(
        self,
        keyword: str,
        lat: float,
        lng: float,
        fetch: Callable[[], Dict[str, Any]],
    ) -> Tuple[Dict[str, Any], bool]:
        """Return (payload, from_cache), calling fetch at most once per key.

        Concurrent callers for the same key wait on a per-key lock instead of
        issuing a second provider call. A failed fetch stores nothing.
        """
        key = self.key(keyword, lat, lng)
        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())
        with key_lock:
            cached = self.get(keyword, lat, lng)
            if cached is not None:
                return cached, True
            payload = fetch()
            self.put(keyword, lat, lng, payload)
            return payload, False

    def export(self) -> Dict[CacheKey, Dict[str, Any]]:
        with self._lock:
            return dict(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def export_rows(self) -> List[Dict[str, Any]]:
        """Entries as JSON-friendly rows, sorted by key."""
        with self._lock:
            items = sorted(self._entries.items(), key=lambda kv: kv[0])
        return [
            {"keyword": keyword, "lat": lat, "lng": lng, "payload": payload}
            for (keyword, lat, lng), payload in items
        ]

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[Mapping[str, Any]],
        precision: int = config.CACHE_COORD_PRECISION,
    ) -> "ResultCache":
        seed = {
            make_result_cache_key(row["keyword"], row["lat"], row["lng"], precision): row["payload"]
            for row in rows
        }
        return cls(precision=precision, seed=seed)
