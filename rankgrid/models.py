"""Core records shared by the grid scan engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class MatchTier(str, Enum):
    CID = "cid"
    PLACE_ID = "place_id"
    EXACT_NAME = "exact_name"
    SIGNIFICANT_WORDS = "significant_words"
    DOMAIN = "domain"


class ScanStatus(str, Enum):
    PENDING = "pending"
    SCANNING = "scanning"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (ScanStatus.COMPLETE, ScanStatus.FAILED, ScanStatus.CANCELLED)


@dataclass(frozen=True)
class BusinessIdentity:
    """Snapshot of the business being tracked, taken when a scan starts."""

    name: str
    domain: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    cid: Optional[str] = None
    place_id: Optional[str] = None
    feature_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not (self.name or "").strip():
            raise ValueError("Business name is required")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "domain": self.domain,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "phone": self.phone,
            "website": self.website,
            "lat": self.lat,
            "lng": self.lng,
            "cid": self.cid,
            "place_id": self.place_id,
            "feature_id": self.feature_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BusinessIdentity":
        cid = data.get("cid")
        return cls(
            name=data.get("name") or "",
            domain=data.get("domain"),
            address=data.get("address"),
            city=data.get("city"),
            state=data.get("state"),
            zip_code=data.get("zip_code"),
            phone=data.get("phone"),
            website=data.get("website"),
            lat=_opt_float(data.get("lat")),
            lng=_opt_float(data.get("lng", data.get("lon"))),
            cid=str(cid) if cid not in (None, "") else None,
            place_id=data.get("place_id") or None,
            feature_id=data.get("feature_id") or None,
        )


@dataclass(frozen=True)
class Keyword:
    text: str
    active: bool = True


@dataclass(frozen=True)
class ScanConfig:
    grid_size: int
    radius_km: float
    keywords: Tuple[Keyword, ...]
    language_code: str = "en"
    device: str = "desktop"
    depth: int = 20

    def active_keywords(self) -> List[str]:
        """Active keyword texts in declaration order, de-duplicated."""
        seen = set()
        out: List[str] = []
        for kw in self.keywords:
            text = (kw.text or "").strip()
            if not kw.active or not text:
                continue
            key = text.lower()
            if key in seen:
                continue
            seen.add(key)
            out.append(text)
        return out

    @property
    def point_count(self) -> int:
        return self.grid_size * self.grid_size

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grid_size": self.grid_size,
            "radius_km": self.radius_km,
            "keywords": [{"text": k.text, "active": k.active} for k in self.keywords],
            "language_code": self.language_code,
            "device": self.device,
            "depth": self.depth,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanConfig":
        keywords = []
        for item in data.get("keywords") or []:
            if isinstance(item, str):
                keywords.append(Keyword(item))
            else:
                keywords.append(Keyword(item.get("text") or "", bool(item.get("active", True))))
        return cls(
            grid_size=int(data["grid_size"]),
            radius_km=float(data["radius_km"]),
            keywords=tuple(keywords),
            language_code=data.get("language_code") or "en",
            device=data.get("device") or "desktop",
            depth=int(data.get("depth") or 20),
        )


@dataclass(frozen=True)
class Competitor:
    name: str
    rank: int
    domain: Optional[str] = None
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "rank": self.rank, "domain": self.domain, "url": self.url}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Competitor":
        return cls(
            name=data.get("name") or "",
            rank=int(data.get("rank") or 0),
            domain=data.get("domain"),
            url=data.get("url"),
        )


@dataclass
class PointResult:
    rank: Optional[int] = None
    url: Optional[str] = None
    tier: Optional[MatchTier] = None
    competitors: List[Competitor] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "url": self.url,
            "tier": self.tier.value if self.tier else None,
            "competitors": [c.to_dict() for c in self.competitors],
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PointResult":
        tier = data.get("tier")
        return cls(
            rank=data.get("rank"),
            url=data.get("url"),
            tier=MatchTier(tier) if tier else None,
            competitors=[Competitor.from_dict(c) for c in data.get("competitors") or []],
            error=data.get("error"),
        )


@dataclass
class GridPoint:
    position: int
    lat: float
    lng: float
    distance_km: float
    results: Dict[str, PointResult] = field(default_factory=dict)
    last_keyword: Optional[str] = None

    def _last(self) -> Optional[PointResult]:
        if self.last_keyword is None:
            return None
        return self.results.get(self.last_keyword)

    @property
    def rank(self) -> Optional[int]:
        last = self._last()
        return last.rank if last else None

    @property
    def url(self) -> Optional[str]:
        last = self._last()
        return last.url if last else None

    @property
    def tier(self) -> Optional[MatchTier]:
        last = self._last()
        return last.tier if last else None

    @property
    def competitors(self) -> List[Competitor]:
        last = self._last()
        return list(last.competitors) if last else []

    def apply(self, keyword: str, result: PointResult) -> None:
        self.results[keyword] = result
        self.last_keyword = keyword

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "lat": self.lat,
            "lng": self.lng,
            "distance_km": self.distance_km,
            "results": {k: v.to_dict() for k, v in self.results.items()},
            "last_keyword": self.last_keyword,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GridPoint":
        return cls(
            position=int(data["position"]),
            lat=float(data["lat"]),
            lng=float(data["lng"]),
            distance_km=float(data["distance_km"]),
            results={k: PointResult.from_dict(v) for k, v in (data.get("results") or {}).items()},
            last_keyword=data.get("last_keyword"),
        )


@dataclass(frozen=True)
class RankObservation:
    keyword: str
    position: int
    rank: Optional[int]
    url: Optional[str]
    tier: Optional[MatchTier]
    competitors: Tuple[Competitor, ...] = ()
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keyword": self.keyword,
            "position": self.position,
            "rank": self.rank,
            "url": self.url,
            "tier": self.tier.value if self.tier else None,
            "competitors": [c.to_dict() for c in self.competitors],
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RankObservation":
        tier = data.get("tier")
        return cls(
            keyword=data["keyword"],
            position=int(data["position"]),
            rank=data.get("rank"),
            url=data.get("url"),
            tier=MatchTier(tier) if tier else None,
            competitors=tuple(Competitor.from_dict(c) for c in data.get("competitors") or []),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class HeatmapPoint:
    position: int
    lat: float
    lng: float
    rank: Optional[int]
    intensity: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "lat": self.lat,
            "lng": self.lng,
            "rank": self.rank,
            "intensity": self.intensity,
        }


@dataclass(frozen=True)
class HeatmapData:
    keyword: str
    points: Tuple[HeatmapPoint, ...]
    average_rank: float
    points_ranking: int
    not_ranking: int
    top3_count: int
    visibility_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keyword": self.keyword,
            "points": [p.to_dict() for p in self.points],
            "average_rank": self.average_rank,
            "points_ranking": self.points_ranking,
            "not_ranking": self.not_ranking,
            "top3_count": self.top3_count,
            "visibility_score": self.visibility_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HeatmapData":
        return cls(
            keyword=data["keyword"],
            points=tuple(
                HeatmapPoint(
                    position=int(p["position"]),
                    lat=float(p["lat"]),
                    lng=float(p["lng"]),
                    rank=p.get("rank"),
                    intensity=float(p["intensity"]),
                )
                for p in data.get("points") or []
            ),
            average_rank=float(data["average_rank"]),
            points_ranking=int(data["points_ranking"]),
            not_ranking=int(data["not_ranking"]),
            top3_count=int(data["top3_count"]),
            visibility_score=float(data["visibility_score"]),
        )


def _opt_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)
