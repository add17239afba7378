"""ScanJob aggregate and its lifecycle.

pending -> scanning -> complete | failed | cancelled. A pending job may also
be failed (observer failure signal) or cancelled before it starts. Terminal
jobs accept no further mutation.
"""
from __future__ import annotations

import copy
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import (
    BusinessIdentity,
    GridPoint,
    HeatmapData,
    PointResult,
    RankObservation,
    ScanConfig,
    ScanStatus,
)

_TRANSITIONS = {
    ScanStatus.PENDING: {ScanStatus.SCANNING, ScanStatus.FAILED, ScanStatus.CANCELLED},
    ScanStatus.SCANNING: {ScanStatus.COMPLETE, ScanStatus.FAILED, ScanStatus.CANCELLED},
    ScanStatus.COMPLETE: set(),
    ScanStatus.FAILED: set(),
    ScanStatus.CANCELLED: set(),
}


class InvalidTransitionError(RuntimeError):
    pass


class ScanStoppedError(RuntimeError):
    """A running scan was stopped from outside before it finished."""


class ScanCancelledError(ScanStoppedError):
    pass


class ScanFailedByObserverError(ScanStoppedError):
    pass


class StopToken(threading.Event):
    """Cancellation token checked by the orchestrator between batches.

    `fail(reason)` stops the run like `cancel()` but ends the job as failed.
    """

    def __init__(self) -> None:
        super().__init__()
        self.failure_reason: Optional[str] = None

    def cancel(self) -> None:
        self.set()

    def fail(self, reason: str) -> None:
        self.failure_reason = reason
        self.set()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


@dataclass
class ScanProgress:
    current_keyword_index: int = 0
    total_keywords: int = 0
    current_keyword: Optional[str] = None
    points_completed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_keyword_index": self.current_keyword_index,
            "total_keywords": self.total_keywords,
            "current_keyword": self.current_keyword,
            "points_completed": self.points_completed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanProgress":
        return cls(
            current_keyword_index=int(data.get("current_keyword_index") or 0),
            total_keywords=int(data.get("total_keywords") or 0),
            current_keyword=data.get("current_keyword"),
            points_completed=int(data.get("points_completed") or 0),
        )


@dataclass
class ScanJob:
    business: BusinessIdentity
    config: ScanConfig
    points: List[GridPoint]
    keywords: List[str]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: ScanStatus = ScanStatus.PENDING
    progress: ScanProgress = field(default_factory=ScanProgress)
    total_cost: float = 0.0
    created_at: str = field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None
    error: Optional[str] = None
    observations: List[RankObservation] = field(default_factory=list)
    heatmaps: Dict[str, HeatmapData] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.progress.total_keywords:
            self.progress.total_keywords = len(self.keywords)

    # --- transitions ---

    def _transition(self, target: ScanStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Scan {self.id}: cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def _require_scanning(self) -> None:
        if self.status != ScanStatus.SCANNING:
            raise InvalidTransitionError(
                f"Scan {self.id}: results can only be recorded while scanning (status={self.status.value})"
            )

    def start_scanning(self) -> None:
        self._transition(ScanStatus.SCANNING)

    def complete(self, completed_at: Optional[str] = None) -> None:
        missing = [kw for kw in self.keywords if kw not in self.heatmaps]
        if missing:
            raise InvalidTransitionError(
                f"Scan {self.id}: cannot complete before aggregation of {', '.join(missing)}"
            )
        self._transition(ScanStatus.COMPLETE)
        self.completed_at = completed_at or utc_now_iso()

    def fail(self, reason: str) -> None:
        self._transition(ScanStatus.FAILED)
        self.error = reason
        self.completed_at = utc_now_iso()

    def mark_failed_by_observer(self, reason: str) -> None:
        self.fail(f"observer: {reason}")

    def cancel(self) -> None:
        self._transition(ScanStatus.CANCELLED)
        self.completed_at = utc_now_iso()

    # --- mutation while scanning ---

    def record_observation(self, observation: RankObservation) -> None:
        self._require_scanning()
        point = self.point(observation.position)
        self.observations.append(observation)
        point.apply(
            observation.keyword,
            PointResult(
                rank=observation.rank,
                url=observation.url,
                tier=observation.tier,
                competitors=list(observation.competitors),
                error=observation.error,
            ),
        )

    def record_progress(self, keyword_index: int, keyword: str, points_completed: int) -> None:
        self._require_scanning()
        self.progress.current_keyword_index = keyword_index
        self.progress.current_keyword = keyword
        self.progress.points_completed = points_completed

    def set_heatmap(self, heatmap: HeatmapData) -> None:
        self._require_scanning()
        self.heatmaps[heatmap.keyword] = heatmap

    # --- queries ---

    def point(self, position: int) -> GridPoint:
        idx = position - 1
        if 0 <= idx < len(self.points) and self.points[idx].position == position:
            return self.points[idx]
        for point in self.points:
            if point.position == position:
                return point
        raise KeyError(f"Unknown grid position: {position}")

    def observations_for(self, keyword: str) -> List[RankObservation]:
        return [obs for obs in self.observations if obs.keyword == keyword]

    @property
    def total_checks(self) -> int:
        return len(self.points) * len(self.keywords)

    @property
    def checks_completed(self) -> int:
        done_keywords = self.progress.current_keyword_index
        return min(self.total_checks, done_keywords * len(self.points) + self.progress.points_completed)

    def snapshot(self) -> "ScanJob":
        return copy.deepcopy(self)

    # --- persistence ---

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "business": self.business.to_dict(),
            "config": self.config.to_dict(),
            "keywords": list(self.keywords),
            "points": [p.to_dict() for p in self.points],
            "status": self.status.value,
            "progress": self.progress.to_dict(),
            "total_cost": self.total_cost,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
            "error": self.error,
            "observations": [o.to_dict() for o in self.observations],
            "heatmaps": {k: v.to_dict() for k, v in self.heatmaps.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanJob":
        return cls(
            id=data["id"],
            business=BusinessIdentity.from_dict(data["business"]),
            config=ScanConfig.from_dict(data["config"]),
            keywords=list(data.get("keywords") or []),
            points=[GridPoint.from_dict(p) for p in data.get("points") or []],
            status=ScanStatus(data.get("status") or ScanStatus.PENDING.value),
            progress=ScanProgress.from_dict(data.get("progress") or {}),
            total_cost=float(data.get("total_cost") or 0.0),
            created_at=data.get("created_at") or utc_now_iso(),
            completed_at=data.get("completed_at"),
            error=data.get("error"),
            observations=[RankObservation.from_dict(o) for o in data.get("observations") or []],
            heatmaps={k: HeatmapData.from_dict(v) for k, v in (data.get("heatmaps") or {}).items()},
        )
