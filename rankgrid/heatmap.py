"""Fold per-point rank observations into heatmap statistics."""
from __future__ import annotations

from typing import Dict, Iterable, Optional, Sequence

from .models import GridPoint, HeatmapData, HeatmapPoint, RankObservation


def intensity(rank: Optional[int]) -> float:
    if rank is None:
        return 0.0
    if rank <= 3:
        return 1.0
    if rank <= 10:
        return 0.7
    if rank <= 20:
        return 0.4
    return 0.0


def aggregate(
    keyword: str,
    observations: Iterable[RankObservation],
    points: Sequence[GridPoint],
    total_points: Optional[int] = None,
) -> HeatmapData:
    """Recompute a keyword's heatmap from the full observation ledger.

    Only observations for `keyword` are considered. If the ledger holds more
    than one observation for a position the last one wins. Points without an
    observation count as not ranking.
    """
    if total_points is None:
        total_points = len(points)

    latest: Dict[int, RankObservation] = {}
    for obs in observations:
        if obs.keyword == keyword:
            latest[obs.position] = obs

    ranks = [obs.rank for obs in latest.values() if obs.rank is not None]
    points_ranking = len(ranks)
    top3_count = sum(1 for r in ranks if r <= 3)
    average_rank = sum(ranks) / points_ranking if points_ranking else 0.0
    visibility = (top3_count / total_points) * 100 if total_points > 0 else 0.0

    heat_points = []
    for point in sorted(points, key=lambda p: p.position):
        obs = latest.get(point.position)
        rank = obs.rank if obs else None
        heat_points.append(
            HeatmapPoint(
                position=point.position,
                lat=point.lat,
                lng=point.lng,
                rank=rank,
                intensity=intensity(rank),
            )
        )

    return HeatmapData(
        keyword=keyword,
        points=tuple(heat_points),
        average_rank=average_rank,
        points_ranking=points_ranking,
        not_ranking=max(0, total_points - points_ranking),
        top3_count=top3_count,
        visibility_score=max(0.0, min(100.0, visibility)),
    )
