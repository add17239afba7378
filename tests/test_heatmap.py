import random

import pytest

from rankgrid.geo import generate_grid_points
from rankgrid.heatmap import aggregate, intensity
from rankgrid.models import RankObservation


def _obs(position, rank, keyword="plumber"):
    return RankObservation(keyword=keyword, position=position, rank=rank, url=None, tier=None)


@pytest.mark.parametrize(
    "rank,expected",
    [(1, 1.0), (3, 1.0), (4, 0.7), (10, 0.7), (11, 0.4), (20, 0.4), (21, 0.0), (None, 0.0)],
)
def test_intensity_bands(rank, expected):
    assert intensity(rank) == expected


def test_aggregate_statistics():
    points = generate_grid_points(52.0, 21.0, 3, 2.0)
    observations = [_obs(1, 1), _obs(2, 5), _obs(3, 15), _obs(4, None), _obs(5, 2)]
    heatmap = aggregate("plumber", observations, points)

    assert heatmap.points_ranking == 4
    assert heatmap.not_ranking == 5
    assert heatmap.top3_count == 2
    assert heatmap.average_rank == pytest.approx((1 + 5 + 15 + 2) / 4)
    assert heatmap.visibility_score == pytest.approx(2 / 9 * 100)
    assert [p.position for p in heatmap.points] == list(range(1, 10))
    assert heatmap.points[0].intensity == 1.0
    assert heatmap.points[5].rank is None


def test_aggregate_bounds_hold_for_random_ledgers():
    rng = random.Random(7)
    points = generate_grid_points(52.0, 21.0, 5, 3.0)
    for _ in range(50):
        observations = [
            _obs(p.position, rng.choice([None, 1, 2, 3, 8, 14, 20]))
            for p in points
            if rng.random() < 0.8
        ]
        heatmap = aggregate("plumber", observations, points)
        assert 0.0 <= heatmap.visibility_score <= 100.0
        assert heatmap.points_ranking + heatmap.not_ranking == len(points)


def test_aggregate_is_order_independent_and_keyword_scoped():
    points = generate_grid_points(52.0, 21.0, 3, 2.0)
    observations = [_obs(i, i) for i in range(1, 10)] + [_obs(1, 99, keyword="roofer")]
    forward = aggregate("plumber", observations, points)
    backward = aggregate("plumber", list(reversed(observations)), points)
    assert forward == backward
    assert forward.points[0].rank == 1


def test_aggregate_with_no_observations():
    points = generate_grid_points(52.0, 21.0, 3, 2.0)
    heatmap = aggregate("plumber", [], points)
    assert heatmap.average_rank == 0.0
    assert heatmap.points_ranking == 0
    assert heatmap.not_ranking == 9
    assert heatmap.visibility_score == 0.0


def test_zero_total_points():
    heatmap = aggregate("plumber", [], [], total_points=0)
    assert heatmap.visibility_score == 0.0
    assert heatmap.not_ranking == 0
