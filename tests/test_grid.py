import math

import pytest

from rankgrid.geo import generate_grid_points, haversine_km, zoom_for_radius


def test_grid_has_n_squared_points_numbered_row_major():
    points = generate_grid_points(52.0, 21.0, 5, 3.0)
    assert len(points) == 25
    assert [p.position for p in points] == list(range(1, 26))
    # Rows share a latitude, columns share a longitude.
    assert points[0].lat == pytest.approx(points[4].lat)
    assert points[0].lng == pytest.approx(points[20].lng)
    assert points[5].lat > points[0].lat
    assert points[1].lng > points[0].lng


def test_grid_distances_are_finite_and_maximal_at_corners():
    points = generate_grid_points(40.7128, -74.006, 7, 5.0)
    distances = [p.distance_km for p in points]
    assert all(math.isfinite(d) and d >= 0 for d in distances)

    corners = {1, 7, 43, 49}
    corner_max = min(p.distance_km for p in points if p.position in corners)
    others_max = max(p.distance_km for p in points if p.position not in corners)
    assert corner_max > others_max

    center = points[24]
    assert center.position == 25
    assert center.distance_km == pytest.approx(0.0, abs=1e-9)


def test_grid_spacing_uses_small_area_approximation():
    center_lat, center_lng = 52.0, 21.0
    points = generate_grid_points(center_lat, center_lng, 3, 2.0)
    first = points[0]
    assert first.lat == pytest.approx(center_lat - 2.0 / 111.0)
    assert first.lng == pytest.approx(center_lng - 2.0 / (111.0 * math.cos(math.radians(center_lat))))
    assert first.distance_km == pytest.approx(
        haversine_km(center_lat, center_lng, first.lat, first.lng)
    )
    # Corner distance is about radius * sqrt(2).
    assert first.distance_km == pytest.approx(2.0 * math.sqrt(2), rel=0.02)


def test_grid_size_one_is_the_center():
    points = generate_grid_points(10.0, 20.0, 1, 5.0)
    assert len(points) == 1
    assert points[0].position == 1
    assert (points[0].lat, points[0].lng) == (10.0, 20.0)
    assert points[0].distance_km == 0.0


@pytest.mark.parametrize("bad", [0, -3, 2.5, True])
def test_grid_rejects_non_positive_or_non_integer_size(bad):
    with pytest.raises(ValueError):
        generate_grid_points(52.0, 21.0, bad, 1.0)


def test_grid_is_deterministic():
    a = generate_grid_points(52.0, 21.0, 5, 3.0)
    b = generate_grid_points(52.0, 21.0, 5, 3.0)
    assert [(p.lat, p.lng) for p in a] == [(p.lat, p.lng) for p in b]


def test_zoom_for_radius_thresholds():
    assert zoom_for_radius(0.5) == 15
    assert zoom_for_radius(1.6) == 14
    assert zoom_for_radius(3.0) == 13
    assert zoom_for_radius(8.0) == 12
    assert zoom_for_radius(20.0) == 10
    assert zoom_for_radius(100.0) == 9
