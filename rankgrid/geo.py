"""Geospatial helpers."""
from __future__ import annotations

import math
from typing import List

from . import config
from .models import GridPoint


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = 6371.0
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return r * c


def generate_grid_points(
    center_lat: float,
    center_lng: float,
    grid_size: int,
    radius_km: float,
) -> List[GridPoint]:
    """Lay out a grid_size x grid_size lattice spanning 2*radius_km around the center.

    Points are numbered row-major from 1, starting with the southernmost row.
    """
    if isinstance(grid_size, bool) or not isinstance(grid_size, int) or grid_size < 1:
        raise ValueError("Grid size must be a positive integer")

    center_lat = float(center_lat)
    center_lng = float(center_lng)
    radius_km = float(radius_km)

    step_km = (2 * radius_km) / (grid_size - 1) if grid_size > 1 else 0.0
    cos_center = math.cos(math.radians(center_lat))
    if abs(cos_center) < 1e-3:
        cos_center = 1e-3
    lat_per_km = 1.0 / config.KM_PER_DEGREE_LAT
    lng_per_km = 1.0 / (config.KM_PER_DEGREE_LAT * cos_center)
    half = (grid_size - 1) / 2

    points: List[GridPoint] = []
    position = 1
    for row in range(grid_size):
        for col in range(grid_size):
            lat = center_lat + (row - half) * step_km * lat_per_km
            lng = center_lng + (col - half) * step_km * lng_per_km
            points.append(
                GridPoint(
                    position=position,
                    lat=lat,
                    lng=lng,
                    distance_km=haversine_km(center_lat, center_lng, lat, lng),
                )
            )
            position += 1
    return points


def zoom_for_radius(radius_km: float) -> int:
    for upper_km, zoom in config.ZOOM_BY_RADIUS_KM:
        if radius_km <= upper_km:
            return zoom
    return config.ZOOM_FALLBACK
