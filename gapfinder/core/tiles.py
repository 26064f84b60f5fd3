"""Decompose a radius query into an ordered list of overlapping square tiles.

Distances use a flat-earth approximation around the query center, which is
accurate enough for provider bounding-box queries of a few kilometres.
"""

from __future__ import annotations

import math
from typing import List

from gapfinder.models import BoundingBox, GeoPoint, Tile

KM_PER_DEGREE_LAT = 111.32
MIN_STEP_KM = 1.0
# Keeps longitude conversion finite close to the poles.
_MIN_COS_LAT = 0.01


def km_per_degree_lon(latitude: float) -> float:
    return KM_PER_DEGREE_LAT * max(math.cos(math.radians(latitude)), _MIN_COS_LAT)


def _square_reaches_disk(cx: float, cy: float, half: float, radius_km: float) -> bool:
    # Distance from the disk center to the nearest point of the square.
    nearest_x = max(abs(cx) - half, 0.0)
    nearest_y = max(abs(cy) - half, 0.0)
    return math.hypot(nearest_x, nearest_y) <= radius_km


def build_tiles(center: GeoPoint, radius_km: float, tile_size_km: float, overlap_km: float = 0.0) -> List[Tile]:
    """Return the tiles covering the disk of `radius_km` around `center`.

    Grid offsets are swept row-major from south-west to north-east, so the same
    inputs always produce the same ids, bounds and order.
    """
    if radius_km <= 0:
        raise ValueError("radius_km must be positive")
    if tile_size_km <= 0:
        raise ValueError("tile_size_km must be positive")

    step = max(tile_size_km - max(overlap_km, 0.0), MIN_STEP_KM)
    half = tile_size_km / 2
    reach = radius_km + half
    steps = int(math.ceil(reach / step))

    lat_half = half / KM_PER_DEGREE_LAT
    lon_half = half / km_per_degree_lon(center.latitude)

    tiles: List[Tile] = []
    for y in range(-steps, steps + 1):
        for x in range(-steps, steps + 1):
            cx, cy = x * step, y * step
            # A tile whose center lies within radius + half always reaches the disk;
            # the intersection test also keeps diagonal corner tiles that it would miss.
            if math.hypot(cx, cy) > reach and not _square_reaches_disk(cx, cy, half, radius_km):
                continue
            tile_lat = center.latitude + cy / KM_PER_DEGREE_LAT
            tile_lon = center.longitude + cx / km_per_degree_lon(center.latitude)
            bounds = BoundingBox(
                west=tile_lon - lon_half,
                east=tile_lon + lon_half,
                north=tile_lat + lat_half,
                south=tile_lat - lat_half,
            )
            index = len(tiles)
            tiles.append(Tile(id=f"tile-{index}", index=index, bounds=bounds))
    return tiles
