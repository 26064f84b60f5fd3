import math

import pytest

from gapfinder.core import tiles
from gapfinder.models import GeoPoint

CENTER = GeoPoint(45.5152, -122.6784)


def _sample_disk(center, radius_km, rings=12, spokes=36):
    points = [center]
    for ring in range(1, rings + 1):
        r = radius_km * ring / rings
        for spoke in range(spokes):
            angle = 2 * math.pi * spoke / spokes
            dx, dy = r * math.cos(angle), r * math.sin(angle)
            points.append(
                GeoPoint(
                    center.latitude + dy / tiles.KM_PER_DEGREE_LAT,
                    center.longitude + dx / tiles.km_per_degree_lon(center.latitude),
                )
            )
    return points


def test_build_tiles_is_deterministic():
    first = tiles.build_tiles(CENTER, 30, 10, 1)
    second = tiles.build_tiles(CENTER, 30, 10, 1)

    assert first == second
    assert [tile.index for tile in first] == list(range(len(first)))
    assert first[0].id == "tile-0"


@pytest.mark.parametrize("radius, size, overlap", [(10, 10, 1), (25, 10, 1), (50, 8, 0), (12, 30, 5)])
def test_every_point_in_disk_is_covered(radius, size, overlap):
    grid = tiles.build_tiles(CENTER, radius, size, overlap)

    for point in _sample_disk(CENTER, radius):
        assert any(tile.bounds.contains(point) for tile in grid), point


def test_tile_size_matches_request():
    tile = tiles.build_tiles(CENTER, 10, 10, 1)[0]
    height_km = (tile.bounds.north - tile.bounds.south) * tiles.KM_PER_DEGREE_LAT
    width_km = (tile.bounds.east - tile.bounds.west) * tiles.km_per_degree_lon(CENTER.latitude)

    assert height_km == pytest.approx(10)
    assert width_km == pytest.approx(10)


def test_order_is_row_major_south_to_north():
    grid = tiles.build_tiles(CENTER, 20, 10, 0)
    souths = [tile.bounds.south for tile in grid]

    assert souths == sorted(souths)
    same_row = [tile for tile in grid if tile.bounds.south == grid[0].bounds.south]
    wests = [tile.bounds.west for tile in same_row]
    assert wests == sorted(wests)


def test_step_never_drops_below_one_km():
    grid = tiles.build_tiles(CENTER, 2, 1, 5)

    assert len(grid) < 100


def test_small_radius_yields_single_centered_tile():
    grid = tiles.build_tiles(CENTER, 1, 50, 0)

    assert len(grid) == 1
    assert grid[0].bounds.contains(CENTER)


@pytest.mark.parametrize("radius, size", [(0, 10), (-5, 10), (10, 0)])
def test_invalid_dimensions_raise(radius, size):
    with pytest.raises(ValueError):
        tiles.build_tiles(CENTER, radius, size)


def test_polar_latitude_stays_finite():
    grid = tiles.build_tiles(GeoPoint(89.999, 0.0), 10, 10, 1)

    assert grid
    assert all(math.isfinite(tile.bounds.east) for tile in grid)
