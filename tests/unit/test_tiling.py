# tests/unit/test_tiling.py

import itertools

import numpy as np
import pytest
from shapely.geometry import box
from shapely.ops import unary_union

from tiledem.lidar.tiling import build_tiles, TileDescriptor
from tiledem.raster.grid import RasterGrid

@pytest.mark.parametrize("bounds, n_tiles", [
    ((0.0, 200.0, 0.0, 200.0), (2, 2)),
    ((3.3, 257.9, -10.0, 91.2), (3, 2)),
    ((500123.7, 500611.2, 5012000.4, 5012333.9), (4, 4)),
])
def test_cores_partition_bbox(bounds, n_tiles):
    tiles = build_tiles(bounds, n_tiles=n_tiles)
    xmin, xmax, ymin, ymax = bounds
    bbox = box(xmin, ymin, xmax, ymax)

    union = unary_union([t.core_box() for t in tiles])
    assert union.symmetric_difference(bbox).area == pytest.approx(0.0, abs=1e-6)
    assert sum(t.core_box().area for t in tiles) == pytest.approx(bbox.area, rel=1e-9)

    for a, b in itertools.combinations(tiles, 2):
        assert a.core_box().intersection(b.core_box()).area == pytest.approx(0.0, abs=1e-9)

def test_every_point_belongs_to_one_core():
    bounds = (0.0, 250.0, 0.0, 130.0)
    tiles = build_tiles(bounds, n_tiles=(3, 2))

    rng = np.random.default_rng(7)
    x = np.concatenate([rng.uniform(0, 250, 5000), [0.0, 250.0, 250.0, 0.0, 125.0]])
    y = np.concatenate([rng.uniform(0, 130, 5000), [0.0, 130.0, 0.0, 130.0, 65.0]])
    # Points exactly on interior tile edges too
    edges_x = sorted({t.xmin for t in tiles} | {t.xmax for t in tiles})
    x = np.concatenate([x, edges_x])
    y = np.concatenate([y, np.full(len(edges_x), 65.0)])

    membership = np.sum([t.core_mask(x, y) for t in tiles], axis=0)
    assert np.all(membership == 1)

def test_square_side_and_buffer():
    tiles = build_tiles((0.0, 200.0, 0.0, 200.0), n_tiles=(2, 2))
    assert len(tiles) == 4
    assert all(t.buffer == 5.0 for t in tiles)
    assert [t.key for t in tiles] == [(0, 0), (1, 0), (0, 1), (1, 1)]
    assert [t.name for t in tiles] == ["0_0", "100_0", "0_100", "100_100"]

    # 0.05 * 101 = 5.05 is rounded up to the next half meter
    tiles = build_tiles((0.0, 202.0, 0.0, 100.0), n_tiles=(2, 1))
    assert tiles[0].buffer == 5.5

def test_edges_are_centered_on_bbox():
    tiles = build_tiles((0.0, 250.0, 0.0, 100.0), tile_size=100.0)
    xs = sorted({t.xmin for t in tiles} | {t.xmax for t in tiles})
    assert xs == [0.0, 75.0, 175.0, 250.0]
    assert tiles[0].origin == (125.0, 50.0)

def test_buffer_override():
    tiles = build_tiles((0.0, 100.0, 0.0, 100.0), n_tiles=(2, 2), buffer_size=12.0)
    t = tiles[0]
    assert t.buffered_bounds == (-12.0, 62.0, -12.0, 62.0)

@pytest.mark.parametrize("kwargs", [
    {"bounds": (0.0, 0.0, 0.0, 10.0)},
    {"bounds": (0.0, 10.0, 0.0, 10.0), "tile_size": 0.0},
    {"bounds": (0.0, 10.0, 0.0, 10.0), "n_tiles": (0, 2)},
])
def test_invalid_inputs(kwargs):
    with pytest.raises(ValueError):
        build_tiles(**kwargs)

def test_tile_windows_partition_grid():
    bounds = (0.3, 187.6, 1.2, 143.9)
    tiles = build_tiles(bounds, n_tiles=(3, 2))
    grid = RasterGrid.from_bounds(bounds, 2.5)

    owned = np.zeros(grid.shape, dtype=int)
    for t in tiles:
        w = grid.tile_window(t)
        owned[w.row_off:w.row_off + w.height, w.col_off:w.col_off + w.width] += 1
    assert np.all(owned == 1)

def test_grid_cell_centers():
    grid = RasterGrid.from_bounds((0.0, 10.0, 0.0, 4.0), 2.0)
    assert grid.shape == (2, 5)

    t = TileDescriptor(0, 0, 0.0, 10.0, 0.0, 4.0, 0.0, (5.0, 2.0), (0.0, 10.0, 0.0, 4.0))
    xs, ys = grid.cell_centers(grid.tile_window(t))
    assert xs[0].tolist() == [1.0, 3.0, 5.0, 7.0, 9.0]
    assert ys[:, 0].tolist() == [3.0, 1.0]
