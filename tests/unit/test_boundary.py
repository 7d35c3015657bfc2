# tests/unit/test_boundary.py

import numpy as np
import pytest
import shapely
from shapely.geometry import Point, Polygon

from tiledem.lidar.tiling import build_tiles
from tiledem.lidar.store import TileStore
from tiledem.lidar.boundary import (
    BoundaryParams,
    tile_footprints,
    concave_footprint,
    extract_boundary,
    save_boundary,
    load_boundary
)

from helpers import make_cloud, grid_points

def _store_from_points(tmp_path, x, y, bounds, n_tiles=(2, 2)):
    tiles = build_tiles(bounds, n_tiles=n_tiles)
    store = TileStore(tmp_path / "tiles", tiles)
    pc = make_cloud(x, y, 1.0)
    for t in tiles:
        core = pc.subset(t.core_mask(pc.x, pc.y))
        if len(core):
            store.write(t, core)
    return store, pc

def _parts(geom):
    return list(geom.geoms) if hasattr(geom, "geoms") else [geom]

def test_footprints_from_headers(tmp_path):
    x, y = grid_points(0, 100, 0, 100)
    store, _ = _store_from_points(tmp_path, x, y, (0.0, 100.0, 0.0, 100.0))

    fp = tile_footprints(store)
    assert len(fp) == 4
    first = fp[(fp.ix == 0) & (fp.iy == 0)].geometry.iloc[0]
    assert first.bounds == pytest.approx((0.0, 0.0, 49.0, 49.0))

def test_boundary_covers_every_point_without_holes(tmp_path):
    x, y = grid_points(0, 100, 0, 100)
    store, pc = _store_from_points(tmp_path, x, y, (0.0, 100.0, 0.0, 100.0))

    boundary = extract_boundary(store)

    points = shapely.points(np.column_stack((pc.x, pc.y)))
    assert np.all(shapely.covers(boundary, points))
    assert all(len(p.interiors) == 0 for p in _parts(boundary))
    # Seams between tile footprints are closed
    assert boundary.area == pytest.approx(100.0 * 100.0, rel=0.01)

def test_boundary_follows_irregular_outline(tmp_path):
    x, y = grid_points(0, 100, 0, 100)
    # L-shaped survey: the top-right quadrant was never flown
    keep = ~((x > 60) & (y > 60))
    x, y = x[keep], y[keep]
    store, pc = _store_from_points(tmp_path, x, y, (0.0, 100.0, 0.0, 100.0), n_tiles=(3, 3))

    boundary = extract_boundary(store, BoundaryParams(concave_ratio=0.0, length_threshold=2.0))

    assert np.all(shapely.covers(boundary, shapely.points(np.column_stack((pc.x, pc.y)))))
    assert not boundary.contains(Point(85, 85))
    assert boundary.area < 0.9 * 100.0 * 100.0

def test_concave_footprint_of_collinear_points():
    pc = make_cloud([0.0, 1.0, 2.0, 3.0], [0.0, 0.0, 0.0, 0.0], 1.0)
    hull = concave_footprint(pc, pad=0.5)

    assert hull.area > 0
    assert hull.covers(Point(3.0, 0.0))

def test_boundary_roundtrip(tmp_path):
    poly = Polygon([(0, 0), (10, 0), (10, 5), (0, 10)])
    path = save_boundary(poly, tmp_path / "boundary.gpkg", crs="EPSG:32618")

    loaded = load_boundary(path)
    assert loaded.equals(poly)

def test_empty_store_is_degenerate(tmp_path):
    from tiledem.exceptions import DegenerateGeometryError

    tiles = build_tiles((0.0, 10.0, 0.0, 10.0))
    with pytest.raises(DegenerateGeometryError):
        extract_boundary(TileStore(tmp_path / "tiles", tiles))
