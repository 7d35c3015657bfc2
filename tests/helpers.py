# tests/helpers.py

import numpy as np
from rasterio.transform import rowcol

from tiledem.lidar.layer import PointCloud, PointClass
from tiledem.raster.layer import Raster

def make_cloud(x, y, z, classification=None, return_number=None, number_of_returns=None,
               gps_time=None, point_source_id=None) -> PointCloud:
    """Builds a PointCloud with single-return pulses unless told otherwise."""
    x = np.asarray(x, dtype=np.float64)
    n = len(x)
    return PointCloud(
        x=x,
        y=np.asarray(y, dtype=np.float64),
        z=np.broadcast_to(np.asarray(z, dtype=np.float64), (n,)).copy(),
        classification=np.full(n, PointClass.CREATED, dtype=np.uint8) if classification is None
        else np.asarray(classification, dtype=np.uint8),
        return_number=np.ones(n, dtype=np.uint8) if return_number is None
        else np.asarray(return_number, dtype=np.uint8),
        number_of_returns=np.ones(n, dtype=np.uint8) if number_of_returns is None
        else np.asarray(number_of_returns, dtype=np.uint8),
        gps_time=np.arange(n, dtype=np.float64) if gps_time is None else np.asarray(gps_time, dtype=np.float64),
        point_source_id=None if point_source_id is None else np.asarray(point_source_id, dtype=np.uint16)
    )

def grid_points(xmin, xmax, ymin, ymax, step=1.0):
    """Regular grid of XY positions, bounds inclusive."""
    xs = np.arange(xmin, xmax + step / 2, step)
    ys = np.arange(ymin, ymax + step / 2, step)
    gx, gy = np.meshgrid(xs, ys)
    return gx.ravel(), gy.ravel()

def value_at(raster: Raster, x: float, y: float) -> float:
    row, col = rowcol(raster.transform, x, y)
    return float(raster.get_band(1)[row, col])

def assert_pulses_consistent(pc: PointCloud, ids: np.ndarray):
    """Every point of a pulse announces the highest return number of that pulse."""
    for pid in np.unique(ids):
        members = ids == pid
        expected = pc.return_number[members].max()
        assert np.all(pc.number_of_returns[members] == expected), \
            f"Pulse {pid}: {pc.number_of_returns[members]} != {expected}"

def assert_grid_match(r1: Raster, r2: Raster):
    """Strictly verify two rasters share the exact same grid."""
    assert r1.crs == r2.crs, \
        f"CRS mismatch: {r1.crs} != {r2.crs}"

    assert r1.shape == r2.shape, \
        f"Shape mismatch: {r1.shape} != {r2.shape}"

    assert np.allclose(np.array(r1.transform), np.array(r2.transform), atol=1e-9), \
        "Transform mismatch (Pixel alignment error)"
