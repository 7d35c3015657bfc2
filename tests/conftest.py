# tests/conftest.py

import pytest
import numpy as np
from rasterio.transform import Affine

from tiledem.lidar.layer import PointCloud
from tiledem.raster.layer import Raster

from helpers import make_cloud, grid_points

@pytest.fixture
def las_factory(tmp_path):
    """
    Fixture: Writes a synthetic LAS file from point arrays and returns its path.
    """
    def _create(name: str, pc: PointCloud):
        return pc.to_file(tmp_path / name)
    return _create

@pytest.fixture
def flat_plane_las(las_factory):
    """
    A 200x200 m flat plane at Z=10 sampled every meter, one single-return pulse per point.
    """
    x, y = grid_points(0, 200, 0, 200)
    return las_factory("flat_plane.las", make_cloud(x, y, 10.0))

@pytest.fixture
def degenerate_las(las_factory):
    """
    Dense flat points on x in [0, 80] plus one isolated point at (190, 190).

    Tiled 2x2 the isolated point is alone in the top-right tile and the
    bottom-right tile is empty.
    """
    x, y = grid_points(0, 80, 0, 200)
    x = np.append(x, 190.0)
    y = np.append(y, 190.0)
    return las_factory("degenerate.las", make_cloud(x, y, 10.0))

@pytest.fixture
def canopy_las(las_factory):
    """
    A 100x100 m plane at Z=10 with a 20x20 m block of canopy at Z=20.

    Pulses under the canopy return twice (canopy, then ground) and announce the
    wrong number of returns, which the classifier must repair.
    """
    x, y = grid_points(0, 100, 0, 100)
    under = (x >= 40) & (x <= 60) & (y >= 40) & (y <= 60)

    xs, ys, zs, rn, nr, gps = [], [], [], [], [], []
    t = 0.0
    for px, py, covered in zip(x, y, under):
        if covered:
            xs += [px, px]
            ys += [py, py]
            zs += [20.0, 10.0]
            rn += [1, 2]
            nr += [1, 1]
            gps += [t, t]
        else:
            xs.append(px)
            ys.append(py)
            zs.append(10.0)
            rn.append(1)
            nr.append(1)
            gps.append(t)
        t += 1.0

    pc = make_cloud(xs, ys, zs, return_number=rn, number_of_returns=nr, gps_time=gps)
    return las_factory("canopy.las", pc)

@pytest.fixture
def raster_factory():
    """
    Fixture: Builds a single-band Raster at 1 m resolution whose top-left corner is (x0, y0).
    """
    def _create(data, x0: float = 0.0, y0: float = 10.0, res: float = 1.0, nodata: float = -9999.0):
        data = np.asarray(data, dtype=np.float32)
        transform = Affine.translation(x0, y0) * Affine.scale(res, -res)
        return Raster(data=data, transform=transform, crs=None, nodata=nodata)
    return _create
