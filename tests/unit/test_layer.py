# tests/unit/test_layer.py

import numpy as np
import pytest
from rasterio.transform import Affine
from rasterio.windows import Window

from tiledem.exceptions import IrrecoverableIOError, RasterValidationError
from tiledem.lidar.layer import PointCloud, PointClass
from tiledem.raster.io import load, save
from tiledem.raster.layer import Raster

from helpers import make_cloud

def test_noise_and_last_return_masks():
    pc = make_cloud(
        [0, 1, 2, 3], [0, 0, 0, 0], [1, 2, 3, 4],
        classification=[PointClass.GROUND, PointClass.LOW_NOISE, PointClass.HIGH_NOISE, PointClass.UNCLASSIFIED],
        return_number=[1, 1, 2, 2],
        number_of_returns=[2, 1, 2, 3]
    )
    assert pc.noise_mask.tolist() == [False, True, True, False]
    assert pc.last_return_mask.tolist() == [False, True, True, False]

def test_concat_drops_partial_optional_fields():
    a = make_cloud([0, 1], [0, 1], 5.0)
    b = make_cloud([2], [2], 5.0)
    b.gps_time = None
    a.buffer = np.array([True, False])
    b.buffer = np.array([False])

    merged = PointCloud.concat([a, b, PointCloud.empty()])
    assert len(merged) == 3
    assert merged.gps_time is None
    assert merged.buffer.tolist() == [True, False, False]

def test_iter_chunks_preserves_order(las_factory):
    pc = make_cloud(np.arange(10), np.zeros(10), 1.0)
    path = las_factory("chunks.las", pc)

    chunks = list(PointCloud.iter_chunks(path, chunk_size=4))
    assert [len(c) for c in chunks] == [4, 4, 2]
    assert np.allclose(np.concatenate([c.x for c in chunks]), np.arange(10))

def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        PointCloud.from_file(tmp_path / "nope.las")

def test_corrupt_file_is_irrecoverable(tmp_path):
    bad = tmp_path / "bad.las"
    bad.write_bytes(b"not a las file at all")
    with pytest.raises(IrrecoverableIOError):
        PointCloud.from_file(bad)

def test_raster_valid_mask_and_window(raster_factory):
    data = np.arange(16, dtype=np.float32).reshape(4, 4)
    data[0, 0] = -9999.0
    data[1, 1] = np.nan
    r = raster_factory(data, x0=100.0, y0=50.0)

    mask = r.valid_mask()
    assert not mask[0, 0] and not mask[1, 1]
    assert mask.sum() == 14

    sub = r.read_window(Window(col_off=1, row_off=2, width=2, height=2))
    assert sub.shape == (1, 2, 2)
    assert sub.transform.c == 101.0
    assert sub.transform.f == 48.0
    assert sub.get_band(1)[0, 0] == 9.0

def test_raster_save_load(tmp_path, raster_factory):
    r = raster_factory(np.full((3, 5), 2.5))
    path = save(r, tmp_path / "nested" / "r.tif")
    loaded = load(path)

    assert loaded.transform == r.transform
    assert np.array_equal(loaded.data, r.data)
    assert loaded.nodata == -9999.0

@pytest.mark.parametrize("data", [np.zeros((0, 3)), np.zeros((1, 1, 2, 2)), np.zeros(4)])
def test_raster_rejects_malformed_grids(data):
    with pytest.raises(RasterValidationError):
        Raster(data=data, transform=Affine.identity())

def test_raster_promotes_single_band():
    r = Raster(data=np.ones((3, 4)), transform=Affine.identity(), crs="EPSG:32618")
    assert r.shape == (1, 3, 4)
    assert r.crs.to_epsg() == 32618
