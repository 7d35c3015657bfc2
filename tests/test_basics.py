# tests/test_basics.py
import numpy as np
import pytest

import tiledem
from tiledem import lidar, raster, config, pipeline, scheduler

def test_imports():
    """Simple smoke test to ensure modules import correctly."""
    assert lidar is not None
    assert raster is not None
    assert config is not None
    assert pipeline is not None
    assert scheduler is not None
    assert tiledem.__version__

@pytest.mark.parametrize("resolution, tag", [
    (1.0, "1m"),
    (2.5, "2.5m"),
    (10, "10m"),
    (0.5, "50cm"),
    (0.05, "5cm"),
])
def test_resolution_tag(resolution, tag):
    """
    Module: config
    Function: resolution_tag
    Test: meter naming from 1 up, centimeter naming below.
    """
    assert tiledem.resolution_tag(resolution) == tag

def test_resolution_tag_rejects_non_positive():
    with pytest.raises(ValueError):
        tiledem.resolution_tag(0)

def test_point_cloud_roundtrip(tmp_path):
    """
    Module: lidar.layer
    Function: PointCloud.to_file / from_file
    Test: attributes survive a LAS write at millimeter precision.
    """
    pc = lidar.PointCloud(
        x=np.array([500000.123, 500001.456, 500002.789]),
        y=np.array([5000000.0, 5000001.0, 5000002.0]),
        z=np.array([101.25, 102.5, 99.0]),
        classification=np.array([2, 1, 7], dtype=np.uint8),
        return_number=np.array([1, 2, 1], dtype=np.uint8),
        number_of_returns=np.array([2, 2, 1], dtype=np.uint8),
        gps_time=np.array([10.0, 10.0, 11.0]),
        point_source_id=np.array([3, 3, 4], dtype=np.uint16)
    )
    path = pc.to_file(tmp_path / "pc.las")
    loaded = lidar.PointCloud.from_file(path)

    assert len(loaded) == 3
    assert np.allclose(loaded.x, pc.x, atol=1e-3)
    assert np.allclose(loaded.z, pc.z, atol=1e-3)
    assert np.array_equal(loaded.classification, pc.classification)
    assert np.array_equal(loaded.number_of_returns, pc.number_of_returns)
    assert np.array_equal(loaded.gps_time, pc.gps_time)
    assert np.array_equal(loaded.point_source_id, pc.point_source_id)
    assert loaded.buffer is None

    bounds, count = lidar.PointCloud.read_header(path)
    assert count == 3
    assert bounds[0] == pytest.approx(500000.123, abs=1e-3)
    assert bounds[3] == pytest.approx(5000002.0, abs=1e-3)
