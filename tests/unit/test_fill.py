# tests/unit/test_fill.py

import numpy as np
import pytest

from tiledem.raster.fill import fill_gaps

ND = -9999.0

def test_hole_becomes_neighbor_mean(raster_factory):
    data = np.array([
        [1.0, 2.0, 3.0],
        [4.0, ND, 6.0],
        [7.0, 8.0, ND],
    ])
    out = fill_gaps(raster_factory(data)).get_band(1)

    assert out[1, 1] == pytest.approx(np.mean([1, 2, 3, 4, 6, 7, 8]))
    assert out[2, 2] == pytest.approx(7.0)
    assert out[0, 0] == 1.0

def test_isolated_cells_stay_nodata(raster_factory):
    data = np.full((5, 5), ND)
    data[0, 0] = 4.0
    out = fill_gaps(raster_factory(data)).get_band(1)

    assert out[1, 1] == pytest.approx(4.0)
    assert out[0, 1] == pytest.approx(4.0)
    assert out[2, 2] == ND
    assert out[4, 4] == ND

def test_single_pass_reads_original_values(raster_factory):
    row = np.array([[1.0, ND, ND, ND, 5.0]])

    once = fill_gaps(raster_factory(row)).get_band(1)
    assert once.tolist()[0] == [1.0, 1.0, ND, 5.0, 5.0]

    twice = fill_gaps(raster_factory(row), iterations=2).get_band(1)
    assert twice[0, 2] == pytest.approx(3.0)

def test_iterations_stop_when_nothing_to_fill(raster_factory):
    r = raster_factory(np.full((4, 4), ND))
    out = fill_gaps(r, iterations=50)
    assert np.all(out.get_band(1) == ND)
    assert out.nodata == ND

def test_larger_radius(raster_factory):
    data = np.full((5, 5), ND)
    data[0, 0] = 2.0
    data[4, 4] = 6.0
    out = fill_gaps(raster_factory(data), radius=2).get_band(1)
    assert out[2, 2] == pytest.approx(4.0)

@pytest.mark.parametrize("kwargs", [{"radius": 0}, {"iterations": 0}])
def test_invalid_arguments(raster_factory, kwargs):
    with pytest.raises(ValueError):
        fill_gaps(raster_factory(np.ones((2, 2))), **kwargs)
