# src/tiledem/raster/reconcile.py

"""
This module brings products to a common extent and masks them to the survey boundary.
"""

import logging
from typing import List, Sequence, Tuple

import numpy as np
from rasterio.features import geometry_mask
from rasterio.windows import Window
from shapely.geometry.base import BaseGeometry

from tiledem.exceptions import RasterValidationError

from .layer import Raster

log = logging.getLogger(__name__)

__all__ = [
    "crop_to_intersection",
    "crop_to_common_extent",
    "mask_to_boundary"
]

def _check_aligned(a: Raster, b: Raster):
    res = a.resolution
    if not np.isclose(res, b.resolution):
        raise RasterValidationError(f"Resolutions differ: {a.resolution} vs {b.resolution}")

    dx = (b.transform.c - a.transform.c) / res
    dy = (b.transform.f - a.transform.f) / res
    if abs(dx - round(dx)) > 1e-6 or abs(dy - round(dy)) > 1e-6:
        raise RasterValidationError(
            f"Grids are not aligned: origins ({a.transform.c}, {a.transform.f}) "
            f"and ({b.transform.c}, {b.transform.f})"
        )

def _crop(raster: Raster, bounds: Tuple[float, float, float, float]) -> Raster:
    left, bottom, right, top = bounds
    res = raster.resolution
    r_left, _, _, r_top = raster.bounds

    window = Window(
        col_off=int(round((left - r_left) / res)),
        row_off=int(round((r_top - top) / res)),
        width=int(round((right - left) / res)),
        height=int(round((top - bottom) / res))
    )
    if window.col_off == 0 and window.row_off == 0 and \
            window.width == raster.width and window.height == raster.height:
        return raster
    return raster.read_window(window)

def crop_to_intersection(a: Raster, b: Raster) -> Tuple[Raster, Raster]:
    """
    Crops two aligned rasters to the intersection of their extents.

    Only the cells outside the shared area are dropped. Neither raster is ever padded,
    so a raster already inside the other comes back unchanged.

    Args:
        a (Raster): First raster.
        b (Raster): Second raster on the same grid.

    Returns:
        Tuple[Raster, Raster]: Both rasters over the shared extent.

    Raises:
        RasterValidationError: On differing resolutions, misaligned grids or disjoint extents.
    """
    _check_aligned(a, b)

    a_left, a_bottom, a_right, a_top = a.bounds
    b_left, b_bottom, b_right, b_top = b.bounds
    bounds = (
        max(a_left, b_left),
        max(a_bottom, b_bottom),
        min(a_right, b_right),
        min(a_top, b_top)
    )
    if bounds[2] - bounds[0] < a.resolution / 2 or bounds[3] - bounds[1] < a.resolution / 2:
        raise RasterValidationError(f"Rasters do not overlap: {a.bounds} vs {b.bounds}")

    return _crop(a, bounds), _crop(b, bounds)

def crop_to_common_extent(rasters: Sequence[Raster]) -> List[Raster]:
    """Crops any number of aligned rasters to the extent they all share."""
    rasters = list(rasters)
    if len(rasters) < 2:
        return rasters

    ref = rasters[0]
    for other in rasters[1:]:
        ref, _ = crop_to_intersection(ref, other)

    cropped = [crop_to_intersection(ref, r)[1] for r in rasters]
    log.info(f"Common extent: {cropped[0].height}x{cropped[0].width} cells")
    return cropped

def mask_to_boundary(raster: Raster, boundary: BaseGeometry) -> Raster:
    """
    Sets every cell whose center lies outside the boundary polygon to no-data.

    Args:
        raster (Raster): Raster to mask.
        boundary (BaseGeometry): Survey boundary, in the raster CRS.

    Returns:
        Raster: A masked copy.
    """
    outside = geometry_mask(
        [boundary],
        out_shape=(raster.height, raster.width),
        transform=raster.transform,
        all_touched=False,
        invert=False
    )

    masked = raster.copy()
    fill = raster.nodata if raster.nodata is not None else np.nan
    masked.data[:, outside] = fill
    log.debug(f"Masked {int(np.count_nonzero(outside))} cells outside the boundary")
    return masked
