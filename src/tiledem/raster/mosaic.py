# src/tiledem/raster/mosaic.py

"""
This module stitches per-tile rasters back into one raster on the global grid.
"""

import logging
from pathlib import Path
from typing import Union, Optional, Sequence

import numpy as np
from rasterio.crs import CRS
from rasterio.windows import Window

from tiledem.exceptions import RasterValidationError

from .layer import Raster
from .grid import RasterGrid
from .io import load

log = logging.getLogger(__name__)

__all__ = [
    "merge_tiles",
    "trim_nodata"
]

def merge_tiles(
    paths: Sequence[Union[str, Path]],
    grid: RasterGrid,
    crs: Optional[Union[str, CRS]] = None,
    nodata: Optional[float] = None,
    dtype=np.float32
) -> Raster:
    """
    Places every tile raster at its absolute offset in the global grid.

    Tile windows are disjoint, so placement is a plain copy with no blending.
    Cells no tile covers stay no-data.

    Args:
        paths: Per-tile GeoTIFFs sampled on `grid`.
        grid: Global output grid.
        crs: CRS of the mosaic.
        nodata: No-data value. Defaults to the first tile's.
        dtype: Output data type.

    Returns:
        Raster: Full-grid raster.

    Raises:
        RasterValidationError: If a tile does not sit on the grid.
    """
    if not paths:
        raise RasterValidationError("No tile rasters to merge")

    mosaic = None
    for path in paths:
        tile = load(path)

        if nodata is None:
            nodata = tile.nodata
        if mosaic is None:
            fill = nodata if nodata is not None else np.nan
            mosaic = np.full((tile.count, grid.height, grid.width), fill, dtype=dtype)

        if not np.isclose(tile.resolution, grid.resolution):
            raise RasterValidationError(
                f"{Path(path).name} has resolution {tile.resolution}, expected {grid.resolution}"
            )

        window = grid.window_for(tile.transform, tile.width, tile.height)
        if window.col_off < 0 or window.row_off < 0 or \
                window.col_off + window.width > grid.width or window.row_off + window.height > grid.height:
            raise RasterValidationError(f"{Path(path).name} falls outside the grid")

        row_slice, col_slice = window.toslices()
        mosaic[:, row_slice, col_slice] = tile.data

    log.info(f"Merged {len(paths)} tiles into a {grid.height}x{grid.width} grid")
    return Raster(data=mosaic, transform=grid.transform, crs=crs, nodata=nodata)

def trim_nodata(raster: Raster) -> Raster:
    """
    Crops a raster to the rows and columns that hold at least one value.

    Returns the raster unchanged when it holds no value at all.
    """
    valid = raster.valid_mask(1)
    rows = np.flatnonzero(valid.any(axis=1))
    cols = np.flatnonzero(valid.any(axis=0))
    if len(rows) == 0:
        log.warning("Raster holds no data, nothing to trim")
        return raster

    window = Window(
        col_off=int(cols[0]),
        row_off=int(rows[0]),
        width=int(cols[-1] - cols[0] + 1),
        height=int(rows[-1] - rows[0] + 1)
    )
    if window.width == raster.width and window.height == raster.height:
        return raster
    return raster.read_window(window)
