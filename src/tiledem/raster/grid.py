# src/tiledem/raster/grid.py

"""
This module defines the global output grid that every tile samples into.

All products share one grid anchored at the top-left corner of the survey
bounding box. Each tile owns the cells whose centers fall inside its core
extent, which makes tile outputs disjoint windows of the same grid.
"""

import math
import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from rasterio.transform import Affine
from rasterio.windows import Window
from rasterio.windows import transform as compute_window_transform

from tiledem.exceptions import RasterValidationError

log = logging.getLogger(__name__)

__all__ = [
    "RasterGrid"
]

@dataclass(frozen=True)
class RasterGrid:
    """
    Regular grid covering the survey bounding box.

    Args:
        xmin (float): Left edge of the grid.
        ymax (float): Top edge of the grid.
        resolution (float): Cell size in CRS units.
        width (int): Number of columns.
        height (int): Number of rows.
    """
    xmin: float
    ymax: float
    resolution: float
    width: int
    height: int

    @classmethod
    def from_bounds(
        cls,
        bounds: Tuple[float, float, float, float],
        resolution: float
    ) -> 'RasterGrid':
        """
        Builds the smallest grid covering (xmin, xmax, ymin, ymax) at the given resolution.
        """
        if resolution <= 0:
            raise ValueError(f"Resolution must be positive, got {resolution}")

        xmin, xmax, ymin, ymax = bounds
        # The epsilon keeps an exact multiple of the resolution from spilling into an extra column
        width = max(1, int(math.ceil((xmax - xmin) / resolution - 1e-9)))
        height = max(1, int(math.ceil((ymax - ymin) / resolution - 1e-9)))
        return cls(float(xmin), float(ymax), float(resolution), width, height)

    @property
    def transform(self) -> Affine:
        return Affine.translation(self.xmin, self.ymax) * Affine.scale(self.resolution, -self.resolution)

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    def tile_window(self, tile) -> Window:
        """
        Computes the window of cells whose centers lie in the tile's core extent.

        Columns own centers in [xmin, xmax) and rows own centers in [ymin, ymax).
        Tiles on the right and bottom edges of the survey also take the cells the
        grid extends past the bounding box.

        Args:
            tile (TileDescriptor): Tile whose core is mapped onto the grid.

        Returns:
            Window: Possibly empty window (zero width or height).
        """
        res = self.resolution

        col_start = max(0, math.ceil((tile.xmin - self.xmin) / res - 0.5))
        if tile.touches_xmax:
            col_stop = self.width
        else:
            col_stop = min(self.width, math.ceil((tile.xmax - self.xmin) / res - 0.5))

        row_start = max(0, math.floor((self.ymax - tile.ymax) / res - 0.5) + 1)
        if tile.touches_ymin:
            row_stop = self.height
        else:
            row_stop = min(self.height, math.floor((self.ymax - tile.ymin) / res - 0.5) + 1)

        return Window(
            col_off=col_start,
            row_off=row_start,
            width=max(0, col_stop - col_start),
            height=max(0, row_stop - row_start)
        )

    def window_for(self, transform: Affine, width: int, height: int) -> Window:
        """
        Locates a raster sampled on this grid.

        Raises:
            RasterValidationError: If the raster origin is not on a cell corner.
        """
        col = (transform.c - self.xmin) / self.resolution
        row = (self.ymax - transform.f) / self.resolution
        col_off, row_off = int(round(col)), int(round(row))
        if abs(col - col_off) > 1e-6 or abs(row - row_off) > 1e-6:
            raise RasterValidationError(f"Raster origin ({transform.c}, {transform.f}) is off the grid")
        return Window(col_off=col_off, row_off=row_off, width=width, height=height)

    def window_transform(self, window: Window) -> Affine:
        return compute_window_transform(window, self.transform)

    def cell_centers(self, window: Window) -> Tuple[np.ndarray, np.ndarray]:
        """
        Returns the X and Y coordinates of the cell centers of a window, shaped (height, width).
        """
        cols = np.arange(window.col_off, window.col_off + window.width)
        rows = np.arange(window.row_off, window.row_off + window.height)
        xs = self.xmin + (cols + 0.5) * self.resolution
        ys = self.ymax - (rows + 0.5) * self.resolution
        return np.meshgrid(xs, ys)
