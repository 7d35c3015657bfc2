# src/tiledem/raster/layer.py

"""
This module defines the in-memory raster container used between pipeline stages.
"""

import copy
import logging
from typing import Union, Optional, Dict, Any, Tuple

import numpy as np
import rasterio
from rasterio.transform import Affine
from rasterio.crs import CRS
from rasterio.windows import Window
from rasterio.windows import transform as compute_window_transform

from tiledem.exceptions import RasterValidationError

log = logging.getLogger(__name__)

__all__ = [
    "Raster"
]

class Raster:
    """
    An elevation grid held in RAM together with its georeferencing.

    Attributes:
        data (np.ndarray): The cell array in (Bands, Height, Width) format.
        transform (Affine): The affine transform matrix.
        crs (CRS): The Coordinate Reference System (may be None for local surveys).
        nodata (float | None): The value marking cells without a sampled elevation.
    """

    def __init__(
        self,
        data: np.ndarray,
        transform: Affine,
        crs: Optional[Union[str, CRS]] = None,
        nodata: Optional[float] = None
    ):
        if not isinstance(transform, Affine):
            raise TypeError(f"Transform must be rasterio.Affine, got {type(transform)}")

        data = np.asarray(data)
        if data.ndim == 2:
            data = data[np.newaxis]
        if data.ndim != 3 or 0 in data.shape:
            raise RasterValidationError(f"Expected a non-empty (bands, rows, cols) grid, got shape {data.shape}")

        self._data = data
        self.transform = transform
        self.crs = CRS.from_user_input(crs) if isinstance(crs, str) else crs
        self.nodata = nodata

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def width(self) -> int:
        return self._data.shape[2]

    @property
    def height(self) -> int:
        return self._data.shape[1]

    @property
    def count(self) -> int:
        return self._data.shape[0]

    @property
    def shape(self) -> Tuple[int, int, int]:
        """Returns (Bands, Height, Width)."""
        return self._data.shape

    @property
    def resolution(self) -> float:
        """Cell size in CRS units (square cells assumed)."""
        return abs(self.transform.a)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Returns (left, bottom, right, top) in CRS units."""
        return rasterio.transform.array_bounds(self.height, self.width, self.transform)

    @property
    def profile(self) -> Dict[str, Any]:
        """GeoTIFF creation options. Float grids use the floating point predictor."""
        floating = np.issubdtype(self._data.dtype, np.floating)
        return {
            'driver': 'GTiff',
            'dtype': self._data.dtype,
            'nodata': self.nodata,
            'width': self.width,
            'height': self.height,
            'count': self.count,
            'crs': self.crs,
            'transform': self.transform,
            'compress': 'lzw',
            'predictor': 3 if floating else 1,
        }

    def get_band(self, idx: int = 1) -> np.ndarray:
        """
        Retrieve a band by 1-based index.

        Returns:
            np.ndarray: 2D array of the band.
        """
        if not (1 <= idx <= self.count):
            raise IndexError(f"Band index {idx} out of range (1-{self.count})")
        return self._data[idx - 1]

    def valid_mask(self, idx: int = 1) -> np.ndarray:
        """Boolean mask of cells holding an elevation in the given band."""
        band = self.get_band(idx)
        mask = ~np.isnan(band) if np.issubdtype(band.dtype, np.floating) else np.ones(band.shape, dtype=bool)
        if self.nodata is not None and not np.isnan(self.nodata):
            mask &= band != self.nodata
        return mask

    def read_window(self, window: Window) -> 'Raster':
        """
        Slices a sub-raster, shifting the transform to the window origin.

        Args:
            window: Integer-aligned window inside this raster.

        Returns:
            Raster: An independent copy of the windowed cells.
        """
        row_slice, col_slice = window.toslices()
        return Raster(
            data=self._data[:, row_slice, col_slice].copy(),
            transform=compute_window_transform(window, self.transform),
            crs=self.crs,
            nodata=self.nodata
        )

    def copy(self) -> 'Raster':
        """Returns a deep copy of the Raster."""
        return Raster(
            data=self._data.copy(),
            transform=copy.deepcopy(self.transform),
            crs=copy.deepcopy(self.crs),
            nodata=self.nodata
        )

    def __repr__(self) -> str:
        return (f"<Raster shape={self.shape} dtype={self._data.dtype} "
                f"crs={self.crs} bounds={self.bounds}>")

