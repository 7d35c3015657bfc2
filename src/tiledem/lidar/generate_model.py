# src/tiledem/lidar/generate_model.py

"""
This module implements functions to generate elevation products (DEM, DSM, CHM) tile by tile.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Union, Optional, Tuple
from pathlib import Path
import logging

import numpy as np
import scipy.ndimage as ndimage
from scipy.spatial import cKDTree
from rasterio.crs import CRS
from numba import jit

from tiledem.exceptions import DegenerateGeometryError, RasterValidationError
from tiledem.raster.layer import Raster
from tiledem.raster.grid import RasterGrid
from tiledem.raster.io import save

from .layer import PointCloud, PointClass
from .tiling import TileDescriptor
from .store import TileStore
from .rasterize import TinParams, highest_per_xy, tin_interpolate, layered_tin_interpolate, NODATA_VAL

log = logging.getLogger(__name__)

__all__ = [
    "Product",
    "RasterizeMode",
    "ChmMethod",
    "LAYER_THRESHOLDS",
    "SurfaceParams",
    "normalize_heights",
    "rasterize_tile",
    "calculate_chm"
]

class Product(str, Enum):
    """
    Elevation products.

    Options:
    DEM: Bare-earth elevation from ground points.
    DSM: Top-surface elevation from every non-noise point.
    CHM: Height of the surface above the ground.
    """
    DEM = "dem"
    DSM = "dsm"
    CHM = "chm"

class RasterizeMode(str, Enum):
    """
    Surface rasterization strategies for DSM and CHM.

    Options:
    FAST: One triangulation of every selected point.
    LAYERED: Maximum of stacked height-thresholded triangulations of first returns.
    """
    FAST = "fast"
    LAYERED = "layered"

class ChmMethod(str, Enum):
    """
    Ways to derive the canopy height model.

    Options:
    NORMALIZED: Triangulate heights normalized against the ground, tile by tile.
    DIFFERENCE: Subtract the final DEM from the final DSM.
    """
    NORMALIZED = "normalized"
    DIFFERENCE = "difference"

LAYER_THRESHOLDS = (0.0, 2.0, 5.0, 10.0, 15.0, 20.0, 25.0, 30.0)

@dataclass
class SurfaceParams:
    """
    Settings shared by every tile of a rasterization stage.

    Args:
        mode (RasterizeMode): Fast or layered surface (DSM/CHM only).
        tin (TinParams): Base triangulation policy.
        layer_thresholds (Tuple[float, ...]): Height thresholds of the layered mode.
        layer_max_edge (float): Longest triangle edge allowed in the layers.
        threads (int): Threads of the nearest-ground search.
    """
    mode: RasterizeMode = RasterizeMode.FAST
    tin: TinParams = field(default_factory=TinParams)
    layer_thresholds: Tuple[float, ...] = LAYER_THRESHOLDS
    layer_max_edge: float = 2.0
    threads: int = 1

def normalize_heights(
    pc: PointCloud,
    params: Optional[TinParams] = None,
    threads: int = 1
    ) -> np.ndarray:
    """
    Computes the height of every point above the ground surface.

    The ground elevation under a point comes from the ground TIN. Outside the hull of
    the ground points the nearest ground point is used instead.

    Args:
        pc (PointCloud): Classified points.
        params (TinParams): Ground triangulation policy.
        threads (int): Workers of the KD-tree query.

    Returns:
        np.ndarray: Heights above ground (may be negative).
    """
    ground = pc.classification == PointClass.GROUND
    if np.count_nonzero(ground) < 3:
        raise DegenerateGeometryError(f"Height normalization needs ground points, got {np.count_nonzero(ground)}")

    gx, gy, gz = pc.x[ground], pc.y[ground], pc.z[ground]
    # Ground elevation under every point, read from the ground triangulation
    ground_z = tin_interpolate(gx, gy, gz, pc.x, pc.y, params)

    missing = np.isnan(ground_z)
    # Points outside the ground hull fall back to their nearest ground point
    if np.any(missing):
        tree = cKDTree(np.column_stack((gx, gy)))
        _, idx = tree.query(np.column_stack((pc.x[missing], pc.y[missing])), k=1, workers=threads)
        ground_z[missing] = gz[idx]

    return pc.z - ground_z

def _select_surface(
    pc: PointCloud,
    product: Product,
    params: SurfaceParams
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, Optional[np.ndarray]]:
    """
    Picks the points and values triangulated for a product.

    Returns:
        (x, y, values, heights): heights is None unless the layered mode needs them.
    """
    # Noise never contributes to any surface
    pc = pc.subset(~pc.noise_mask)

    if product == Product.DEM:
        g = pc.subset(pc.classification == PointClass.GROUND)
        return g.x, g.y, g.z, None

    needs_heights = product == Product.CHM or params.mode == RasterizeMode.LAYERED
    h = normalize_heights(pc, params.tin, params.threads) if needs_heights else None

    # The layered surfaces are built from first returns only
    if params.mode == RasterizeMode.LAYERED:
        first = pc.return_number == 1
        pc = pc.subset(first)
        h = h[first]

    # Top surface: of several returns at the same XY only the highest is triangulated
    if product == Product.CHM:
        h = np.maximum(h, 0.0)
        return highest_per_xy(pc.x, pc.y, h, h)
    return highest_per_xy(pc.x, pc.y, pc.z, h)

def rasterize_tile(
    tile: TileDescriptor,
    store: TileStore,
    grid: RasterGrid,
    product: Product,
    out_dir: Union[str, Path],
    params: SurfaceParams,
    crs: Optional[Union[str, CRS]] = None
    ) -> Optional[Path]:
    """
    Rasterizes one product over the cells owned by a tile.

    Steps:
        1. Maps the tile core onto its window of the global grid.
        2. Reassembles the buffered neighborhood from the tile store.
        3. Selects the product's points and triangulates them.
        4. Samples the cell centers and saves `tile_<name>.tif`.

    Args:
        tile (TileDescriptor): Tile to rasterize.
        store (TileStore): Classified tile store.
        grid (RasterGrid): Global output grid.
        product (Product): Product to build.
        out_dir (Union[str, Path]): Directory of the per-tile rasters.
        params (SurfaceParams): Rasterization settings.
        crs (Union[str, CRS]): CRS written to the raster.

    Returns:
        Optional[Path]: The tile raster, or None when the tile has no cells or no points.
    """
    window = grid.tile_window(tile)
    if window.width == 0 or window.height == 0:
        log.debug(f"{tile} owns no grid cells")
        return None

    pc = store.load_buffered(tile)
    if len(pc) == 0:
        log.debug(f"{tile} has no points to rasterize")
        return None

    x, y, values, h = _select_surface(pc, product, params)
    qx, qy = grid.cell_centers(window)

    if params.mode == RasterizeMode.LAYERED and product != Product.DEM:
        surface = layered_tin_interpolate(
            x, y, values, h, qx, qy,
            thresholds=params.layer_thresholds,
            params=params.tin,
            layer_max_edge=params.layer_max_edge
        )
    else:
        surface = tin_interpolate(x, y, values, qx, qy, params.tin)

    data = np.where(np.isnan(surface), NODATA_VAL, surface).astype(np.float32)
    raster = Raster(
        data=data,
        transform=grid.window_transform(window),
        crs=crs,
        nodata=NODATA_VAL
    )

    path = save(raster, Path(out_dir) / f"tile_{tile.name}.tif")
    log.debug(f"{tile}: {product.value} sampled {int(np.count_nonzero(~np.isnan(surface)))}/{data.size} cells")
    return path

@jit(nopython=True, cache=True)
def _compute_raw_chm(
    dsm_arr: np.ndarray,
    dtm_arr: np.ndarray,
    has_d_nodata: bool,
    d_nodata: float,
    has_t_nodata: bool,
    t_nodata: float,
    out_nodata: float
    ):
    """
    CHM as the clamped difference of two aligned grids, with explicit loops for numba.

    Returns:
        Tuple of (chm_arr, valid_mask).
    """
    rows, cols = dsm_arr.shape
    chm_arr = np.empty((rows, cols), dtype=np.float32)
    valid_mask = np.empty((rows, cols), dtype=np.bool_)

    for i in range(rows):
        for j in range(cols):
            d_val = dsm_arr[i, j]
            t_val = dtm_arr[i, j]

            # A cell is usable only if both grids hold a sampled elevation
            is_valid = not (np.isnan(d_val) or np.isnan(t_val))
            if has_d_nodata and d_val == d_nodata:
                is_valid = False
            if has_t_nodata and t_val == t_nodata:
                is_valid = False

            if not is_valid:
                chm_arr[i, j] = out_nodata
                valid_mask[i, j] = False
            else:
                diff = d_val - t_val
                # The surface can dip below the terrain at steep edges; heights never go negative
                if diff < 0.0:
                    diff = 0.0
                chm_arr[i, j] = diff
                valid_mask[i, j] = True

    return chm_arr, valid_mask

def calculate_chm(
    dsm: Raster,
    dem: Raster,
    filter_size: int = 0
    ) -> Raster:
    """
    Calculates the Canopy Height Model as max(DSM - DEM, 0).

    Args:
        dsm (Raster): Surface model.
        dem (Raster): Terrain model on the same grid.
        filter_size (int): Median filter size applied to valid cells (0 disables it).

    Returns:
        Raster: CHM on the DSM grid.
    """
    if dsm.shape != dem.shape or dsm.transform != dem.transform:
        raise RasterValidationError(
            f"DSM {dsm.shape} and DEM {dem.shape} must share a grid, crop them to a common extent first"
        )

    d_nodata = dsm.nodata
    t_nodata = dem.nodata
    has_d_nodata = d_nodata is not None
    has_t_nodata = t_nodata is not None
    out_nodata = float(d_nodata) if has_d_nodata else float(NODATA_VAL)

    chm_arr, valid_mask = _compute_raw_chm(
        dsm.get_band(1).astype(np.float64),
        dem.get_band(1).astype(np.float64),
        has_d_nodata,
        float(d_nodata) if has_d_nodata else 0.0,
        has_t_nodata,
        float(t_nodata) if has_t_nodata else 0.0,
        out_nodata
    )

    if filter_size > 0:
        # No-data cells are zeroed so the median window does not pick up the -9999 marker,
        # then put back afterwards
        temp_chm = np.copy(chm_arr)
        temp_chm[~valid_mask] = 0.0
        smoothed_chm = ndimage.median_filter(temp_chm, size=filter_size)
        chm_arr = np.where(valid_mask, smoothed_chm, out_nodata).astype(np.float32)

    return Raster(
        data=chm_arr,
        transform=dsm.transform,
        crs=dsm.crs,
        nodata=out_nodata
    )
