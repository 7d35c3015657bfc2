# src/tiledem/config.py

"""
This module gathers every setting of a pipeline run into explicit dataclasses.

Nothing here is process-wide state: a PipelineConfig is built by the caller (or the
CLI) and handed to each stage.
"""

import math
from dataclasses import dataclass, field
from typing import Optional, Tuple, List

from tiledem.lidar.classify import GroundFilterParams
from tiledem.lidar.boundary import BoundaryParams
from tiledem.lidar.rasterize import TinParams
from tiledem.lidar.generate_model import Product, RasterizeMode, ChmMethod, LAYER_THRESHOLDS

__all__ = [
    "Product",
    "RasterizeMode",
    "ChmMethod",
    "ParallelConfig",
    "TilingConfig",
    "PipelineConfig",
    "resolution_tag"
]

@dataclass
class ParallelConfig:
    """
    Two-level parallelism.

    Args:
        workers (int): Processes handling tiles concurrently. 1 runs every tile in-process.
        threads (int): Threads available to natively threaded work inside one tile.
    """
    workers: int = 1
    threads: int = 1

    def __post_init__(self):
        if self.workers < 1 or self.threads < 1:
            raise ValueError(f"Workers and threads must be at least 1, got {self.workers}x{self.threads}")

@dataclass
class TilingConfig:
    """
    Tiling of the survey bounding box. See `tiledem.lidar.tiling.build_tiles`.
    """
    n_tiles: Optional[Tuple[int, int]] = (2, 2)
    tile_size: Optional[float] = None
    buffer_fraction: float = 0.05
    buffer_step: float = 0.5
    buffer_size: Optional[float] = None

@dataclass
class PipelineConfig:
    """
    Settings of a full run.

    Args:
        resolution (float): Output cell size in CRS units.
        crs (str | None): CRS of the outputs. Defaults to the CRS of the source header.
        tiling (TilingConfig): Tile layout.
        ground (GroundFilterParams): Ground filter settings.
        tin (TinParams): Triangulation policy.
        rasterize_mode (RasterizeMode): Fast or layered DSM/CHM surfaces.
        layer_thresholds (Tuple[float, ...]): Height thresholds of the layered mode.
        layer_max_edge (float): Longest triangle edge of the layered mode.
        include_chm (bool): Also build the canopy height model.
        chm_method (ChmMethod): How the CHM is derived.
        chm_filter_size (int): Median filter size of the difference CHM (0 disables it).
        boundary (BoundaryParams): Boundary extraction tuning.
        fill_radius (int): Gap fill window radius in cells.
        fill_iterations (int): Maximum gap fill passes.
        reuse_artifacts (bool): Skip stages whose outputs already exist.
        chunk_size (int): Points streamed per chunk from the source.
        parallel (ParallelConfig): Worker and thread counts.
    """
    resolution: float = 1.0
    crs: Optional[str] = None
    tiling: TilingConfig = field(default_factory=TilingConfig)
    ground: GroundFilterParams = field(default_factory=GroundFilterParams)
    tin: TinParams = field(default_factory=TinParams)
    rasterize_mode: RasterizeMode = RasterizeMode.FAST
    layer_thresholds: Tuple[float, ...] = LAYER_THRESHOLDS
    layer_max_edge: float = 2.0
    include_chm: bool = False
    chm_method: ChmMethod = ChmMethod.NORMALIZED
    chm_filter_size: int = 0
    boundary: BoundaryParams = field(default_factory=BoundaryParams)
    fill_radius: int = 1
    fill_iterations: int = 1
    reuse_artifacts: bool = True
    chunk_size: int = 1_000_000
    parallel: ParallelConfig = field(default_factory=ParallelConfig)

    def __post_init__(self):
        if self.resolution <= 0:
            raise ValueError(f"Resolution must be positive, got {self.resolution}")

    @property
    def products(self) -> List[Product]:
        """Products in build order. The difference CHM needs the final DEM and DSM first."""
        products = [Product.DEM, Product.DSM]
        if self.include_chm:
            products.append(Product.CHM)
        return products

    @property
    def tag(self) -> str:
        return resolution_tag(self.resolution)

def resolution_tag(resolution: float) -> str:
    """
    Encodes a resolution in output names: meters from 1 up, centimeters below.

    Examples: 1 -> "1m", 2.5 -> "2.5m", 0.5 -> "50cm", 0.05 -> "5cm".
    """
    if resolution <= 0 or not math.isfinite(resolution):
        raise ValueError(f"Resolution must be positive, got {resolution}")
    if resolution >= 1:
        return f"{resolution:g}m"
    return f"{round(resolution * 100, 6):g}cm"
