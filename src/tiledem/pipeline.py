# src/tiledem/pipeline.py

"""
This module orchestrates the full point-cloud-to-raster run.

Stages run in order with a barrier between them. Each stage persists its artifacts
in the output directory, and with `reuse_artifacts` enabled an existing artifact is
taken as valid, so an interrupted run resumes where it stopped:

    tiles/tile_<name>.las                    classified core points per tile
    boundary.gpkg                            survey boundary polygon
    rasters/<product>_<tag>/tile_<name>.tif  per-tile product rasters
    <product>_with_holes_<tag>.tif           merged product before gap filling
    <product>_<tag>.tif                      final, reconciled and masked product
"""

import logging
from dataclasses import dataclass, field, asdict
from functools import partial
from pathlib import Path
from typing import Union, Optional, Dict, List

from shapely.geometry.base import BaseGeometry

from tiledem.config import PipelineConfig, Product, ChmMethod
from tiledem.exceptions import PipelineError
from tiledem.lidar.layer import PointCloud
from tiledem.lidar.tiling import TileDescriptor, build_tiles
from tiledem.lidar.store import TileStore
from tiledem.lidar.classify import classify_tile
from tiledem.lidar.boundary import extract_boundary, save_boundary, load_boundary
from tiledem.lidar.rasterize import NODATA_VAL
from tiledem.lidar.generate_model import SurfaceParams, rasterize_tile, calculate_chm
from tiledem.raster.layer import Raster
from tiledem.raster.grid import RasterGrid
from tiledem.raster.io import load, save
from tiledem.raster.fill import fill_gaps
from tiledem.raster.mosaic import merge_tiles, trim_nodata
from tiledem.raster.reconcile import crop_to_common_extent, mask_to_boundary
from tiledem.resources import plan_parallelism, estimate_tile_memory
from tiledem.scheduler import TileResult, TileStatus, run_tiles

log = logging.getLogger(__name__)

__all__ = [
    "OutputLayout",
    "PipelineResult",
    "run_pipeline"
]

@dataclass(frozen=True)
class OutputLayout:
    """
    Artifact paths of a run under one output directory.
    """
    root: Path
    tag: str

    @property
    def tiles_dir(self) -> Path:
        return self.root / "tiles"

    @property
    def boundary(self) -> Path:
        return self.root / "boundary.gpkg"

    def rasters_dir(self, product: Product) -> Path:
        return self.root / "rasters" / f"{product.value}_{self.tag}"

    def with_holes(self, product: Product) -> Path:
        return self.root / f"{product.value}_with_holes_{self.tag}.tif"

    def final(self, product: Product) -> Path:
        return self.root / f"{product.value}_{self.tag}.tif"

@dataclass
class PipelineResult:
    """
    Outcome of a run.

    Args:
        outputs: Final raster per product.
        boundary: Boundary polygon file.
        reports: Per-tile results of every tiled stage, keyed by stage name.
        failed_tiles: Tiles that failed in at least one stage.
    """
    outputs: Dict[Product, Path] = field(default_factory=dict)
    boundary: Optional[Path] = None
    reports: Dict[str, List[TileResult]] = field(default_factory=dict)
    failed_tiles: List[TileDescriptor] = field(default_factory=list)

def _existing(path: Path, reuse: bool) -> bool:
    return reuse and path.exists() and path.stat().st_size > 0

def _classify_stage(
    source: Path,
    store: TileStore,
    config: PipelineConfig,
    parallel,
    result: PipelineResult
):
    def reuse(tile: TileDescriptor):
        return store.path_for(tile) if store.exists(tile) else None

    func = partial(
        classify_tile,
        source=source,
        store=store,
        params=config.ground,
        chunk_size=config.chunk_size
    )
    reports = run_tiles(
        func, store.tiles, parallel, stage="classify",
        reuse=reuse if config.reuse_artifacts else None
    )
    result.reports["classify"] = reports

    if not any(r.ok for r in reports):
        raise PipelineError("No tile was classified, nothing to rasterize")

def _boundary_stage(
    store: TileStore,
    layout: OutputLayout,
    config: PipelineConfig,
    crs: Optional[str]
) -> BaseGeometry:
    if _existing(layout.boundary, config.reuse_artifacts):
        log.info(f"Reusing boundary {layout.boundary.name}")
        return load_boundary(layout.boundary)

    boundary = extract_boundary(store, config.boundary)
    save_boundary(boundary, layout.boundary, crs=crs)
    return boundary

def _surface_stage(
    product: Product,
    store: TileStore,
    grid: RasterGrid,
    layout: OutputLayout,
    config: PipelineConfig,
    parallel,
    crs: Optional[str],
    result: PipelineResult
) -> Raster:
    """
    Rasterizes every tile of a product, merges the tiles and saves the raster with holes.
    """
    path = layout.with_holes(product)
    if _existing(path, config.reuse_artifacts):
        log.info(f"Reusing {path.name}")
        return load(path)

    out_dir = layout.rasters_dir(product)

    def reuse(tile: TileDescriptor):
        tile_path = out_dir / f"tile_{tile.name}.tif"
        return tile_path if tile_path.exists() else None

    params = SurfaceParams(
        mode=config.rasterize_mode,
        tin=config.tin,
        layer_thresholds=tuple(config.layer_thresholds),
        layer_max_edge=config.layer_max_edge,
        threads=parallel.threads
    )
    func = partial(
        rasterize_tile,
        store=store,
        grid=grid,
        product=product,
        out_dir=out_dir,
        params=params,
        crs=crs
    )
    # Tiles without classified points are rasterized too: their neighbors' buffers may cover them
    reports = run_tiles(
        func, store.tiles, parallel, stage=f"rasterize {product.value}",
        reuse=reuse if config.reuse_artifacts else None
    )
    result.reports[f"rasterize_{product.value}"] = reports

    paths = [r.value for r in reports if r.ok]
    if not paths:
        raise PipelineError(f"No tile produced a {product.value} raster")

    merged = trim_nodata(merge_tiles(paths, grid, crs=crs, nodata=NODATA_VAL))
    save(merged, path)
    log.info(f"Saved {path.name} ({merged.height}x{merged.width})")
    return merged

def run_pipeline(
    source: Union[str, Path],
    out_dir: Union[str, Path],
    config: Optional[PipelineConfig] = None
) -> PipelineResult:
    """
    Converts a raw point cloud into final DEM, DSM and optional CHM rasters.

    Steps:
        1. Tiles the header bounding box and plans the worker pool.
        2. Classifies ground per tile (parallel), persisting the core points.
        3. Extracts the survey boundary from the classified tiles.
        4. Rasterizes each product per tile (parallel), merges and trims it.
        5. Fills gaps, crops all products to their common extent and masks them
           to the boundary.

    Args:
        source (Union[str, Path]): Raw .las/.laz survey.
        out_dir (Union[str, Path]): Output directory (created if missing).
        config (PipelineConfig): Run settings.

    Returns:
        PipelineResult: Final outputs and per-tile reports.

    Raises:
        PipelineError: When a stage yields no usable tile.
        IrrecoverableIOError: When a point or raster store cannot be read or written.
    """
    config = config or PipelineConfig()
    source = Path(source)
    layout = OutputLayout(Path(out_dir), config.tag)
    layout.root.mkdir(parents=True, exist_ok=True)
    result = PipelineResult(boundary=layout.boundary)

    if config.reuse_artifacts and all(_existing(layout.final(p), True) for p in config.products):
        log.info(f"All final products exist in {layout.root}, nothing to do")
        result.outputs = {p: layout.final(p) for p in config.products}
        return result

    bounds, point_count = PointCloud.read_header(source)
    crs = config.crs or PointCloud.read_crs(source)
    log.info(f"Source {source.name}: {point_count} points, bounds {bounds}")

    tiles = build_tiles(bounds, **asdict(config.tiling))
    parallel = plan_parallelism(
        config.parallel,
        n_tiles=len(tiles),
        tile_memory_bytes=estimate_tile_memory(point_count, tiles)
    ).as_config()

    store = TileStore(layout.tiles_dir, tiles)
    _classify_stage(source, store, config, parallel, result)

    boundary = _boundary_stage(store, layout, config, crs)

    grid = RasterGrid.from_bounds(bounds, config.resolution)
    surface_products = [p for p in config.products
                        if not (p == Product.CHM and config.chm_method == ChmMethod.DIFFERENCE)]

    filled = []
    for product in surface_products:
        raster = _surface_stage(product, store, grid, layout, config, parallel, crs, result)
        filled.append(fill_gaps(raster, radius=config.fill_radius, iterations=config.fill_iterations))

    finals = dict(zip(surface_products, crop_to_common_extent(filled)))
    if Product.CHM in config.products and Product.CHM not in finals:
        finals[Product.CHM] = calculate_chm(finals[Product.DSM], finals[Product.DEM], config.chm_filter_size)

    for product in config.products:
        masked = mask_to_boundary(finals[product], boundary)
        result.outputs[product] = save(masked, layout.final(product))
        log.info(f"Saved {layout.final(product).name}")

    failed = {}
    for reports in result.reports.values():
        for r in reports:
            if r.status == TileStatus.FAILED:
                failed[r.tile.key] = r.tile
    result.failed_tiles = [failed[k] for k in sorted(failed, key=lambda k: (k[1], k[0]))]

    return result
