import argparse
import sys
import logging
from pathlib import Path
from typing import List, Optional

from tiledem.config import PipelineConfig, TilingConfig, ParallelConfig, RasterizeMode, ChmMethod
from tiledem.exceptions import TiledemError
from tiledem.lidar.classify import GroundFilterParams, TerrainType
from tiledem.pipeline import run_pipeline

def setup_logging(level: int = logging.INFO) -> None:
    """
    Configures the standard logging format and level for the command-line interface.

    Args:
        level (int): The logging threshold level.
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tiledem",
        description="Tiled point cloud to DEM/DSM/CHM rasters"
    )
    parser.add_argument("source", type=Path, help="Raw .las/.laz survey.")
    parser.add_argument("output_dir", type=Path, help="Directory receiving artifacts and final rasters.")
    parser.add_argument(
        "--resolution",
        type=float,
        default=1.0,
        help="Output cell size in CRS units. Defaults to 1.0."
    )

    tiling = parser.add_mutually_exclusive_group()
    tiling.add_argument(
        "--tiles",
        type=int,
        nargs=2,
        metavar=("NX", "NY"),
        default=(2, 2),
        help="Target tile counts along X and Y. Defaults to 2 2."
    )
    tiling.add_argument(
        "--tile-size",
        type=float,
        help="Explicit tile side length, overriding --tiles."
    )
    parser.add_argument(
        "--buffer-fraction",
        type=float,
        default=0.05,
        help="Tile buffer as a fraction of the tile side. Defaults to 0.05."
    )

    parser.add_argument(
        "--terrain",
        choices=[t.name.lower() for t in TerrainType],
        default="relief",
        help="Ground filter preset. Defaults to relief."
    )
    parser.add_argument(
        "--no-smooth",
        action="store_true",
        help="Disable slope smoothing in the ground filter."
    )
    parser.add_argument(
        "--layered",
        action="store_true",
        help="Use the slower layered triangulation for DSM/CHM."
    )
    parser.add_argument("--chm", action="store_true", help="Also build the canopy height model.")
    parser.add_argument(
        "--chm-method",
        choices=[m.value for m in ChmMethod],
        default=ChmMethod.NORMALIZED.value,
        help="Derive the CHM from normalized heights or as DSM - DEM."
    )
    parser.add_argument("--workers", type=int, default=1, help="Tile worker processes. Defaults to 1.")
    parser.add_argument("--threads", type=int, default=1, help="Threads per worker. Defaults to 1.")
    parser.add_argument("--crs", type=str, help="Output CRS, overriding the source header.")
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Recompute every stage instead of reusing existing artifacts."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return parser

def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    """
    Translates parsed arguments into a PipelineConfig.
    """
    ground = GroundFilterParams.from_terrain(TerrainType[args.terrain.upper()])
    if args.no_smooth:
        ground.smooth = False

    return PipelineConfig(
        resolution=args.resolution,
        crs=args.crs,
        tiling=TilingConfig(
            n_tiles=None if args.tile_size else tuple(args.tiles),
            tile_size=args.tile_size,
            buffer_fraction=args.buffer_fraction
        ),
        ground=ground,
        rasterize_mode=RasterizeMode.LAYERED if args.layered else RasterizeMode.FAST,
        include_chm=args.chm,
        chm_method=ChmMethod(args.chm_method),
        reuse_artifacts=not args.overwrite,
        parallel=ParallelConfig(workers=args.workers, threads=args.threads)
    )

def main(argv: Optional[List[str]] = None) -> int:
    """
    Parses command-line arguments and runs the pipeline.

    Returns:
        int: Process exit code (0 on success, 1 on a fatal error).
    """
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = config_from_args(args)
        result = run_pipeline(args.source, args.output_dir, config)
    except (TiledemError, FileNotFoundError, ValueError) as e:
        logging.error(f"Pipeline aborted: {e}")
        return 1

    for product, path in result.outputs.items():
        logging.info(f"{product.value.upper()}: {path}")
    if result.failed_tiles:
        logging.warning(f"{len(result.failed_tiles)} tiles failed: {', '.join(t.name for t in result.failed_tiles)}")
    return 0

if __name__ == "__main__":
    sys.exit(main())
