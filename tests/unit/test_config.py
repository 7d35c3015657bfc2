# tests/unit/test_config.py

from pathlib import Path
from types import SimpleNamespace

import pytest

from tiledem import resources
from tiledem.cli import build_parser, config_from_args, main
from tiledem.config import PipelineConfig, ParallelConfig, Product, RasterizeMode, ChmMethod
from tiledem.lidar.classify import GroundFilterParams, TerrainType
from tiledem.lidar.tiling import build_tiles
from tiledem.pipeline import OutputLayout

GIB = 1024**3

def test_products_in_build_order():
    assert PipelineConfig().products == [Product.DEM, Product.DSM]
    assert PipelineConfig(include_chm=True).products == [Product.DEM, Product.DSM, Product.CHM]

@pytest.mark.parametrize("workers, threads", [(0, 1), (1, 0), (-2, 4)])
def test_parallel_config_rejects_non_positive(workers, threads):
    with pytest.raises(ValueError):
        ParallelConfig(workers=workers, threads=threads)

def test_output_layout_names():
    fine = OutputLayout(Path("out"), PipelineConfig(resolution=0.05).tag)
    coarse = OutputLayout(fine.root, PipelineConfig(resolution=1.0).tag)

    assert fine.final(Product.DEM).name == "dem_5cm.tif"
    assert coarse.final(Product.DEM).name == "dem_1m.tif"
    assert coarse.with_holes(Product.DSM).name == "dsm_with_holes_1m.tif"
    assert coarse.rasters_dir(Product.CHM).parts[-2:] == ("rasters", "chm_1m")

@pytest.fixture
def machine(monkeypatch):
    """Fixture: Pretends to run on a 4-core machine with 3 GiB available."""
    monkeypatch.setattr(resources.psutil, "cpu_count", lambda logical=True: 4)
    monkeypatch.setattr(resources.psutil, "virtual_memory", lambda: SimpleNamespace(available=3 * GIB))

def test_plan_as_requested(machine):
    plan = resources.plan_parallelism(ParallelConfig(workers=2, threads=2))
    assert (plan.workers, plan.threads) == (2, 2)
    assert plan.reason == "as requested"

def test_plan_caps_to_cores(machine):
    plan = resources.plan_parallelism(ParallelConfig(workers=8, threads=2))
    assert (plan.workers, plan.threads) == (2, 2)

    plan = resources.plan_parallelism(ParallelConfig(workers=3, threads=8))
    assert (plan.workers, plan.threads) == (1, 4)

def test_plan_caps_to_tiles(machine):
    plan = resources.plan_parallelism(ParallelConfig(workers=4), n_tiles=1)
    assert plan.workers == 1
    assert "tiles" in plan.reason

def test_plan_caps_to_memory(machine):
    # 2 GiB budget after the reserve, 1 GiB per worker with the safety factor
    plan = resources.plan_parallelism(ParallelConfig(workers=4), tile_memory_bytes=GIB // 2)
    assert plan.workers == 2
    assert "memory" in plan.reason
    assert plan.as_config() == ParallelConfig(workers=2, threads=1)

def test_estimate_tile_memory():
    tiles = build_tiles((0.0, 100.0, 0.0, 100.0), n_tiles=(2, 2), buffer_size=0.0)
    assert resources.estimate_tile_memory(1000, tiles) == 1000 // 4 * resources.BYTES_PER_POINT
    assert resources.estimate_tile_memory(0, tiles) == 0

def test_cli_defaults():
    config = config_from_args(build_parser().parse_args(["in.las", "out"]))

    assert config.resolution == 1.0
    assert config.tiling.n_tiles == (2, 2)
    assert config.tiling.tile_size is None
    assert config.ground == GroundFilterParams.from_terrain(TerrainType.RELIEF)
    assert config.rasterize_mode == RasterizeMode.FAST
    assert config.products == [Product.DEM, Product.DSM]
    assert config.reuse_artifacts

def test_cli_full_options():
    args = build_parser().parse_args([
        "in.las", "out",
        "--resolution", "0.05",
        "--tile-size", "250",
        "--terrain", "flat",
        "--no-smooth",
        "--layered",
        "--chm", "--chm-method", "difference",
        "--workers", "3", "--threads", "2",
        "--crs", "EPSG:2949",
        "--overwrite"
    ])
    config = config_from_args(args)

    assert config.tag == "5cm"
    assert config.tiling.n_tiles is None
    assert config.tiling.tile_size == 250.0
    assert config.ground.rigidness == GroundFilterParams.from_terrain(TerrainType.FLAT).rigidness
    assert config.ground.smooth is False
    assert config.rasterize_mode == RasterizeMode.LAYERED
    assert config.chm_method == ChmMethod.DIFFERENCE
    assert Product.CHM in config.products
    assert config.parallel == ParallelConfig(workers=3, threads=2)
    assert config.crs == "EPSG:2949"
    assert not config.reuse_artifacts

def test_cli_rejects_both_tilings():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["in.las", "out", "--tiles", "2", "2", "--tile-size", "10"])

def test_main_reports_missing_source(tmp_path):
    assert main([str(tmp_path / "missing.las"), str(tmp_path / "out")]) == 1
