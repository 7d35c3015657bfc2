# src/tiledem/__init__.py
#
# Copyright (c) The tiledem project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
tiledem converts large aerial point clouds into DEM, DSM and CHM rasters tile by tile.
"""

from .config import (
    PipelineConfig,
    TilingConfig,
    ParallelConfig,
    Product,
    RasterizeMode,
    ChmMethod,
    resolution_tag
)
from .pipeline import (
    PipelineResult,
    run_pipeline
)

__version__ = "0.1.0"

__all__ = [
    "PipelineConfig",
    "TilingConfig",
    "ParallelConfig",
    "Product",
    "RasterizeMode",
    "ChmMethod",
    "resolution_tag",
    "PipelineResult",
    "run_pipeline",
]
