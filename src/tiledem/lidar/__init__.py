# src/tiledem/lidar/__init__.py
#
# Copyright (c) The tiledem project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The lidar subpackage provides core functionality for handling point clouds,
including I/O operations, tiling, per-tile ground classification, boundary
extraction and triangulated surface generation.
"""

# Data structure
from .layer import (
    PointClass,
    PointCloud
)

# Tiling and tile storage
from .tiling import (
    TileDescriptor,
    build_tiles
)
from .store import (
    TileStore,
    read_buffered_from_source
)

# Ground classification
from .classify import (
    TerrainType,
    GroundFilterParams,
    pulse_ids,
    correct_number_of_returns,
    classify_ground,
    classify_tile
)

# Survey boundary
from .boundary import (
    BoundaryParams,
    extract_boundary,
    save_boundary,
    load_boundary
)

# Rasterization and model generation
from .rasterize import (
    NODATA_VAL,
    TinParams,
    highest_per_xy,
    tin_interpolate,
    layered_tin_interpolate
)
from .generate_model import (
    Product,
    RasterizeMode,
    ChmMethod,
    SurfaceParams,
    normalize_heights,
    rasterize_tile,
    calculate_chm
)

__all__ = [
    # Data structure
    "PointClass",
    "PointCloud",

    # Tiling and tile storage
    "TileDescriptor",
    "build_tiles",
    "TileStore",
    "read_buffered_from_source",

    # Ground classification
    "TerrainType",
    "GroundFilterParams",
    "pulse_ids",
    "correct_number_of_returns",
    "classify_ground",
    "classify_tile",

    # Survey boundary
    "BoundaryParams",
    "extract_boundary",
    "save_boundary",
    "load_boundary",

    # Rasterization and model generation
    "NODATA_VAL",
    "TinParams",
    "highest_per_xy",
    "tin_interpolate",
    "layered_tin_interpolate",
    "Product",
    "RasterizeMode",
    "ChmMethod",
    "SurfaceParams",
    "normalize_heights",
    "rasterize_tile",
    "calculate_chm",
]
