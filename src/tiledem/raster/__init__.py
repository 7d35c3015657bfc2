# src/tiledem/raster/__init__.py
#
# Copyright (c) The tiledem project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The raster subpackage provides the raster container, GeoTIFF I/O, the global
output grid, tile merging, gap filling and product reconciliation.
"""
# Core data structure
from .layer import (
    Raster
)

# I/O operations
from .io import (
    load,
    save
)

# Global grid
from .grid import (
    RasterGrid
)

# Merge and post-processing
from .mosaic import (
    merge_tiles,
    trim_nodata
)
from .fill import (
    fill_gaps
)
from .reconcile import (
    crop_to_intersection,
    crop_to_common_extent,
    mask_to_boundary
)

__all__ = [
    # Core data structure
    "Raster",

    # I/O operations
    "load",
    "save",

    # Global grid
    "RasterGrid",

    # Merge and post-processing
    "merge_tiles",
    "trim_nodata",
    "fill_gaps",
    "crop_to_intersection",
    "crop_to_common_extent",
    "mask_to_boundary",
]
