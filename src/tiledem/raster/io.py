# src/tiledem/raster/io.py

"""
This module handles all disk-based operations for raster data.
"""

import logging
from pathlib import Path
from typing import Union

import rasterio

from tiledem.exceptions import IrrecoverableIOError
from .layer import Raster

log = logging.getLogger(__name__)

__all__ = [
    "load",
    "save"
]

def load(path: Union[str, Path]) -> Raster:
    """
    Load a raster from disk into memory.

    Args:
        path: Path to raster file. All supported GDAL formats are accepted.

    Returns:
        Raster: In-memory Raster object

    Raises:
        FileNotFoundError: If the path does not exist.
        IrrecoverableIOError: If GDAL cannot read the file.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Raster file not found: {path}")

    log.debug(f"Loading raster: {path.name}")

    try:
        with rasterio.open(path) as src:
            return Raster(
                data=src.read(),
                transform=src.transform,
                crs=src.crs,
                nodata=src.nodata
            )
    except rasterio.RasterioIOError as e:
        raise IrrecoverableIOError(f"Failed to read raster from {path}: {e}") from e

def save(
    raster: Raster,
    path: Union[str, Path],
    **profile_kwargs
) -> Path:
    """
    Write a Raster object to disk as a GeoTIFF.

    Args:
        raster: Raster object to save
        path: Output file path.
        **profile_kwargs: Override default rasterio profile settings.

    Returns:
        Path: The written path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    profile = raster.profile.copy()
    profile.update(profile_kwargs)

    log.debug(f"Saving raster {raster.shape} → {path}")

    try:
        with rasterio.open(path, 'w', **profile) as dst:
            dst.write(raster.data)
    except Exception as e:
        raise IrrecoverableIOError(f"Failed to save raster to {path}: {e}") from e
    return path
