# src/tiledem/exceptions.py

"""
This module defines the error taxonomy shared by every processing stage.

Tile-level errors are collected by the scheduler and reported as warnings,
while I/O errors on the point or raster stores abort the run.
"""

__all__ = [
    "TiledemError",
    "DegenerateGeometryError",
    "RasterValidationError",
    "IrrecoverableIOError",
    "PipelineError"
]

class TiledemError(Exception):
    """Base class for all errors raised by tiledem."""

class DegenerateGeometryError(TiledemError):
    """A tile cannot be classified or triangulated (too few or collinear points)."""

class RasterValidationError(TiledemError, ValueError):
    """Raster inputs are malformed or cannot be aligned with each other."""

class IrrecoverableIOError(TiledemError, IOError):
    """Reading or writing a data store failed. Never retried."""

class PipelineError(TiledemError):
    """A whole stage produced no usable output."""
