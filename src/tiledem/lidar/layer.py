# src/tiledem/lidar/layer.py

"""
This module defines the core data structure for lidar point clouds, along with methods for loading, streaming and writing.
"""

from enum import IntEnum
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Union, Generator, Optional, Sequence, Tuple
import logging

import laspy
import numpy as np

from tiledem.exceptions import IrrecoverableIOError

log = logging.getLogger(__name__)

__all__ = [
    "PointClass",
    "PointCloud"
]

class PointClass(IntEnum):
    """
    ASPRS classification codes used by the pipeline.

    Options:
        CREATED: Never classified.
        UNCLASSIFIED: Processed, not ground.
        GROUND: Bare earth.
        LOW_NOISE: Low point noise, excluded from every surface.
        HIGH_NOISE: High noise (LAS 1.4), excluded from every surface.
    """
    CREATED = 0
    UNCLASSIFIED = 1
    GROUND = 2
    LOW_NOISE = 7
    HIGH_NOISE = 18

NOISE_CLASSES = (PointClass.LOW_NOISE, PointClass.HIGH_NOISE)

@dataclass
class PointCloud:
    """
    Core data structure for holding LiDAR point attributes as parallel arrays.

    Primary point cloud attributes:
        x (np.ndarray): X coordinates of points.
        y (np.ndarray): Y coordinates of points.
        z (np.ndarray): Z coordinates (elevation) of points.
        classification (np.ndarray): Point classifications (see PointClass).
        return_number (np.ndarray): Return number for each point (1 for first return, etc.).
        number_of_returns (np.ndarray): Returns announced for the point's pulse.

    Pulse metadata and tile bookkeeping:
        gps_time (np.ndarray | None): Emission time; identical for all returns of one pulse.
        point_source_id (np.ndarray | None): Flight line identifier.
        buffer (np.ndarray | None): True where the point lies in a tile's overlap margin.
    """
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray
    classification: np.ndarray
    return_number: np.ndarray
    number_of_returns: np.ndarray
    gps_time: Optional[np.ndarray] = None
    point_source_id: Optional[np.ndarray] = None
    buffer: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return len(self.x)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Returns (xmin, xmax, ymin, ymax) of the points."""
        if len(self) == 0:
            raise ValueError("Empty point cloud has no bounds")
        return (float(self.x.min()), float(self.x.max()), float(self.y.min()), float(self.y.max()))

    @property
    def noise_mask(self) -> np.ndarray:
        return np.isin(self.classification, [int(c) for c in NOISE_CLASSES])

    @property
    def last_return_mask(self) -> np.ndarray:
        return self.return_number >= self.number_of_returns

    def subset(self, mask: np.ndarray) -> 'PointCloud':
        """Returns a new PointCloud with the points selected by a boolean or index mask."""
        values = {}
        for f in fields(self):
            arr = getattr(self, f.name)
            values[f.name] = None if arr is None else arr[mask]
        return PointCloud(**values)

    @classmethod
    def empty(cls) -> 'PointCloud':
        return cls(
            x=np.empty(0), y=np.empty(0), z=np.empty(0),
            classification=np.empty(0, dtype=np.uint8),
            return_number=np.empty(0, dtype=np.uint8),
            number_of_returns=np.empty(0, dtype=np.uint8)
        )

    @classmethod
    def concat(cls, clouds: Sequence['PointCloud']) -> 'PointCloud':
        """
        Concatenates clouds in order. Optional attributes survive only if every input carries them.
        """
        clouds = [c for c in clouds if len(c) > 0]
        if not clouds:
            return cls.empty()

        values = {}
        for f in fields(cls):
            parts = [getattr(c, f.name) for c in clouds]
            values[f.name] = None if any(p is None for p in parts) else np.concatenate(parts)
        return cls(**values)

    @classmethod
    def from_las(cls, las) -> 'PointCloud':
        """
        Maps laspy point attributes to our PointCloud structure.

        Args:
            las: A laspy LasData or ScaleAwarePointRecord (chunk).
        """
        dims = set(las.point_format.dimension_names)
        return cls(
            x=np.array(las.x, dtype=np.float64),
            y=np.array(las.y, dtype=np.float64),
            z=np.array(las.z, dtype=np.float64),
            classification=np.array(las.classification, dtype=np.uint8),
            return_number=np.array(las.return_number, dtype=np.uint8),
            number_of_returns=np.array(las.number_of_returns, dtype=np.uint8),
            gps_time=np.array(las.gps_time, dtype=np.float64) if "gps_time" in dims else None,
            point_source_id=np.array(las.point_source_id, dtype=np.uint16) if "point_source_id" in dims else None
        )

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path]
        ) -> 'PointCloud':
        """
        Loads the entirety of a LiDAR point cloud into memory.

        Args:
            path (Union[str, Path]): Target .las or .laz file.

        Returns:
            PointCloud: Fully populated object.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Lidar file not found: {path}")

        try:
            with laspy.open(path) as fh:
                return cls.from_las(fh.read())
        except laspy.LaspyException as e:
            raise IrrecoverableIOError(f"Failed to read point cloud {path}: {e}") from e

    @classmethod
    def iter_chunks(
        cls,
        path: Union[str, Path],
        chunk_size: int = 1_000_000
        ) -> Generator['PointCloud', None, None]:
        """
        Iterates over a LiDAR file in chunks to maintain strict memory safety.

        Chunks are yielded in file order, so consecutive returns of a pulse stay adjacent.

        Args:
            path (Union[str, Path]): Target .las or .laz file.
            chunk_size (int): Number of points to stream per chunk.

        Yields:
            Generator[PointCloud, None, None]: Sequential point cloud fragments.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Lidar file not found: {path}")

        try:
            with laspy.open(path) as fh:
                for chunk in fh.chunk_iterator(chunk_size):
                    yield cls.from_las(chunk)
        except laspy.LaspyException as e:
            raise IrrecoverableIOError(f"Failed to stream point cloud {path}: {e}") from e

    @staticmethod
    def read_header(path: Union[str, Path]) -> Tuple[Tuple[float, float, float, float], int]:
        """
        Reads the XY bounding box (xmin, xmax, ymin, ymax) and point count from a LAS header.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Lidar file not found: {path}")

        try:
            with laspy.open(path) as fh:
                header = fh.header
                bounds = (float(header.x_min), float(header.x_max), float(header.y_min), float(header.y_max))
                return bounds, int(header.point_count)
        except laspy.LaspyException as e:
            raise IrrecoverableIOError(f"Failed to read header of {path}: {e}") from e

    @staticmethod
    def read_crs(path: Union[str, Path]) -> Optional[str]:
        """
        Reads the CRS declared in a LAS header as WKT, or None if the header has none.
        """
        path = Path(path)
        try:
            with laspy.open(path) as fh:
                crs = fh.header.parse_crs()
        except laspy.LaspyException as e:
            raise IrrecoverableIOError(f"Failed to read header of {path}: {e}") from e
        return crs.to_wkt() if crs is not None else None

    def to_file(
        self,
        path: Union[str, Path],
        scale: float = 0.001
        ) -> Path:
        """
        Writes the points to a LAS 1.4 file (point format 6).

        Args:
            path (Union[str, Path]): Output .las (or .laz, if a LAZ backend is installed) path.
            scale (float): Coordinate quantization step.

        Returns:
            Path: The written path.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        header = laspy.LasHeader(point_format=6, version="1.4")
        header.scales = np.array([scale, scale, scale])
        if len(self) > 0:
            header.offsets = np.floor([self.x.min(), self.y.min(), self.z.min()])

        las = laspy.LasData(header)
        las.x = self.x
        las.y = self.y
        las.z = self.z
        las.classification = self.classification.astype(np.uint8)
        las.return_number = self.return_number.astype(np.uint8)
        las.number_of_returns = self.number_of_returns.astype(np.uint8)
        if self.gps_time is not None:
            las.gps_time = self.gps_time
        if self.point_source_id is not None:
            las.point_source_id = self.point_source_id.astype(np.uint16)

        try:
            las.write(path)
        except (OSError, laspy.LaspyException) as e:
            raise IrrecoverableIOError(f"Failed to write point cloud {path}: {e}") from e
        return path
