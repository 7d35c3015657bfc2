# src/tiledem/lidar/store.py

"""
This module persists per-tile point clouds and reassembles buffered neighborhoods from them.
"""

from pathlib import Path
from typing import Union, List, Optional, Sequence
import logging

import numpy as np
from shapely import STRtree

from .layer import PointCloud
from .tiling import TileDescriptor

log = logging.getLogger(__name__)

__all__ = [
    "TileStore",
    "read_buffered_from_source"
]

def read_buffered_from_source(
    source: Union[str, Path],
    tile: TileDescriptor,
    chunk_size: int = 1_000_000
) -> PointCloud:
    """
    Streams a raw point cloud and keeps the points inside the tile's buffered extent.

    Args:
        source (Union[str, Path]): Raw .las/.laz survey.
        tile (TileDescriptor): Tile to load.
        chunk_size (int): Points read per chunk.

    Returns:
        PointCloud: Points in file order with the `buffer` flag set outside the core.
    """
    parts = []
    for chunk in PointCloud.iter_chunks(source, chunk_size=chunk_size):
        mask = tile.buffered_mask(chunk.x, chunk.y)
        if np.any(mask):
            parts.append(chunk.subset(mask))

    pc = PointCloud.concat(parts)
    pc.buffer = ~tile.core_mask(pc.x, pc.y)
    return pc

class TileStore:
    """
    Directory of per-tile point cloud files.

    Each tile owns one file, named after the tile, holding its core points only.
    An STRtree over the tile core extents answers which files intersect a query region.

    Args:
        root (Union[str, Path]): Directory holding the tile files.
        tiles (Sequence[TileDescriptor]): All tiles of the survey.
        suffix (str): File extension (".las" or ".laz").
    """
    def __init__(
        self,
        root: Union[str, Path],
        tiles: Sequence[TileDescriptor],
        suffix: str = ".las"
    ):
        self.root = Path(root)
        self.tiles = list(tiles)
        self.suffix = suffix
        self._index = None

    def __getstate__(self):
        # The spatial index is rebuilt on demand in worker processes
        state = self.__dict__.copy()
        state["_index"] = None
        return state

    @property
    def index(self) -> STRtree:
        if self._index is None:
            self._index = STRtree([t.core_box() for t in self.tiles])
        return self._index

    def path_for(self, tile: TileDescriptor) -> Path:
        return self.root / f"tile_{tile.name}{self.suffix}"

    def exists(self, tile: TileDescriptor) -> bool:
        path = self.path_for(tile)
        return path.exists() and path.stat().st_size > 0

    def available(self) -> List[TileDescriptor]:
        """Tiles that have a persisted file."""
        return [t for t in self.tiles if self.exists(t)]

    def write(self, tile: TileDescriptor, pc: PointCloud) -> Path:
        path = self.path_for(tile)
        pc.to_file(path)
        log.debug(f"Stored {len(pc)} points for {tile} → {path.name}")
        return path

    def read(self, tile: TileDescriptor) -> Optional[PointCloud]:
        """Reads a tile's own points, or None if the tile has no file."""
        if not self.exists(tile):
            return None
        return PointCloud.from_file(self.path_for(tile))

    def neighbors(self, tile: TileDescriptor) -> List[TileDescriptor]:
        """Tiles whose core intersects the buffered extent of `tile` (including itself)."""
        hits = self.index.query(tile.buffered_box(), predicate="intersects")
        return [self.tiles[i] for i in sorted(hits)]

    def load_buffered(self, tile: TileDescriptor) -> PointCloud:
        """
        Reassembles the buffered neighborhood of a tile from the stored neighbors.

        Args:
            tile (TileDescriptor): Tile to load.

        Returns:
            PointCloud: Points inside the buffered extent, `buffer` flag set outside the core.
        """
        parts = []
        for other in self.neighbors(tile):
            pc = self.read(other)
            if pc is None:
                continue
            mask = tile.buffered_mask(pc.x, pc.y)
            if np.any(mask):
                parts.append(pc.subset(mask))

        pc = PointCloud.concat(parts)
        pc.buffer = ~tile.core_mask(pc.x, pc.y)
        return pc
