# src/tiledem/lidar/tiling.py

"""
This module computes the regular grid of buffered tiles covering a point cloud's bounding box.
"""

import math
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from shapely.geometry import box, Polygon

log = logging.getLogger(__name__)

__all__ = [
    "BBox",
    "TileDescriptor",
    "build_tiles"
]

BBox = Tuple[float, float, float, float]  # xmin, xmax, ymin, ymax

@dataclass(frozen=True)
class TileDescriptor:
    """
    A spatial chunk of the survey.

    The core extents of all tiles partition the bounding box. The buffered extent
    grows the core by `buffer` on every side and is only read, never written.

    Args:
        ix (int): Column index of the tile in the tiling grid.
        iy (int): Row index of the tile in the tiling grid (0 at the bottom).
        xmin (float): Left edge of the core extent.
        xmax (float): Right edge of the core extent.
        ymin (float): Bottom edge of the core extent.
        ymax (float): Top edge of the core extent.
        buffer (float): Overlap margin in CRS units.
        origin (Tuple[float, float]): Alignment origin (bounding box center) shared by all tiles.
        bbox (BBox): The global bounding box the tiles partition.
    """
    ix: int
    iy: int
    xmin: float
    xmax: float
    ymin: float
    ymax: float
    buffer: float
    origin: Tuple[float, float]
    bbox: BBox

    @property
    def key(self) -> Tuple[int, int]:
        return (self.ix, self.iy)

    @property
    def name(self) -> str:
        """Identifier derived from the lower-left corner of the core extent."""
        return f"{self.xmin:.0f}_{self.ymin:.0f}"

    @property
    def touches_xmax(self) -> bool:
        return self.xmax >= self.bbox[1]

    @property
    def touches_ymax(self) -> bool:
        return self.ymax >= self.bbox[3]

    @property
    def touches_ymin(self) -> bool:
        return self.ymin <= self.bbox[2]

    @property
    def core_bounds(self) -> BBox:
        return (self.xmin, self.xmax, self.ymin, self.ymax)

    @property
    def buffered_bounds(self) -> BBox:
        b = self.buffer
        return (self.xmin - b, self.xmax + b, self.ymin - b, self.ymax + b)

    def core_box(self) -> Polygon:
        return box(self.xmin, self.ymin, self.xmax, self.ymax)

    def buffered_box(self) -> Polygon:
        xmin, xmax, ymin, ymax = self.buffered_bounds
        return box(xmin, ymin, xmax, ymax)

    def core_mask(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        """
        Membership of points in the core extent.

        Cores are half-open ([min, max)) except along the bounding box's maximum edges,
        so each point of the survey belongs to exactly one tile.
        """
        in_x = (x >= self.xmin) & ((x <= self.xmax) if self.touches_xmax else (x < self.xmax))
        in_y = (y >= self.ymin) & ((y <= self.ymax) if self.touches_ymax else (y < self.ymax))
        return in_x & in_y

    def buffered_mask(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        xmin, xmax, ymin, ymax = self.buffered_bounds
        return (x >= xmin) & (x <= xmax) & (y >= ymin) & (y <= ymax)

    def __str__(self) -> str:
        return f"tile {self.name} ({self.ix},{self.iy})"

def _axis_edges(lo: float, hi: float, center: float, side: float) -> np.ndarray:
    """
    Lays out tile edges symmetrically around the center and clips them to [lo, hi].
    """
    count = max(1, int(math.ceil((hi - lo) / side - 1e-9)))
    edges = center + (np.arange(count + 1) - count / 2.0) * side
    edges = np.clip(edges, lo, hi)
    # The outer edges are pinned to the bounding box so the union is exact
    edges[0] = lo
    edges[-1] = hi
    return edges

def _buffer_margin(side: float, fraction: float, step: float) -> float:
    if fraction <= 0:
        return 0.0
    return math.ceil(fraction * side / step - 1e-9) * step

def build_tiles(
    bounds: BBox,
    n_tiles: Optional[Tuple[int, int]] = (2, 2),
    tile_size: Optional[float] = None,
    buffer_fraction: float = 0.05,
    buffer_step: float = 0.5,
    buffer_size: Optional[float] = None
) -> List[TileDescriptor]:
    """
    Computes square, buffered tiles whose core extents exactly partition the bounding box.

    Steps:
        1. The side length is the explicit `tile_size`, or max(width / n_wide, height / n_tall)
           so that tiles stay square.
        2. Tile edges are laid out around the bounding box center, which anchors the
           tiling independently of how the box is truncated, then clipped to the box.
        3. The buffer margin is the fraction of the side rounded up to `buffer_step`,
           unless an absolute `buffer_size` is given.

    Args:
        bounds (BBox): Global bounding box (xmin, xmax, ymin, ymax).
        n_tiles (Tuple[int, int]): Target tile counts along X and Y. Ignored if tile_size is set.
        tile_size (float): Explicit side length.
        buffer_fraction (float): Buffer margin as a fraction of the side length.
        buffer_step (float): Rounding step of the buffer margin.
        buffer_size (float): Absolute buffer margin overriding the fraction.

    Returns:
        List[TileDescriptor]: Tiles ordered row by row from the bottom-left corner.
    """
    xmin, xmax, ymin, ymax = bounds
    width = xmax - xmin
    height = ymax - ymin
    if width <= 0 or height <= 0:
        raise ValueError(f"Bounding box must have a positive extent, got {bounds}")

    if tile_size is not None:
        if tile_size <= 0:
            raise ValueError(f"Tile size must be positive, got {tile_size}")
        side = float(tile_size)
    else:
        if n_tiles is None or min(n_tiles) < 1:
            raise ValueError(f"Tile counts must be at least 1, got {n_tiles}")
        side = max(width / n_tiles[0], height / n_tiles[1])

    if buffer_size is not None:
        buffer = float(buffer_size)
    else:
        if buffer_step <= 0:
            raise ValueError(f"Buffer step must be positive, got {buffer_step}")
        buffer = _buffer_margin(side, buffer_fraction, buffer_step)

    origin = ((xmin + xmax) / 2.0, (ymin + ymax) / 2.0)
    x_edges = _axis_edges(xmin, xmax, origin[0], side)
    y_edges = _axis_edges(ymin, ymax, origin[1], side)

    tiles = []
    for iy in range(len(y_edges) - 1):
        for ix in range(len(x_edges) - 1):
            x0, x1 = float(x_edges[ix]), float(x_edges[ix + 1])
            y0, y1 = float(y_edges[iy]), float(y_edges[iy + 1])
            if x1 <= x0 or y1 <= y0:
                continue
            tiles.append(TileDescriptor(
                ix=ix, iy=iy,
                xmin=x0, xmax=x1, ymin=y0, ymax=y1,
                buffer=buffer,
                origin=origin,
                bbox=(float(xmin), float(xmax), float(ymin), float(ymax))
            ))

    log.info(
        f"Tiling grid: {len(x_edges) - 1}x{len(y_edges) - 1} tiles | side={side:.3f} "
        f"buffer={buffer:.3f} origin=({origin[0]:.3f}, {origin[1]:.3f})"
    )
    return tiles
