# src/tiledem/resources.py

"""
This module sizes the worker pool against the hardware before tiles are dispatched.

It checks two key aspects:
- Cores: outer workers times inner threads never exceeds the logical core count
- Memory: workers are capped so their concurrent tiles fit in available RAM
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import psutil

from tiledem.config import ParallelConfig
from tiledem.lidar.tiling import TileDescriptor

log = logging.getLogger(__name__)

__all__ = [
    "ParallelPlan",
    "estimate_tile_memory",
    "plan_parallelism"
]

# Point attributes, Delaunay structures and query arrays per buffered point
BYTES_PER_POINT = 200
DEFAULT_SAFETY_FACTOR = 2.0
MIN_FREE_GB = 1.0

@dataclass(frozen=True)
class ParallelPlan:
    """
    Worker and thread counts actually used for a stage.

    Args:
        workers: Processes handling tiles concurrently.
        threads: Threads per worker.
        reason: Explanation of any reduction from the requested configuration.
    """
    workers: int
    threads: int
    reason: str

    def as_config(self) -> ParallelConfig:
        return ParallelConfig(workers=self.workers, threads=self.threads)

def estimate_tile_memory(point_count: int, tiles: Sequence[TileDescriptor]) -> int:
    """
    Estimates the peak bytes one tile needs, assuming uniform point density.

    Args:
        point_count: Points in the whole survey.
        tiles: Tile layout.

    Returns:
        int: Estimated bytes for the largest buffered tile.
    """
    if not tiles or point_count <= 0:
        return 0

    xmin, xmax, ymin, ymax = tiles[0].bbox
    area = max((xmax - xmin) * (ymax - ymin), 1e-9)
    largest = 0.0
    for t in tiles:
        bx0, bx1, by0, by1 = t.buffered_bounds
        largest = max(largest, (bx1 - bx0) * (by1 - by0))

    return int(point_count * min(1.0, largest / area) * BYTES_PER_POINT)

def plan_parallelism(
    parallel: ParallelConfig,
    n_tiles: Optional[int] = None,
    tile_memory_bytes: Optional[int] = None,
    safety_factor: float = DEFAULT_SAFETY_FACTOR,
    min_free_gb: float = MIN_FREE_GB
) -> ParallelPlan:
    """
    Reduces the requested parallelism to what the machine can sustain.

    Inner threads are honored first (up to the core count), then outer workers fill
    the remaining cores. Workers are further capped by the number of tiles and by
    available memory when a per-tile estimate is given.

    Args:
        parallel: Requested workers and threads.
        n_tiles: Number of tiles to process.
        tile_memory_bytes: Estimated peak memory of one tile.
        safety_factor: Multiplier applied to the tile estimate.
        min_free_gb: Memory left untouched for the rest of the system.

    Returns:
        ParallelPlan: Effective worker and thread counts.
    """
    cores = psutil.cpu_count(logical=True) or 1
    reasons = []

    threads = min(parallel.threads, cores)
    if threads < parallel.threads:
        reasons.append(f"threads capped to {cores} cores")

    workers = min(parallel.workers, max(1, cores // threads))
    if workers < parallel.workers:
        reasons.append(f"workers x threads capped to {cores} cores")

    if n_tiles is not None and 0 < n_tiles < workers:
        workers = n_tiles
        reasons.append(f"only {n_tiles} tiles")

    if tile_memory_bytes:
        mem = psutil.virtual_memory()
        budget = mem.available - int(min_free_gb * (1024**3))
        per_worker = int(tile_memory_bytes * safety_factor)
        mem_cap = max(1, budget // per_worker) if budget > 0 else 1
        if mem_cap < workers:
            workers = int(mem_cap)
            reasons.append(
                f"memory: {per_worker/1e9:.2f}GB per tile, {mem.available/1e9:.2f}GB available"
            )

    reason = "; ".join(reasons) if reasons else "as requested"
    log.info(f"Parallelism: {workers} workers x {threads} threads ({reason})")
    return ParallelPlan(workers=workers, threads=threads, reason=reason)
