# src/tiledem/scheduler.py

"""
This module dispatches one callable per tile and collects a result or a failure for each.

Tiles run in any order, in-process when a single worker is configured and in a
process pool otherwise. `run_tiles` returns only once every tile has finished,
which is the barrier between pipeline stages.
"""

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

import numba

from tiledem.config import ParallelConfig
from tiledem.exceptions import IrrecoverableIOError
from tiledem.lidar.tiling import TileDescriptor

log = logging.getLogger(__name__)

__all__ = [
    "TileStatus",
    "TileResult",
    "run_tiles"
]

class TileStatus(Enum):
    """
    Terminal state of one tile in one stage.

    Options:
        DONE: The callable produced an output.
        SKIPPED: The tile had nothing to process (callable returned None).
        REUSED: The output existed from a previous run and was kept.
        FAILED: The callable raised; the tile is excluded from later merges.
    """
    DONE = "done"
    SKIPPED = "skipped"
    REUSED = "reused"
    FAILED = "failed"

@dataclass
class TileResult:
    tile: TileDescriptor
    status: TileStatus
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (TileStatus.DONE, TileStatus.REUSED)

def _init_worker(threads: int):
    """Pins the inner thread pool of a worker process."""
    numba.set_num_threads(max(1, min(threads, numba.config.NUMBA_NUM_THREADS)))

def _run_one(func: Callable, tile: TileDescriptor) -> TileResult:
    try:
        value = func(tile)
    except IrrecoverableIOError:
        raise
    except Exception as e:
        return TileResult(tile, TileStatus.FAILED, error=f"{type(e).__name__}: {e}")

    if value is None:
        return TileResult(tile, TileStatus.SKIPPED)
    return TileResult(tile, TileStatus.DONE, value=value)

def run_tiles(
    func: Callable[[TileDescriptor], Any],
    tiles: Sequence[TileDescriptor],
    parallel: Optional[ParallelConfig] = None,
    stage: str = "stage",
    reuse: Optional[Callable[[TileDescriptor], Any]] = None
) -> List[TileResult]:
    """
    Runs `func(tile)` for every tile and waits for all of them.

    Args:
        func: Picklable callable (module-level function or functools.partial) taking a tile.
            Returning None marks the tile SKIPPED.
        tiles: Tiles to process.
        parallel: Worker and thread counts. One worker runs serially in-process.
        stage: Stage name used in log messages.
        reuse: Optional callable returning the existing output of a tile, or None.
            Tiles with an existing output are not dispatched.

    Returns:
        List[TileResult]: One result per tile, sorted by tile key.

    Raises:
        IrrecoverableIOError: Propagated from any tile; the stage is aborted.
    """
    parallel = parallel or ParallelConfig()
    results = []
    pending = []

    for tile in tiles:
        existing = reuse(tile) if reuse is not None else None
        if existing is not None:
            results.append(TileResult(tile, TileStatus.REUSED, value=existing))
        else:
            pending.append(tile)

    if pending and parallel.workers <= 1:
        for tile in pending:
            results.append(_run_one(func, tile))
    elif pending:
        with ProcessPoolExecutor(
            max_workers=min(parallel.workers, len(pending)),
            initializer=_init_worker,
            initargs=(parallel.threads,)
        ) as executor:
            futures = {executor.submit(_run_one, func, tile): tile for tile in pending}
            for future in as_completed(futures):
                results.append(future.result())

    results.sort(key=lambda r: (r.tile.iy, r.tile.ix))

    counts = {s: 0 for s in TileStatus}
    for r in results:
        counts[r.status] += 1
        if r.status == TileStatus.FAILED:
            log.warning(f"[{stage}] {r.tile} failed: {r.error}")

    log.info(
        f"[{stage}] {counts[TileStatus.DONE]} done, {counts[TileStatus.REUSED]} reused, "
        f"{counts[TileStatus.SKIPPED]} skipped, {counts[TileStatus.FAILED]} failed"
    )
    return results
