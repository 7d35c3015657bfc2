# src/tiledem/lidar/classify.py

"""
This module implements per-tile ground reclassification.

Points are first grouped into pulses so that the number of returns recorded on
every point can be repaired, then a Cloth Simulation Filter labels the last
returns as ground or non-ground.
"""

from enum import Enum
from dataclasses import dataclass
from pathlib import Path
from typing import Union, Optional
import logging

import numpy as np
import CSF

from tiledem.exceptions import DegenerateGeometryError

from .layer import PointCloud, PointClass
from .tiling import TileDescriptor
from .store import TileStore, read_buffered_from_source

log = logging.getLogger(__name__)

__all__ = [
    "TerrainType",
    "GroundFilterParams",
    "pulse_ids",
    "correct_number_of_returns",
    "classify_ground",
    "classify_tile"
]

class TerrainType(Enum):
    """
    Defines terrain types used in topographical filtering parameterization.

    Options:
    FLAT: Represents areas with minimal elevation variation, such as plains or agricultural fields.
    RELIEF: Represents areas with moderate elevation variation, such as rolling hills or mixed terrain.
    HIGH_RELIEF: Represents areas with significant elevation variation, such as mountainous regions or deep valleys
    """
    FLAT = 1
    RELIEF = 2
    HIGH_RELIEF = 3

@dataclass
class GroundFilterParams:
    """
    Parameters for the Cloth Simulation Filter.

    Args:
        smooth (bool): Post-process steep slopes (CSF bSloopSmooth).
        cloth_resolution (float): Grid spacing of the simulated cloth.
        rigidness (int): Cloth stiffness (1 = soft, 3 = stiff).
        time_step (float): Simulation time step.
        class_threshold (float): Max distance to the cloth for a ground point.
        iterations (int): Maximum simulation iterations.
        last_returns_only (bool): Restrict the filter input to last returns.
        min_points (int): Fewest candidate points a tile needs to be filtered.
    """
    smooth: bool = True
    cloth_resolution: float = 0.5
    rigidness: int = 2
    time_step: float = 0.65
    class_threshold: float = 0.5
    iterations: int = 500
    last_returns_only: bool = True
    min_points: int = 10

    @classmethod
    def from_terrain(
        cls,
        terrain: TerrainType,
        **overrides
        ) -> 'GroundFilterParams':
        """
        Builds parameters from a macro-level terrain preset.

        Args:
            terrain (TerrainType): Macro level topographical structure. See TerrainType enum for options.
            **overrides: Any other GroundFilterParams field.
        """
        if terrain == TerrainType.FLAT:
            preset = {"rigidness": 3, "smooth": False}
        elif terrain == TerrainType.HIGH_RELIEF:
            preset = {"rigidness": 1, "smooth": True}
        else:
            preset = {"rigidness": 2, "smooth": True}
        preset.update(overrides)
        return cls(**preset)

def pulse_ids(pc: PointCloud) -> np.ndarray:
    """
    Assigns a pulse index to every point.

    A pulse is a run of consecutive points sharing the same pulse keys (GPS time and,
    when present, flight line). Without GPS time, a new pulse starts whenever the
    return sequence restarts, which only works if return numbers are trustworthy.

    Args:
        pc (PointCloud): Points in acquisition (file) order.

    Returns:
        np.ndarray: int64 array of pulse indices, 0..n_pulses-1, non-decreasing.
    """
    n = len(pc)
    if n == 0:
        return np.empty(0, dtype=np.int64)

    starts = np.zeros(n, dtype=bool)
    starts[0] = True

    if pc.gps_time is not None:
        starts[1:] |= pc.gps_time[1:] != pc.gps_time[:-1]
        if pc.point_source_id is not None:
            starts[1:] |= pc.point_source_id[1:] != pc.point_source_id[:-1]
    else:
        log.warning("No GPS time available: grouping pulses by return sequence restarts")
        rn = pc.return_number.astype(np.int64)
        starts[1:] |= rn[1:] <= rn[:-1]

    return np.cumsum(starts) - 1

def correct_number_of_returns(pc: PointCloud) -> int:
    """
    Rewrites number_of_returns in place with the highest return number of each pulse.

    The grouping produces one maximum per pulse, which is then scattered back onto
    every member point.

    Args:
        pc (PointCloud): Points to repair.

    Returns:
        int: Number of points whose value changed.
    """
    if len(pc) == 0:
        return 0

    # Group: one slot per pulse holding its highest return number
    ids = pulse_ids(pc)
    pulse_max = np.zeros(ids[-1] + 1, dtype=pc.return_number.dtype)
    np.maximum.at(pulse_max, ids, pc.return_number)

    # Scatter: each point receives the maximum of its pulse
    corrected = pulse_max[ids].astype(pc.number_of_returns.dtype)
    changed = int(np.count_nonzero(corrected != pc.number_of_returns))
    pc.number_of_returns = corrected
    return changed

def _run_csf(
    xyz: np.ndarray,
    params: GroundFilterParams
    ) -> np.ndarray:
    """
    Runs the Cloth Simulation Filter and returns a boolean ground mask.
    """
    # Configure the cloth: resolution and rigidness control how closely it follows the terrain
    csf = CSF.CSF()
    csf.params.bSloopSmooth = params.smooth
    csf.params.cloth_resolution = params.cloth_resolution
    csf.params.rigidness = params.rigidness
    csf.params.time_step = params.time_step
    csf.params.class_threshold = params.class_threshold
    csf.params.interations = params.iterations
    # The cloth settles after the configured iterations or movement becomes negligible

    # Shift to a local origin: large projected coordinates lose precision inside the filter
    local = xyz - np.array([xyz[:, 0].min(), xyz[:, 1].min(), 0.0])
    csf.setPointCloud(local)

    # CSF fills two index vectors: points close to the settled cloth, and all the others
    ground_idx = CSF.VecInt()
    off_ground_idx = CSF.VecInt()
    csf.do_filtering(ground_idx, off_ground_idx, False)

    # Translate the ground indices back into a boolean mask over the input points
    mask = np.zeros(len(xyz), dtype=bool)
    g_idx = np.array(ground_idx, dtype=np.int64)
    if len(g_idx) > 0:
        mask[g_idx] = True
    return mask

def classify_ground(
    pc: PointCloud,
    params: Optional[GroundFilterParams] = None
    ) -> int:
    """
    Labels points as GROUND or UNCLASSIFIED in place. Noise points keep their class.

    Args:
        pc (PointCloud): Points with repaired number_of_returns.
        params (GroundFilterParams): Filter configuration.

    Returns:
        int: Number of ground points.

    Raises:
        DegenerateGeometryError: If fewer than `params.min_points` candidates remain.
    """
    params = params or GroundFilterParams()

    # Noise keeps its class and never enters the filter
    noise = pc.noise_mask
    candidates = ~noise
    if params.last_returns_only:
        candidates &= pc.last_return_mask
    # Last returns are the ones most likely to have reached the ground

    n_candidates = int(np.count_nonzero(candidates))
    if n_candidates < params.min_points:
        raise DegenerateGeometryError(
            f"Only {n_candidates} filter candidates (need {params.min_points})"
        )

    xyz = np.column_stack((pc.x[candidates], pc.y[candidates], pc.z[candidates]))
    ground = _run_csf(xyz, params)

    # Every non-noise point is reset, then the filter's ground points are labelled
    classification = pc.classification.copy()
    classification[~noise] = PointClass.UNCLASSIFIED
    candidate_idx = np.flatnonzero(candidates)
    classification[candidate_idx[ground]] = PointClass.GROUND
    pc.classification = classification

    return int(np.count_nonzero(ground))

def classify_tile(
    tile: TileDescriptor,
    source: Union[str, Path],
    store: TileStore,
    params: GroundFilterParams,
    chunk_size: int = 1_000_000
    ) -> Optional[int]:
    """
    Classifies one tile and persists its core points.

    Steps:
        1. Streams the points inside the tile's buffered extent from the raw survey.
        2. Returns None for an empty tile (nothing is written).
        3. Repairs number_of_returns per pulse.
        4. Runs the ground filter on the buffered points so that the core boundary has context.
        5. Drops buffer points and writes the core to the tile store.

    Args:
        tile (TileDescriptor): Tile to process.
        source (Union[str, Path]): Raw survey file.
        store (TileStore): Destination store.
        params (GroundFilterParams): Ground filter configuration.
        chunk_size (int): Points read per chunk.

    Returns:
        Optional[int]: Number of core points written, or None if the tile was empty.
    """
    pc = read_buffered_from_source(source, tile, chunk_size=chunk_size)
    if len(pc) == 0:
        log.debug(f"{tile} is empty, skipping")
        return None

    changed = correct_number_of_returns(pc)
    if changed:
        log.debug(f"{tile}: corrected number_of_returns on {changed} points")

    n_ground = classify_ground(pc, params)

    core = pc.subset(~pc.buffer)
    if len(core) == 0:
        log.debug(f"{tile} has only buffer points, skipping")
        return None

    store.write(tile, core)
    log.debug(f"{tile}: {n_ground} ground of {len(pc)} buffered points, {len(core)} kept")
    return len(core)
