# src/tiledem/lidar/rasterize.py

"""
This module implements triangulated (TIN) interpolation of point elevations onto grid cells.
"""

from dataclasses import dataclass, replace
from typing import Optional, Sequence, Tuple
import logging

import numpy as np
from scipy.spatial import Delaunay, QhullError

from tiledem.exceptions import DegenerateGeometryError

log = logging.getLogger(__name__)

__all__ = [
    "NODATA_VAL",
    "TinParams",
    "highest_per_xy",
    "tin_interpolate",
    "layered_tin_interpolate"
]

NODATA_VAL = -9999.0

@dataclass
class TinParams:
    """
    Triangulation policy.

    Args:
        max_edge (float | None): Triangles with an edge longer than this are dropped.
        drop_degenerate (bool): Drop triangles whose area is at most `min_area`.
        min_area (float): Area below which a triangle counts as degenerate.
    """
    max_edge: Optional[float] = None
    drop_degenerate: bool = True
    min_area: float = 1e-9

def _valid_simplices(
    pts: np.ndarray,
    simplices: np.ndarray,
    params: TinParams
    ) -> np.ndarray:
    """
    Flags the triangles kept by the triangulation policy.

    Args:
        pts: (n, 2) vertex coordinates.
        simplices: (m, 3) vertex indices of each triangle.
        params: Triangulation policy.

    Returns:
        np.ndarray: (m,) boolean array.
    """
    a = pts[simplices[:, 0]]
    b = pts[simplices[:, 1]]
    c = pts[simplices[:, 2]]

    keep = np.ones(len(simplices), dtype=bool)

    if params.drop_degenerate:
        # Half the absolute cross product of two edges
        area = 0.5 * np.abs((b[:, 0] - a[:, 0]) * (c[:, 1] - a[:, 1]) - (b[:, 1] - a[:, 1]) * (c[:, 0] - a[:, 0]))
        keep &= area > params.min_area

    if params.max_edge is not None:
        longest = np.maximum.reduce([
            np.hypot(*(b - a).T),
            np.hypot(*(c - b).T),
            np.hypot(*(a - c).T)
        ])
        keep &= longest <= params.max_edge

    return keep

def highest_per_xy(
    x: np.ndarray,
    y: np.ndarray,
    values: np.ndarray,
    h: Optional[np.ndarray] = None
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, Optional[np.ndarray]]:
    """
    Keeps a single point per XY location: the one with the highest value.

    Qhull silently discards all but one of several coincident vertices, so a canopy
    return and the ground return below it would otherwise compete at random.

    Args:
        x, y (np.ndarray): Point coordinates.
        values (np.ndarray): Values deciding which point survives.
        h (np.ndarray): Optional per-point array carried along with the survivors.

    Returns:
        (x, y, values, h) restricted to the survivors, in their original order.
    """
    if len(x) == 0:
        return x, y, values, h

    # Highest value first, so the first occurrence of each location is the one kept
    order = np.argsort(-values, kind="stable")
    _, first = np.unique(np.column_stack((x[order], y[order])), axis=0, return_index=True)
    keep = np.sort(order[first])

    return x[keep], y[keep], values[keep], (None if h is None else h[keep])

def tin_interpolate(
    x: np.ndarray,
    y: np.ndarray,
    z: np.ndarray,
    qx: np.ndarray,
    qy: np.ndarray,
    params: Optional[TinParams] = None
    ) -> np.ndarray:
    """
    Samples the Delaunay triangulation of (x, y, z) at query locations.

    Values are interpolated linearly inside the containing triangle using barycentric
    weights. Queries outside the convex hull or inside dropped triangles are NaN.

    Args:
        x (np.ndarray): Point X coordinates.
        y (np.ndarray): Point Y coordinates.
        z (np.ndarray): Values to interpolate.
        qx (np.ndarray): Query X coordinates (any shape).
        qy (np.ndarray): Query Y coordinates (same shape as qx).
        params (TinParams): Triangulation policy.

    Returns:
        np.ndarray: float64 array shaped like qx.

    Raises:
        DegenerateGeometryError: Fewer than three points, or all points collinear.
    """
    params = params or TinParams()
    if len(x) < 3:
        raise DegenerateGeometryError(f"Triangulation needs at least 3 points, got {len(x)}")

    # Work in local coordinates to keep Qhull well conditioned on projected CRS values
    x0, y0 = float(np.mean(x)), float(np.mean(y))
    pts = np.column_stack((x - x0, y - y0))
    try:
        tri = Delaunay(pts)
    except QhullError as e:
        raise DegenerateGeometryError(f"Triangulation failed on {len(x)} points: {e}") from e

    query = np.column_stack((np.ravel(qx) - x0, np.ravel(qy) - y0))
    out = np.full(len(query), np.nan)
    if len(query) == 0:
        return out.reshape(np.shape(qx))

    simplex = tri.find_simplex(query)
    keep = _valid_simplices(pts, tri.simplices, params)
    inside = simplex >= 0
    inside[inside] = keep[simplex[inside]]

    s = simplex[inside]
    T = tri.transform[s]
    bary = np.einsum('ijk,ik->ij', T[:, :2], query[inside] - T[:, 2])
    weights = np.column_stack((bary, 1.0 - bary.sum(axis=1)))
    out[inside] = np.einsum('ij,ij->i', z[tri.simplices[s]], weights)

    return out.reshape(np.shape(qx))

def layered_tin_interpolate(
    x: np.ndarray,
    y: np.ndarray,
    z: np.ndarray,
    h: np.ndarray,
    qx: np.ndarray,
    qy: np.ndarray,
    thresholds: Sequence[float],
    params: Optional[TinParams] = None,
    layer_max_edge: Optional[float] = 2.0
    ) -> np.ndarray:
    """
    Pointwise maximum of a base TIN and TINs built from points above height thresholds.

    Upper layers are triangulated with short edges only, so that canopy points are not
    bridged across gaps by long triangles dipping toward the ground.

    Args:
        x, y, z (np.ndarray): Point coordinates and values.
        h (np.ndarray): Height above ground used to select the points of each layer.
        qx, qy (np.ndarray): Query coordinates.
        thresholds (Sequence[float]): Height thresholds, one layer each.
        params (TinParams): Policy of the base triangulation.
        layer_max_edge (float): Longest edge allowed in the layers.

    Returns:
        np.ndarray: float64 array shaped like qx (NaN where no layer covers a cell).
    """
    params = params or TinParams()
    result = tin_interpolate(x, y, z, qx, qy, params)
    layer_params = replace(params, max_edge=layer_max_edge)

    for t in thresholds:
        sel = h >= t
        if np.count_nonzero(sel) < 3:
            continue
        try:
            layer = tin_interpolate(x[sel], y[sel], z[sel], qx, qy, layer_params)
        except DegenerateGeometryError as e:
            log.debug(f"Layer at {t} skipped: {e}")
            continue
        result = np.fmax(result, layer)

    return result
