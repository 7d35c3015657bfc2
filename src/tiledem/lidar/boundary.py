# src/tiledem/lidar/boundary.py

"""
This module extracts the outer boundary of the surveyed area from the classified tile store.

Interior tiles contribute their rectangular footprint. Tiles near the outer edge of
the survey are replaced by a concave hull of their points, which follows the
irregular flight footprint much more closely than a rectangle.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Union, Optional, List
import logging

import numpy as np
import geopandas as gpd
import shapely
from shapely.geometry import box, Polygon, MultiPolygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from scipy.spatial import Delaunay, QhullError

from tiledem.exceptions import DegenerateGeometryError

from .layer import PointCloud
from .store import TileStore

log = logging.getLogger(__name__)

__all__ = [
    "BoundaryParams",
    "tile_footprints",
    "concave_footprint",
    "extract_boundary",
    "save_boundary",
    "load_boundary"
]

@dataclass
class BoundaryParams:
    """
    Tuning of the boundary extraction.

    The defaults suit airborne surveys of a few points per square meter and should be
    revisited for much sparser or denser data.

    Args:
        edge_distance (float): Tiles whose footprint lies within this distance of the
            union's outer boundary are treated as edge tiles.
        concave_ratio (float): Concave hull ratio in [0, 1] (1 = convex hull).
        length_threshold (float): Hull edges shorter than this length are never dug into.
        closing_distance (float): Seams narrower than twice this distance are closed.
    """
    edge_distance: float = 1.0
    concave_ratio: float = 0.3
    length_threshold: float = 5.0
    closing_distance: float = 1.0

def tile_footprints(store: TileStore) -> gpd.GeoDataFrame:
    """
    Collects the rectangular footprint of every stored tile from its LAS header.

    Args:
        store (TileStore): Classified tile store.

    Returns:
        gpd.GeoDataFrame: One row per stored tile with `name`, `ix`, `iy` and footprint geometry.
    """
    columns = {"name": [], "ix": [], "iy": []}
    geoms = []
    for tile in store.available():
        (xmin, xmax, ymin, ymax), count = PointCloud.read_header(store.path_for(tile))
        if count == 0:
            continue
        columns["name"].append(tile.name)
        columns["ix"].append(tile.ix)
        columns["iy"].append(tile.iy)
        geoms.append(box(xmin, ymin, xmax, ymax))

    return gpd.GeoDataFrame(columns, geometry=geoms)

def _effective_ratio(xy: np.ndarray, ratio: float, length_threshold: float) -> float:
    """
    Raises the concave hull ratio so that edges shorter than `length_threshold` survive.

    GEOS removes Delaunay edges longer than min + ratio * (max - min), so the absolute
    threshold maps to the ratio (threshold - min) / (max - min).
    """
    if length_threshold <= 0 or len(xy) < 3:
        return ratio

    try:
        tri = Delaunay(xy)
    except QhullError:
        return ratio

    edges = np.vstack([tri.simplices[:, [0, 1]], tri.simplices[:, [1, 2]], tri.simplices[:, [2, 0]]])
    lengths = np.hypot(*(xy[edges[:, 0]] - xy[edges[:, 1]]).T)
    lo, hi = lengths.min(), lengths.max()
    if hi <= lo:
        return 1.0

    derived = float(np.clip((length_threshold - lo) / (hi - lo), 0.0, 1.0))
    return max(ratio, derived)

def concave_footprint(
    pc: PointCloud,
    concave_ratio: float = 0.3,
    length_threshold: float = 5.0,
    pad: float = 1.0
    ) -> BaseGeometry:
    """
    Computes a hole-free concave hull of the XY positions of a point cloud.

    Args:
        pc (PointCloud): Points of one tile.
        concave_ratio (float): Concave hull ratio in [0, 1].
        length_threshold (float): Minimum hull segment length that may be dug into.
        pad (float): Buffer applied when the hull collapses to a point or a line.

    Returns:
        BaseGeometry: A polygonal hull covering every point.
    """
    xy = np.unique(np.column_stack((pc.x, pc.y)), axis=0)
    points = shapely.multipoints(xy)

    ratio = _effective_ratio(xy, concave_ratio, length_threshold)
    hull = shapely.concave_hull(points, ratio=ratio, allow_holes=False)

    if hull.area <= 0:
        # Collinear or single points: no polygon to speak of
        hull = hull.buffer(pad)
    return hull

def _outer_rings(geom: BaseGeometry) -> BaseGeometry:
    polygons = list(geom.geoms) if hasattr(geom, "geoms") else [geom]
    return unary_union([p.exterior for p in polygons if isinstance(p, Polygon)])

def _drop_holes(geom: BaseGeometry) -> BaseGeometry:
    polygons = list(geom.geoms) if hasattr(geom, "geoms") else [geom]
    shells = [Polygon(p.exterior) for p in polygons if isinstance(p, Polygon) and not p.is_empty]
    if len(shells) == 1:
        return shells[0]
    return unary_union(shells)

def extract_boundary(
    store: TileStore,
    params: Optional[BoundaryParams] = None
    ) -> BaseGeometry:
    """
    Derives the hole-free boundary polygon of the classified survey.

    Steps:
        1. Unions the header footprints of all stored tiles.
        2. Flags tiles within `edge_distance` of the union's outer rings as edge tiles.
        3. Replaces the footprint of each edge tile by a concave hull of its points.
        4. Unions everything, closes narrow seams and drops interior rings.

    Args:
        store (TileStore): Classified tile store.
        params (BoundaryParams): Extraction tuning.

    Returns:
        BaseGeometry: Polygon or MultiPolygon containing every classified point.
    """
    params = params or BoundaryParams()

    footprints = tile_footprints(store)
    if footprints.empty:
        raise DegenerateGeometryError("No classified tiles to derive a boundary from")

    union = unary_union(footprints.geometry.values)
    d = params.closing_distance
    if d > 0:
        # Header boxes stop at the outermost points, leaving thin seams between neighbors
        union = union.buffer(d, join_style="mitre").buffer(-d, join_style="mitre")
    outer = _outer_rings(union)
    is_edge = footprints.geometry.distance(outer) <= params.edge_distance
    log.info(f"Boundary: {int(is_edge.sum())} edge tiles out of {len(footprints)}")

    tiles_by_name = {t.name: t for t in store.available()}
    parts: List[BaseGeometry] = list(footprints.geometry[~is_edge].values)
    for name in footprints.loc[is_edge, "name"]:
        pc = store.read(tiles_by_name[name])
        parts.append(concave_footprint(
            pc,
            concave_ratio=params.concave_ratio,
            length_threshold=params.length_threshold,
            pad=params.closing_distance
        ))

    merged = unary_union(parts)
    if d > 0:
        # Closing: the union with `merged` keeps hull vertices that the round joins would shave off
        merged = unary_union([merged, merged.buffer(d).buffer(-d)])

    boundary = _drop_holes(merged)
    if not isinstance(boundary, (Polygon, MultiPolygon)) or boundary.is_empty:
        raise DegenerateGeometryError(f"Boundary extraction produced {boundary.geom_type}")

    log.info(f"Boundary polygon: area={boundary.area:.1f}, parts={len(getattr(boundary, 'geoms', [boundary]))}")
    return boundary

def save_boundary(
    geom: BaseGeometry,
    path: Union[str, Path],
    crs=None,
    engine: str = "pyogrio"
    ) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        path.unlink()
    gdf = gpd.GeoDataFrame({"name": ["boundary"]}, geometry=[geom], crs=crs)
    gdf.to_file(path, driver="GPKG", engine=engine)
    return path

def load_boundary(path: Union[str, Path], engine: str = "pyogrio") -> BaseGeometry:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Boundary file not found: {path}")

    gdf = gpd.read_file(path, engine=engine)
    return unary_union(gdf.geometry.values)
