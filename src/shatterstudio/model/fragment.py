"""
Fragment Building
=================
Turns the buckets produced by the partitioner into renderable fragments.

Why is this file needed?
------------------------
1. Geometry: Each bucket becomes either a closed convex hull (solid mode)
   or the untouched original triangles (shell mode).
2. Ownership: A fragment owns its pyvista geometry. 'FragmentSet' releases
   every fragment of a shatter exactly once when the set is discarded.

Classes:
    Fragment: One piece of the shattered mesh and its live transform.
    FragmentSet: The collection produced by one shatter call.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Iterator, Optional, Sequence, TYPE_CHECKING

import numpy as np
import pyvista as pv
from scipy.spatial import ConvexHull, QhullError
from scipy.spatial.transform import Rotation

from shatterstudio.config import EPSILON, FALLBACK_DIRECTION, MIN_HULL_POINTS
from shatterstudio.model.geometry import BoundingBox, SourceMesh, compose_matrix

if TYPE_CHECKING:
    import numpy.typing as npt

    from shatterstudio.model.partition import FragmentBucket
    from shatterstudio.model.pose import FragmentPose

logger = logging.getLogger(__name__)


def _triangle_faces(n_triangles: int) -> npt.NDArray[np.int64]:
    """VTK face array [3, i, i+1, i+2, ...] for a non-indexed soup."""
    idx = np.arange(3 * n_triangles, dtype=np.int64).reshape(-1, 3)
    return np.c_[np.full(n_triangles, 3, dtype=np.int64), idx].ravel()


def shell_polydata(triangles: npt.NDArray[np.float64]) -> pv.PolyData:
    """The given triangles, unmodified, as an open surface."""
    return pv.PolyData(triangles.reshape(-1, 3).copy(), faces=_triangle_faces(triangles.shape[0]))


def convex_hull_polydata(points: npt.NDArray[np.float64]) -> pv.PolyData:
    """
    Closed triangulated convex hull of a point set with outward-facing faces.

    Raises:
        QhullError: If the points are degenerate (coplanar, collinear, ...).
        ValueError: If there are fewer than 4 points.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if pts.shape[0] < MIN_HULL_POINTS:
        raise ValueError(f"A convex hull needs at least {MIN_HULL_POINTS} points, got {pts.shape[0]}.")

    hull = ConvexHull(pts)
    simplices = hull.simplices.copy()

    # Qhull does not orient simplices; align winding with the facet planes
    a, b, c = pts[simplices[:, 0]], pts[simplices[:, 1]], pts[simplices[:, 2]]
    winding = np.cross(b - a, c - a)
    flip = np.einsum("ij,ij->i", winding, hull.equations[:, :3]) < 0.0
    simplices[flip] = simplices[flip][:, [0, 2, 1]]

    # Keep only hull vertices
    used = np.unique(simplices)
    remap = np.full(pts.shape[0], -1, dtype=np.int64)
    remap[used] = np.arange(used.size)
    faces = remap[simplices]

    return pv.PolyData(pts[used], faces=np.c_[np.full(len(faces), 3), faces].ravel())


def safe_normalize(vector: npt.ArrayLike, fallback: Sequence[float] = FALLBACK_DIRECTION) -> npt.NDArray[np.float64]:
    v = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(v)
    if norm < EPSILON:
        return np.asarray(fallback, dtype=np.float64)
    return v / norm


@dataclass(eq=False)
class Fragment:
    """
    A realized piece of the source mesh.

    The geometry lives in object space; the live transform
    (position, quaternion, scale) places it in the world.
    """
    name: str
    source_name: str
    is_solid: bool
    centroid: npt.NDArray[np.float64]
    direction: npt.NDArray[np.float64]
    local_bounds: BoundingBox

    position: npt.NDArray[np.float64]
    quaternion: Rotation
    scale: npt.NDArray[np.float64]

    pose: Optional[FragmentPose] = None
    _geometry: Optional[pv.PolyData] = field(default=None, repr=False)

    @property
    def geometry(self) -> pv.PolyData:
        if self._geometry is None:
            raise RuntimeError(f"Geometry of fragment '{self.name}' has been released.")
        return self._geometry

    @property
    def released(self) -> bool:
        return self._geometry is None

    def release(self) -> None:
        """Free the owned geometry. Calling it twice is a no-op."""
        if self._geometry is None:
            return
        self._geometry.Initialize()
        self._geometry = None
        logger.debug(f"Released geometry of fragment '{self.name}'.")

    def world_matrix(self) -> npt.NDArray[np.float64]:
        return compose_matrix(self.position, self.quaternion, self.scale)

    def world_bounds(self) -> BoundingBox:
        """World-space box of the local bounding box's transformed corners."""
        return self.local_bounds.transformed(self.world_matrix())


def build_fragment(
    bucket: FragmentBucket,
    source: SourceMesh,
    solid: bool,
    name: Optional[str] = None
) -> Optional[Fragment]:
    """
    Build a fragment from a bucket.

    Returns None when the bucket has fewer than 4 distinct points. In solid
    mode a failed hull falls back to the shell of the bucket's triangles.
    """
    points = bucket.points
    if points.shape[0] < MIN_HULL_POINTS:
        logger.debug(f"Dropping bucket {bucket.seed_index}: only {points.shape[0]} distinct points.")
        return None

    geometry: Optional[pv.PolyData] = None
    is_solid = False
    if solid:
        try:
            geometry = convex_hull_polydata(points)
            is_solid = True
        except (QhullError, ValueError) as e:
            logger.debug(f"Convex hull failed for bucket {bucket.seed_index}, using shell: {e}")

    if geometry is None:
        geometry = shell_polydata(bucket.triangles)

    geometry = geometry.compute_normals(
        cell_normals=False,
        point_normals=True,
        split_vertices=False,
        consistent_normals=False,
        auto_orient_normals=False,
    )
    local_bounds = BoundingBox.from_bounds(geometry.bounds)

    centroid = local_bounds.center
    direction = safe_normalize(centroid - source.center)

    return Fragment(
        name=name or f"{source.name}_fragment_{bucket.seed_index:03d}",
        source_name=source.name,
        is_solid=is_solid,
        centroid=centroid,
        direction=direction,
        local_bounds=local_bounds,
        position=source.position.copy(),
        quaternion=source.quaternion,
        scale=source.scale.copy(),
        _geometry=geometry,
    )


def build_fragments(
    buckets: Sequence[FragmentBucket],
    source: SourceMesh,
    solid: bool
) -> list[Fragment]:
    """Build every bucket independently, dropping the ones without a fragment."""
    fragments: list[Fragment] = []
    for bucket in buckets:
        if bucket.is_empty:
            continue
        fragment = build_fragment(bucket, source, solid)
        if fragment is not None:
            fragments.append(fragment)
    return fragments


class FragmentSet:
    """
    Immutable collection of the fragments of one shatter.

    The set owns the geometry of its fragments: 'release()' (or leaving a
    'with' block) frees every fragment exactly once.
    """

    def __init__(self, fragments: Sequence[Fragment] = ()):
        self._fragments: tuple[Fragment, ...] = tuple(fragments)
        self._released = False

    def __len__(self) -> int:
        return len(self._fragments)

    def __iter__(self) -> Iterator[Fragment]:
        return iter(self._fragments)

    def __getitem__(self, index: int) -> Fragment:
        return self._fragments[index]

    def __enter__(self) -> FragmentSet:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    @property
    def fragments(self) -> tuple[Fragment, ...]:
        return self._fragments

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        for fragment in self._fragments:
            fragment.release()
        self._released = True
        logger.debug(f"Released fragment set of {len(self._fragments)} fragments.")
