"""
Geometric Primitives for the Fragmentation Pipeline.

A source mesh is stored as a non-indexed triangle soup: an array of shape
(T, 3, 3) where every triangle owns its own three vertex copies.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
import pyvista as pv
from scipy.spatial.transform import Rotation

if TYPE_CHECKING:
    import numpy.typing as npt


def as_triangles(data: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Coerce flat positions or nested triangles into a (T, 3, 3) float array.

    Raises:
        ValueError: If the number of coordinates is not a multiple of 9.
    """
    arr = np.asarray(data, dtype=np.float64)
    if arr.size % 9 != 0:
        raise ValueError(f"Expected a multiple of 9 coordinates, got {arr.size}.")
    return arr.reshape(-1, 3, 3)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned bounding box given by its min and max corners."""
    minimum: npt.NDArray[np.float64]
    maximum: npt.NDArray[np.float64]

    @classmethod
    def from_points(cls, points: npt.ArrayLike) -> BoundingBox:
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if pts.shape[0] == 0:
            raise ValueError("Cannot compute the bounding box of an empty point set.")
        return cls(minimum=pts.min(axis=0), maximum=pts.max(axis=0))

    @classmethod
    def from_bounds(cls, bounds: tuple[float, ...]) -> BoundingBox:
        """Build from pyvista's (xmin, xmax, ymin, ymax, zmin, zmax) tuple."""
        b = np.asarray(bounds, dtype=np.float64)
        return cls(minimum=b[0::2].copy(), maximum=b[1::2].copy())

    @property
    def center(self) -> npt.NDArray[np.float64]:
        return (self.minimum + self.maximum) / 2.0

    @property
    def size(self) -> npt.NDArray[np.float64]:
        return self.maximum - self.minimum

    def corners(self) -> npt.NDArray[np.float64]:
        """The 8 corners of the box as an (8, 3) array."""
        lo, hi = self.minimum, self.maximum
        return np.array([
            [lo[0], lo[1], lo[2]], [lo[0], lo[1], hi[2]],
            [lo[0], hi[1], lo[2]], [lo[0], hi[1], hi[2]],
            [hi[0], lo[1], lo[2]], [hi[0], lo[1], hi[2]],
            [hi[0], hi[1], lo[2]], [hi[0], hi[1], hi[2]],
        ])

    def transformed(self, matrix: npt.NDArray[np.float64]) -> BoundingBox:
        """
        Axis-aligned box enclosing this box after an affine transform.

        The 8 corners are transformed and re-boxed, so the result is
        conservative (never smaller than the box of the transformed geometry).
        """
        corners = np.c_[self.corners(), np.ones(8)] @ np.asarray(matrix).T
        return BoundingBox.from_points(corners[:, :3])

    def contains(self, point: npt.ArrayLike, eps: float = 1e-12) -> bool:
        p = np.asarray(point, dtype=np.float64)
        return bool(np.all(p >= self.minimum - eps) and np.all(p <= self.maximum + eps))


def compose_matrix(
    position: npt.ArrayLike,
    rotation: Rotation,
    scale: npt.ArrayLike
) -> npt.NDArray[np.float64]:
    """4x4 affine matrix T * R * S (scale first, then rotate, then translate)."""
    matrix = np.eye(4)
    matrix[:3, :3] = rotation.as_matrix() * np.asarray(scale, dtype=np.float64)
    matrix[:3, 3] = np.asarray(position, dtype=np.float64)
    return matrix


@dataclass
class SourceMesh:
    """
    An immutable triangle mesh to be shattered, together with its placement.

    'rotation' holds XYZ Euler angles in radians (intrinsic order, matrix
    Rx @ Ry @ Rz).
    """
    triangles: npt.NDArray[np.float64]
    name: str = "mesh"
    position: npt.NDArray[np.float64] = field(default_factory=lambda: np.zeros(3))
    rotation: npt.NDArray[np.float64] = field(default_factory=lambda: np.zeros(3))
    scale: npt.NDArray[np.float64] = field(default_factory=lambda: np.ones(3))

    def __post_init__(self) -> None:
        self.triangles = as_triangles(self.triangles).copy()
        self.triangles.setflags(write=False)
        self.position = np.asarray(self.position, dtype=np.float64).reshape(3)
        self.rotation = np.asarray(self.rotation, dtype=np.float64).reshape(3)
        self.scale = np.asarray(self.scale, dtype=np.float64).reshape(3)

    @property
    def triangle_count(self) -> int:
        return int(self.triangles.shape[0])

    @property
    def is_empty(self) -> bool:
        return self.triangle_count == 0

    @property
    def bounds(self) -> BoundingBox:
        return BoundingBox.from_points(self.triangles)

    @property
    def center(self) -> npt.NDArray[np.float64]:
        return self.bounds.center

    @property
    def quaternion(self) -> Rotation:
        return Rotation.from_euler("XYZ", self.rotation)

    @classmethod
    def from_polydata(cls, poly: pv.PolyData, name: str = "mesh") -> SourceMesh:
        """Expand an indexed pyvista surface into a triangle soup."""
        tri = poly.triangulate()
        if tri.n_cells == 0:
            return cls(triangles=np.empty((0, 3, 3)), name=name)
        faces = tri.faces.reshape(-1, 4)[:, 1:]
        return cls(triangles=np.asarray(tri.points, dtype=np.float64)[faces], name=name)

    @classmethod
    def cube(cls, size: float = 1.0, name: str = "cube") -> SourceMesh:
        """An axis-aligned cube of 12 triangles centred at the origin."""
        h = size / 2.0
        v = np.array([
            [-h, -h, -h], [h, -h, -h], [h, h, -h], [-h, h, -h],
            [-h, -h, h], [h, -h, h], [h, h, h], [-h, h, h],
        ])
        faces = np.array([
            [0, 2, 1], [0, 3, 2],   # -z
            [4, 5, 6], [4, 6, 7],   # +z
            [0, 1, 5], [0, 5, 4],   # -y
            [3, 7, 6], [3, 6, 2],   # +y
            [0, 4, 7], [0, 7, 3],   # -x
            [1, 2, 6], [1, 6, 5],   # +x
        ])
        return cls(triangles=v[faces], name=name)
