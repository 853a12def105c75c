"""
Camera Projection & 2D Annotations
==================================
Maps world-space fragment boxes to screen-space rectangles.

Why is this file needed?
------------------------
1. Overlay: Every frame the viewer needs one 2D rectangle per visible
   fragment ('project_fragments').
2. Dataset labels: Every captured sample needs YOLO records
   ('class_id cx cy w h', normalized to the image size).

Both are pure functions of the fragment transforms and the camera. The
camera follows the OpenGL conventions (right-handed view space looking down
-Z, NDC in [-1, 1]); image space has its origin in the top-left corner with
y growing downwards.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Iterable, Optional, TYPE_CHECKING

import numpy as np

from shatterstudio.config import DEFAULT_FAR, DEFAULT_FOV, DEFAULT_NEAR, EPSILON

if TYPE_CHECKING:
    import numpy.typing as npt

    from shatterstudio.model.fragment import Fragment
    from shatterstudio.model.geometry import BoundingBox

logger = logging.getLogger(__name__)


@dataclass
class PerspectiveCamera:
    """
    Pinhole camera looking from 'position' at 'target'.

    Args:
        fov: Vertical field of view in degrees.
        aspect: Viewport width / height.
    """
    position: npt.NDArray[np.float64] = field(default_factory=lambda: np.array([8.0, 8.0, 8.0]))
    target: npt.NDArray[np.float64] = field(default_factory=lambda: np.zeros(3))
    up: npt.NDArray[np.float64] = field(default_factory=lambda: np.array([0.0, 1.0, 0.0]))
    fov: float = DEFAULT_FOV
    aspect: float = 1.0
    near: float = DEFAULT_NEAR
    far: float = DEFAULT_FAR

    def __post_init__(self) -> None:
        self.position = np.asarray(self.position, dtype=np.float64)
        self.target = np.asarray(self.target, dtype=np.float64)
        self.up = np.asarray(self.up, dtype=np.float64)

    @classmethod
    def from_spherical(
        cls,
        radius: float,
        phi: float,
        theta: float,
        target: npt.ArrayLike = (0.0, 0.0, 0.0),
        **kwargs
    ) -> PerspectiveCamera:
        """
        Place the camera on a sphere around 'target'.
        'phi' is the polar angle from +Y, 'theta' the azimuth around +Y
        measured from +Z.
        """
        offset = np.array([
            radius * np.sin(phi) * np.sin(theta),
            radius * np.cos(phi),
            radius * np.sin(phi) * np.cos(theta),
        ])
        target_arr = np.asarray(target, dtype=np.float64)
        return cls(position=target_arr + offset, target=target_arr, **kwargs)

    def basis(self) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Camera right, up and backward axes in world space."""
        z = self.position - self.target
        if np.linalg.norm(z) < EPSILON:
            z = np.array([0.0, 0.0, 1.0])
        z = z / np.linalg.norm(z)

        x = np.cross(self.up, z)
        if np.linalg.norm(x) < EPSILON:
            # 'up' parallel to the viewing axis
            nudge = np.array([1e-4, 0.0, 0.0]) if abs(self.up[2]) == 1.0 else np.array([0.0, 0.0, 1e-4])
            z = (z + nudge) / np.linalg.norm(z + nudge)
            x = np.cross(self.up, z)
        x = x / np.linalg.norm(x)
        y = np.cross(z, x)
        return x, y, z

    def view_matrix(self) -> npt.NDArray[np.float64]:
        """World -> camera transform."""
        x, y, z = self.basis()
        rot = np.vstack([x, y, z])
        view = np.eye(4)
        view[:3, :3] = rot
        view[:3, 3] = -rot @ self.position
        return view

    def projection_matrix(self) -> npt.NDArray[np.float64]:
        """Camera -> clip space (OpenGL convention)."""
        f = 1.0 / np.tan(np.radians(self.fov) / 2.0)
        n, fa = self.near, self.far
        return np.array([
            [f / self.aspect, 0.0, 0.0, 0.0],
            [0.0, f, 0.0, 0.0],
            [0.0, 0.0, -(fa + n) / (fa - n), -2.0 * fa * n / (fa - n)],
            [0.0, 0.0, -1.0, 0.0],
        ])

    def view_projection(self) -> npt.NDArray[np.float64]:
        return self.projection_matrix() @ self.view_matrix()

    def project_points(self, points: npt.ArrayLike) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """
        Project world points to NDC.

        Returns:
            (ndc, w): ndc of shape (N, 3) after the perspective divide and
            the clip-space w (positive in front of the camera).
        """
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        clip = np.c_[pts, np.ones(len(pts))] @ self.view_projection().T
        w = clip[:, 3]
        safe_w = np.where(np.abs(w) < EPSILON, EPSILON, w)
        return clip[:, :3] / safe_w[:, None], w


@dataclass(frozen=True)
class YoloRecord:
    """One YOLO label line; all four values relative to the image size."""
    class_id: int
    center_x: float
    center_y: float
    width: float
    height: float

    @classmethod
    def from_pixel_box(cls, box: ProjectedBox, image_width: float, image_height: float, class_id: int = 0) -> YoloRecord:
        return cls(
            class_id=class_id,
            center_x=(box.left + box.width / 2.0) / image_width,
            center_y=(box.top + box.height / 2.0) / image_height,
            width=box.width / image_width,
            height=box.height / image_height,
        )

    def to_line(self) -> str:
        return f"{self.class_id} {self.center_x:.6f} {self.center_y:.6f} {self.width:.6f} {self.height:.6f}"


@dataclass(frozen=True)
class ProjectedBox:
    """Screen rectangle in pixels, origin top-left."""
    left: float
    top: float
    width: float
    height: float
    label: str = ""

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height


@dataclass(frozen=True)
class NormalizedBox:
    """Clipped screen rectangle in [0, 1] image coordinates, origin top-left."""
    x_min: float
    y_min: float
    x_max: float
    y_max: float

    @property
    def width(self) -> float:
        return self.x_max - self.x_min

    @property
    def height(self) -> float:
        return self.y_max - self.y_min

    def to_pixels(self, viewport_width: float, viewport_height: float, label: str = "") -> ProjectedBox:
        return ProjectedBox(
            left=self.x_min * viewport_width,
            top=self.y_min * viewport_height,
            width=self.width * viewport_width,
            height=self.height * viewport_height,
            label=label,
        )

    def to_yolo(self, class_id: int = 0) -> YoloRecord:
        return YoloRecord(
            class_id=class_id,
            center_x=self.x_min + self.width / 2.0,
            center_y=self.y_min + self.height / 2.0,
            width=self.width,
            height=self.height,
        )


def project_box_normalized(world_box: BoundingBox, camera: PerspectiveCamera) -> Optional[NormalizedBox]:
    """
    Conservative screen rectangle of a world-space box, clipped to the image.

    Returns None if the box lies entirely outside the [-1, 1] NDC square on
    either axis, or entirely behind the camera.
    """
    ndc, w = camera.project_points(world_box.corners())
    if np.all(w <= 0.0):
        return None

    min_x, max_x = float(ndc[:, 0].min()), float(ndc[:, 0].max())
    min_y, max_y = float(ndc[:, 1].min()), float(ndc[:, 1].max())

    if max_x <= -1.0 or min_x >= 1.0 or max_y <= -1.0 or min_y >= 1.0:
        return None

    # NDC y points up, image y points down
    return NormalizedBox(
        x_min=max(0.0, (min_x + 1.0) / 2.0),
        x_max=min(1.0, (max_x + 1.0) / 2.0),
        y_min=max(0.0, (1.0 - max_y) / 2.0),
        y_max=min(1.0, (1.0 - min_y) / 2.0),
    )


def project(
    world_box: BoundingBox,
    camera: PerspectiveCamera,
    viewport_width: float,
    viewport_height: float,
    label: str = ""
) -> Optional[ProjectedBox]:
    """Pixel rectangle of a world-space box, or None if it is off screen."""
    normalized = project_box_normalized(world_box, camera)
    if normalized is None:
        return None
    return normalized.to_pixels(viewport_width, viewport_height, label)


def project_fragments(
    fragments: Iterable[Fragment],
    camera: PerspectiveCamera,
    viewport_width: float,
    viewport_height: float,
    rng: Optional[np.random.Generator] = None
) -> list[ProjectedBox]:
    """
    Overlay rectangles for the current fragment transforms.

    Labels read 'FRAG_<index>'; with a generator a cosmetic detection
    confidence in [0.90, 0.99) is appended.
    """
    boxes: list[ProjectedBox] = []
    for i, fragment in enumerate(fragments):
        label = f"FRAG_{i:02d}"
        if rng is not None:
            label += f" {0.9 + rng.random() * 0.09:.2f}"
        box = project(fragment.world_bounds(), camera, viewport_width, viewport_height, label)
        if box is not None:
            boxes.append(box)
    return boxes


def yolo_records(
    fragments: Iterable[Fragment],
    camera: PerspectiveCamera,
    class_id: int = 0
) -> list[YoloRecord]:
    """YOLO records for every fragment visible from the camera."""
    records: list[YoloRecord] = []
    for fragment in fragments:
        normalized = project_box_normalized(fragment.world_bounds(), camera)
        if normalized is not None:
            records.append(normalized.to_yolo(class_id))
    return records
