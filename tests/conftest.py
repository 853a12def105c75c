from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import pytest

from shatterstudio.model.geometry import SourceMesh
from shatterstudio.model.partition import FragmentBucket


TETRA_VERTICES = np.array([
    [0.0, 0.0, 0.0],
    [1.0, 0.0, 0.0],
    [0.0, 1.0, 0.0],
    [0.0, 0.0, 1.0],
])
TETRA_FACES = np.array([[0, 2, 1], [0, 1, 3], [0, 3, 2], [1, 2, 3]])


def tetra_triangles(offset=(0.0, 0.0, 0.0)) -> np.ndarray:
    return TETRA_VERTICES[TETRA_FACES] + np.asarray(offset)


def make_bucket(triangles: np.ndarray, seed_index: int = 0) -> FragmentBucket:
    tris = np.asarray(triangles, dtype=np.float64).reshape(-1, 3, 3)
    return FragmentBucket(
        seed_index=seed_index,
        seed=tris.reshape(-1, 3).mean(axis=0),
        triangles=tris,
        triangle_indices=np.arange(tris.shape[0]),
    )


def signed_volume(points: np.ndarray, faces: np.ndarray) -> float:
    """Divergence-theorem volume; positive when faces wind outwards."""
    a, b, c = points[faces[:, 0]], points[faces[:, 1]], points[faces[:, 2]]
    return float(np.einsum("ij,ij->i", a, np.cross(b, c)).sum() / 6.0)


def polydata_triangles(poly) -> np.ndarray:
    return np.asarray(poly.faces).reshape(-1, 4)[:, 1:]


class FakeRenderer:
    """SceneRenderer stand-in that records calls and never touches OpenGL."""

    def __init__(self, width: int = 64, height: int = 48, fail_captures: Sequence[int] = ()):
        self.width = width
        self.height = height
        self.fail_captures = set(fail_captures)
        self.fragment_batches: list[tuple] = []
        self.cameras: list = []
        self.lights: list = []
        self.backgrounds: list[Optional[str]] = []
        self.captures = 0
        self.on_capture = None
        self.closed = False

    def set_fragments(self, fragments, appearances) -> None:
        assert len(appearances) == len(fragments)
        self.fragment_batches.append(tuple(fragments))

    def set_camera(self, camera) -> None:
        self.cameras.append(camera)

    def set_lights(self, lights) -> None:
        self.lights.append(lights)

    def set_background(self, image_path: Optional[str]) -> None:
        self.backgrounds.append(image_path)
        if image_path is not None and image_path.endswith("broken.png"):
            raise OSError(f"cannot identify image file '{image_path}'")

    def capture(self) -> np.ndarray:
        index = self.captures
        self.captures += 1
        if self.on_capture is not None:
            self.on_capture(index)
        if index in self.fail_captures:
            raise RuntimeError("render window lost")
        return np.full((self.height, self.width, 3), index, dtype=np.uint8)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def cube() -> SourceMesh:
    return SourceMesh.cube(size=2.0)


@pytest.fixture
def fake_renderer() -> FakeRenderer:
    return FakeRenderer()
