import re

import numpy as np
import pytest

from shatterstudio.model.fragment import build_fragment
from shatterstudio.model.geometry import BoundingBox, SourceMesh
from shatterstudio.model.projection import (
    NormalizedBox, PerspectiveCamera, ProjectedBox, YoloRecord,
    project, project_box_normalized, project_fragments, yolo_records
)

from conftest import make_bucket, tetra_triangles


def box(lo, hi) -> BoundingBox:
    return BoundingBox(minimum=np.array(lo, dtype=float), maximum=np.array(hi, dtype=float))


@pytest.fixture
def front_camera() -> PerspectiveCamera:
    return PerspectiveCamera(position=np.array([0.0, 0.0, 10.0]), fov=90.0, aspect=1.0)


def test_centered_box_projects_symmetrically(front_camera):
    result = project(box([-1, -1, -1], [1, 1, 1]), front_camera, 900, 900, label="a")

    # Nearest face sits 9 units from the camera: NDC half-width 1/9
    assert result.left == pytest.approx(400.0)
    assert result.top == pytest.approx(400.0)
    assert result.width == pytest.approx(100.0)
    assert result.height == pytest.approx(100.0)
    assert result.label == "a"


def test_box_outside_the_view_is_rejected(front_camera):
    assert project(box([100, -1, -1], [102, 1, 1]), front_camera, 640, 480) is None
    assert project(box([-1, -80, -1], [1, -78, 1]), front_camera, 640, 480) is None


def test_box_behind_the_camera_is_rejected(front_camera):
    assert project(box([-1, -1, 20], [1, 1, 22]), front_camera, 640, 480) is None


def test_straddling_box_is_clipped_to_the_viewport(front_camera):
    result = project(box([-50, -0.5, -1], [50, 0.5, 1]), front_camera, 200, 100)

    assert result.left == pytest.approx(0.0)
    assert result.right == pytest.approx(200.0)
    assert 0.0 < result.top < result.bottom < 100.0


def test_image_y_axis_points_down(front_camera):
    above = project(box([-0.5, 2, -0.5], [0.5, 3, 0.5]), front_camera, 100, 100)
    below = project(box([-0.5, -3, -0.5], [0.5, -2, 0.5]), front_camera, 100, 100)

    assert above.bottom < 50.0
    assert below.top > 50.0


def test_normalized_box_stays_in_unit_square(front_camera):
    result = project_box_normalized(box([-50, -50, -1], [50, 0.5, 1]), front_camera)
    assert (result.x_min, result.x_max, result.y_max) == (0.0, 1.0, 1.0)
    assert 0.0 < result.y_min < 0.5


def test_yolo_record_from_pixels():
    record = YoloRecord.from_pixel_box(ProjectedBox(left=100, top=50, width=200, height=150), 1000, 800)

    assert record.center_x == pytest.approx(0.2)
    assert record.center_y == pytest.approx(0.15625)
    assert record.width == pytest.approx(0.2)
    assert record.height == pytest.approx(0.1875)
    assert record.to_line() == "0 0.200000 0.156250 0.200000 0.187500"


def test_normalized_box_to_yolo_and_pixels():
    normalized = NormalizedBox(x_min=0.1, y_min=0.2, x_max=0.5, y_max=0.4)

    record = normalized.to_yolo(class_id=3)
    assert record.to_line() == "3 0.300000 0.300000 0.400000 0.200000"

    pixels = normalized.to_pixels(200, 100)
    assert (pixels.left, pixels.top) == pytest.approx((20.0, 20.0))
    assert (pixels.width, pixels.height) == pytest.approx((80.0, 20.0))


def test_from_spherical_places_camera_on_sphere():
    camera = PerspectiveCamera.from_spherical(10.0, np.pi / 2, 0.0)
    np.testing.assert_allclose(camera.position, [0.0, 0.0, 10.0], atol=1e-12)

    camera = PerspectiveCamera.from_spherical(5.0, 0.7, 2.1, target=(1.0, 2.0, 3.0))
    assert np.linalg.norm(camera.position - camera.target) == pytest.approx(5.0)
    assert camera.position[1] - 2.0 == pytest.approx(5.0 * np.cos(0.7))


def test_view_matrix_looks_down_negative_z():
    camera = PerspectiveCamera(position=np.array([3.0, 4.0, 5.0]), target=np.zeros(3))
    view = camera.view_matrix()

    np.testing.assert_allclose(view @ [3.0, 4.0, 5.0, 1.0], [0.0, 0.0, 0.0, 1.0], atol=1e-12)
    distance = np.sqrt(50.0)
    np.testing.assert_allclose(view @ [0.0, 0.0, 0.0, 1.0], [0.0, 0.0, -distance, 1.0], atol=1e-12)


def test_camera_looking_straight_down_has_a_valid_basis():
    camera = PerspectiveCamera.from_spherical(10.0, 0.0, 0.0)
    x, y, z = camera.basis()
    assert np.all(np.isfinite(np.c_[x, y, z]))
    assert np.linalg.norm(x) == pytest.approx(1.0)


def test_project_fragments_labels_keep_fragment_index():
    source = SourceMesh.cube(size=4.0)
    fragments = [
        build_fragment(make_bucket(tetra_triangles((-0.5, -0.5, -0.5)), seed_index=i), source, solid=True)
        for i in range(2)
    ]
    # Behind the default camera at (8, 8, 8)
    fragments[1].position = np.array([100.0, 100.0, 100.0])
    camera = PerspectiveCamera(aspect=640 / 480)

    boxes = project_fragments(fragments, camera, 640, 480)
    assert [b.label for b in boxes] == ["FRAG_00"]

    boxes = project_fragments(fragments, camera, 640, 480, rng=np.random.default_rng(0))
    assert re.fullmatch(r"FRAG_00 0\.9\d", boxes[0].label)

    records = yolo_records(fragments, camera, class_id=2)
    assert len(records) == 1
    assert records[0].class_id == 2
    assert 0.0 <= records[0].center_x <= 1.0 and 0.0 <= records[0].center_y <= 1.0
