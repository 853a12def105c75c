import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from shatterstudio.model.geometry import BoundingBox, SourceMesh, as_triangles, compose_matrix
from shatterstudio.model.settings import DatasetSettings, ShatterSettings, ShatterVolume


def test_as_triangles_reshapes_flat_positions():
    assert as_triangles(np.zeros(18)).shape == (2, 3, 3)
    assert as_triangles(np.empty(0)).shape == (0, 3, 3)
    with pytest.raises(ValueError):
        as_triangles(np.zeros(10))


def test_source_mesh_does_not_freeze_callers_array():
    data = SourceMesh.cube().triangles.copy()
    mesh = SourceMesh(triangles=data)
    data[0, 0, 0] = 42.0

    assert data.flags.writeable
    assert mesh.triangles[0, 0, 0] == -0.5


def test_cube_geometry():
    cube = SourceMesh.cube(size=2.0)
    assert cube.triangle_count == 12
    np.testing.assert_allclose(cube.bounds.minimum, [-1.0, -1.0, -1.0])
    np.testing.assert_allclose(cube.bounds.maximum, [1.0, 1.0, 1.0])
    np.testing.assert_allclose(cube.center, [0.0, 0.0, 0.0])


def test_bounding_box_from_pyvista_bounds():
    box = BoundingBox.from_bounds((0.0, 1.0, -2.0, 2.0, 3.0, 5.0))
    np.testing.assert_allclose(box.minimum, [0.0, -2.0, 3.0])
    np.testing.assert_allclose(box.maximum, [1.0, 2.0, 5.0])
    np.testing.assert_allclose(box.center, [0.5, 0.0, 4.0])
    np.testing.assert_allclose(box.size, [1.0, 4.0, 2.0])
    assert box.corners().shape == (8, 3)


def test_compose_matrix_scales_rotates_then_translates():
    matrix = compose_matrix([1.0, 2.0, 3.0], Rotation.from_euler("z", 90, degrees=True), [2.0, 1.0, 1.0])
    np.testing.assert_allclose(matrix @ [1.0, 0.0, 0.0, 1.0], [1.0, 4.0, 3.0, 1.0], atol=1e-12)


def test_transformed_box_encloses_rotated_box():
    box = BoundingBox(minimum=np.array([-1.0, -1.0, -1.0]), maximum=np.array([1.0, 1.0, 1.0]))
    matrix = compose_matrix([5.0, 0.0, 0.0], Rotation.from_euler("z", 45, degrees=True), [1.0, 1.0, 1.0])

    result = box.transformed(matrix)

    np.testing.assert_allclose(result.center, [5.0, 0.0, 0.0], atol=1e-12)
    np.testing.assert_allclose(result.size, [2.0 * np.sqrt(2.0), 2.0 * np.sqrt(2.0), 2.0], atol=1e-12)


def test_empty_box_is_rejected():
    with pytest.raises(ValueError):
        BoundingBox.from_points(np.empty((0, 3)))


def test_volume_from_size_and_sampling(rng):
    volume = ShatterVolume.from_size((6.0, 2.0, 4.0))
    assert volume.half_extents == (3.0, 1.0, 2.0)
    points = np.array([volume.sample(rng) for _ in range(200)])
    assert np.all(np.abs(points) <= [3.0, 1.0, 2.0])


def test_volume_disabled():
    assert ShatterSettings(use_volume=False).volume() is None
    assert ShatterSettings().volume().half_extents == (3.0, 3.0, 3.0)


def test_dataset_settings_validation():
    assert DatasetSettings(image_width=640, image_height=480).aspect == pytest.approx(4 / 3)
    with pytest.raises(ValueError):
        DatasetSettings(sample_count=-1)
    with pytest.raises(ValueError):
        DatasetSettings(image_width=0)
    with pytest.raises(ValueError):
        DatasetSettings(camera_distance_min=0.0)
