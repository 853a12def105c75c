import tracemalloc

import numpy as np
import pytest

from shatterstudio.model import partition as partition_module
from shatterstudio.model.geometry import BoundingBox
from shatterstudio.model.partition import assign_to_seeds, bucketize, partition, sample_seeds


def cluster(center, count, rng):
    """Triangles whose centroids sit exactly on 'center'."""
    offsets = rng.normal(size=(count, 2, 3))
    third = -offsets.sum(axis=1, keepdims=True)
    return np.asarray(center) + np.concatenate([offsets, third], axis=1)


def test_every_triangle_lands_in_exactly_one_bucket(rng):
    triangles = rng.uniform(-5, 5, size=(200, 3, 3))
    buckets = partition(triangles, 7, rng)

    assert len(buckets) == 7
    assigned = np.sort(np.concatenate([b.triangle_indices for b in buckets]))
    np.testing.assert_array_equal(assigned, np.arange(200))
    assert sum(b.triangle_count for b in buckets) == 200


def test_bucket_triangles_are_the_original_triangles(rng):
    triangles = rng.uniform(-1, 1, size=(50, 3, 3))
    for bucket in partition(triangles, 4, rng):
        np.testing.assert_array_equal(bucket.triangles, triangles[bucket.triangle_indices])
        assert bucket.positions.shape == (9 * bucket.triangle_count,)


def test_assignment_minimizes_squared_centroid_distance(rng):
    triangles = rng.uniform(-3, 3, size=(120, 3, 3))
    seeds = rng.uniform(-3, 3, size=(9, 3))
    labels = assign_to_seeds(triangles, seeds)

    centroids = triangles.mean(axis=1)
    dist_sq = ((centroids[:, None, :] - seeds[None, :, :]) ** 2).sum(axis=-1)
    np.testing.assert_allclose(dist_sq[np.arange(120), labels], dist_sq.min(axis=1))


def test_two_separated_clusters_follow_their_seeds(rng):
    a, b = np.array([-10.0, 0.0, 0.0]), np.array([10.0, 0.0, 0.0])
    triangles = np.concatenate([cluster(a, 15, rng), cluster(b, 15, rng)])

    buckets = bucketize(triangles, np.stack([a, b]))

    np.testing.assert_array_equal(buckets[0].triangle_indices, np.arange(15))
    np.testing.assert_array_equal(buckets[1].triangle_indices, np.arange(15, 30))


def test_equal_distance_goes_to_lowest_seed_index():
    triangle = np.array([[[-1.0, -1.0, 0.0], [1.0, -1.0, 0.0], [0.0, 2.0, 0.0]]])
    seeds = np.array([[0.0, 0.0, 3.0], [0.0, 0.0, -3.0]])
    assert assign_to_seeds(triangle, seeds)[0] == 0
    assert assign_to_seeds(triangle, seeds[::-1])[0] == 0


def test_seeds_are_sampled_inside_the_bounds(rng):
    bounds = BoundingBox(minimum=np.array([-1.0, 2.0, 0.0]), maximum=np.array([1.0, 3.0, 0.5]))
    seeds = sample_seeds(bounds, 500, rng)
    assert seeds.shape == (500, 3)
    assert np.all(seeds >= bounds.minimum) and np.all(seeds <= bounds.maximum)


def test_empty_mesh_yields_no_buckets(rng):
    assert partition(np.empty((0, 3, 3)), 5, rng) == []


def test_unused_seed_gives_empty_bucket():
    triangles = np.array([[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]])
    buckets = bucketize(triangles, np.array([[0.0, 0.0, 0.0], [50.0, 50.0, 50.0]]))
    assert buckets[1].is_empty
    assert buckets[1].points.shape == (0, 3)


def test_partition_does_not_modify_input(rng):
    triangles = rng.uniform(-1, 1, size=(30, 3, 3))
    before = triangles.copy()
    partition(triangles, 3, rng)
    np.testing.assert_array_equal(triangles, before)


def test_partition_is_reproducible_with_the_same_seed():
    triangles = np.random.default_rng(0).uniform(-1, 1, size=(80, 3, 3))
    first = partition(triangles, 6, np.random.default_rng(42))
    second = partition(triangles, 6, np.random.default_rng(42))
    for a, b in zip(first, second):
        np.testing.assert_array_equal(a.triangle_indices, b.triangle_indices)


def test_flat_positions_are_accepted(rng):
    triangles = rng.uniform(-1, 1, size=(10, 3, 3))
    buckets = partition(triangles.reshape(-1), 2, rng)
    assert sum(b.triangle_count for b in buckets) == 10


@pytest.mark.parametrize("count", [0, -3])
def test_fragment_count_must_be_positive(count, rng):
    with pytest.raises(ValueError):
        partition(np.zeros((1, 3, 3)), count, rng)


def test_positions_must_form_whole_triangles(rng):
    with pytest.raises(ValueError):
        partition(np.zeros(10), 2, rng)


def test_many_seeds_keep_scratch_memory_bounded(rng):
    triangles = rng.uniform(-1, 1, size=(65536, 3, 3))
    seeds = rng.uniform(-1, 1, size=(300, 3))

    tracemalloc.start()
    try:
        labels = assign_to_seeds(triangles, seeds)
        _, peak = tracemalloc.get_traced_memory()
    finally:
        tracemalloc.stop()

    assert peak < 100 * 1024 * 1024
    assert labels.shape == (65536,)
    assert labels.min() >= 0 and labels.max() < 300


def test_chunked_assignment_matches_single_pass(rng, monkeypatch):
    triangles = rng.uniform(-2, 2, size=(500, 3, 3))
    seeds = rng.uniform(-2, 2, size=(40, 3))
    expected = assign_to_seeds(triangles, seeds)

    # Fewer pairs than seeds: one triangle per chunk
    monkeypatch.setattr(partition_module, "ASSIGN_PAIR_BUDGET", 7)
    np.testing.assert_array_equal(assign_to_seeds(triangles, seeds), expected)
