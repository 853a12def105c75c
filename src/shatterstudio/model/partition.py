"""
Nearest-Seed Partitioning
=========================
Splits a triangle soup into buckets by assigning every triangle to the
random seed point closest to its centroid.

This approximates a Voronoi split of the surface: cell borders follow the
original triangle edges instead of cutting through triangles.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

import numpy as np

from shatterstudio.model.geometry import BoundingBox, as_triangles

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

# (triangle, seed) distance pairs evaluated at once; about 32 MB of scratch arrays
ASSIGN_PAIR_BUDGET = 1 << 20


@dataclass
class FragmentBucket:
    """Triangles assigned to one seed."""
    seed_index: int
    seed: npt.NDArray[np.float64]
    triangles: npt.NDArray[np.float64]     # (K, 3, 3)
    triangle_indices: npt.NDArray[np.int64]

    @property
    def triangle_count(self) -> int:
        return int(self.triangles.shape[0])

    @property
    def is_empty(self) -> bool:
        return self.triangle_count == 0

    @property
    def positions(self) -> npt.NDArray[np.float64]:
        """Flat vertex list, 9 floats per triangle."""
        return self.triangles.reshape(-1)

    @property
    def points(self) -> npt.NDArray[np.float64]:
        """Deduplicated vertex positions used for hull reconstruction."""
        if self.is_empty:
            return np.empty((0, 3))
        return np.unique(self.triangles.reshape(-1, 3), axis=0)


def sample_seeds(bounds: BoundingBox, count: int, rng: np.random.Generator) -> npt.NDArray[np.float64]:
    """Draw 'count' points uniformly inside the box."""
    return rng.uniform(bounds.minimum, bounds.maximum, size=(count, 3))


def triangle_centroids(triangles: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    return triangles.mean(axis=1)


def assign_to_seeds(
    triangles: npt.ArrayLike,
    seeds: npt.ArrayLike
) -> npt.NDArray[np.int64]:
    """
    Index of the nearest seed for every triangle centroid.

    Distances are squared Euclidean. On equal distances the lowest seed
    index wins (numpy.argmin returns the first occurrence).
    """
    tris = as_triangles(triangles)
    seed_arr = np.asarray(seeds, dtype=np.float64).reshape(-1, 3)
    if seed_arr.shape[0] == 0:
        raise ValueError("At least one seed is required.")

    centroids = triangle_centroids(tris)
    labels = np.empty(centroids.shape[0], dtype=np.int64)
    chunk_size = max(1, ASSIGN_PAIR_BUDGET // seed_arr.shape[0])
    for start in range(0, centroids.shape[0], chunk_size):
        chunk = centroids[start:start + chunk_size]
        diff = chunk[:, None, :] - seed_arr[None, :, :]
        dist_sq = np.einsum("ijk,ijk->ij", diff, diff)
        labels[start:start + chunk.shape[0]] = np.argmin(dist_sq, axis=1)
    return labels


def bucketize(
    triangles: npt.ArrayLike,
    seeds: npt.ArrayLike
) -> list[FragmentBucket]:
    """One bucket per seed (possibly empty), in seed order."""
    tris = as_triangles(triangles)
    seed_arr = np.asarray(seeds, dtype=np.float64).reshape(-1, 3)
    labels = assign_to_seeds(tris, seed_arr)

    buckets: list[FragmentBucket] = []
    for s in range(seed_arr.shape[0]):
        idx = np.flatnonzero(labels == s)
        buckets.append(FragmentBucket(
            seed_index=s,
            seed=seed_arr[s].copy(),
            triangles=tris[idx],
            triangle_indices=idx,
        ))
    return buckets


def partition(
    triangles: npt.ArrayLike,
    fragment_count: int,
    rng: np.random.Generator
) -> list[FragmentBucket]:
    """
    Partition a triangle soup into 'fragment_count' buckets.

    Seeds are sampled uniformly inside the mesh bounding box. Empty input
    yields an empty list.

    Args:
        triangles: (T, 3, 3) array or flat positions.
        fragment_count: Number of seeds (>= 1).
        rng: Random generator the seeds are drawn from.

    Returns:
        A list of exactly 'fragment_count' buckets (some may be empty),
        or [] if there are no triangles.
    """
    if fragment_count < 1:
        raise ValueError(f"fragment_count must be >= 1, got {fragment_count}.")

    tris = as_triangles(triangles)
    if tris.shape[0] == 0:
        logger.debug("Partition called with no triangles.")
        return []

    seeds = sample_seeds(BoundingBox.from_points(tris), fragment_count, rng)
    buckets = bucketize(tris, seeds)

    n_empty = sum(1 for b in buckets if b.is_empty)
    logger.debug(
        f"Partitioned {tris.shape[0]} triangles into {fragment_count} buckets "
        f"({n_empty} empty)."
    )
    return buckets
