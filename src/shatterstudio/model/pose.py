"""
Explosion Poses
===============
Plans the exploded pose of each fragment and interpolates between the
assembled state (force = 0) and the exploded state (force = 1).

Interpolation law:
    volume mode:    position = lerp(original_position, target_position, force)
    direction mode: position = original_position + direction * force * EXPLOSION_SCALE
    rotation        = R(axis, force * SPIN_SCALE * rotation_force) * original_rotation
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional, Sequence, TYPE_CHECKING

import numpy as np
from scipy.spatial.transform import Rotation

from shatterstudio.config import DIRECTION_TARGET_DISTANCE, EPSILON, EXPLOSION_SCALE, SPIN_SCALE

if TYPE_CHECKING:
    import numpy.typing as npt

    from shatterstudio.model.fragment import Fragment
    from shatterstudio.model.settings import ExplosionSettings, ShatterVolume

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transform:
    position: npt.NDArray[np.float64]
    quaternion: Rotation


@dataclass(frozen=True)
class FragmentPose:
    """Rest placement and exploded target of a single fragment."""
    original_position: npt.NDArray[np.float64]
    original_rotation: Rotation
    direction: npt.NDArray[np.float64]
    rotation_axis: npt.NDArray[np.float64]
    target_position: npt.NDArray[np.float64]
    use_volume: bool

    def at(self, force: float, rotation_force: float) -> Transform:
        """Transform at the given scatter and spin intensities."""
        if self.use_volume:
            position = self.original_position + (self.target_position - self.original_position) * force
        else:
            position = self.original_position + self.direction * (force * EXPLOSION_SCALE)

        spin = Rotation.from_rotvec(self.rotation_axis * (force * SPIN_SCALE * rotation_force))
        return Transform(position=position, quaternion=spin * self.original_rotation)


def random_unit_vector(rng: np.random.Generator) -> npt.NDArray[np.float64]:
    """Uniformly distributed direction on the unit sphere."""
    while True:
        v = rng.normal(size=3)
        norm = np.linalg.norm(v)
        if norm > EPSILON:
            return v / norm


def plan_pose(
    fragment: Fragment,
    rng: np.random.Generator,
    volume: Optional[ShatterVolume] = None
) -> FragmentPose:
    """
    Sample the exploded pose of one fragment.

    With a volume the target is a uniform point inside it; otherwise the
    target is DIRECTION_TARGET_DISTANCE units along the explosion direction
    (informational only, the direction law drives the motion).
    """
    original_position = fragment.position.copy()
    if volume is not None:
        target = volume.sample(rng)
    else:
        target = original_position + fragment.direction * DIRECTION_TARGET_DISTANCE

    return FragmentPose(
        original_position=original_position,
        original_rotation=fragment.quaternion,
        direction=fragment.direction.copy(),
        rotation_axis=random_unit_vector(rng),
        target_position=target,
        use_volume=volume is not None,
    )


def plan_poses(
    fragments: Sequence[Fragment],
    rng: np.random.Generator,
    volume: Optional[ShatterVolume] = None
) -> None:
    """Assign an independently sampled pose to every fragment."""
    for fragment in fragments:
        fragment.pose = plan_pose(fragment, rng, volume)
    logger.debug(f"Planned poses for {len(fragments)} fragments (volume={volume is not None}).")


def apply_explosion(fragments: Sequence[Fragment], explosion: ExplosionSettings) -> None:
    """Move every planned fragment to its pose at the given intensities."""
    for fragment in fragments:
        if fragment.pose is None:
            continue
        transform = fragment.pose.at(explosion.force, explosion.rotation_force)
        fragment.position = transform.position
        fragment.quaternion = transform.quaternion
