"""
Session Settings (Immutable Configuration)
==========================================
This module defines the configuration structures read by the partitioner,
the pose planner, the renderer and the dataset loop.

Why is this file needed?
------------------------
1. Explicitness: Every operation receives the settings it needs as an
   argument instead of reading a shared mutable settings object.
2. Validation: Invalid values are rejected once, at construction time.

Classes:
    ShatterVolume: Box bounding the random target positions.
    ShatterSettings: Fragment count, solid/shell mode, volume policy.
    ExplosionSettings: Scatter and spin intensities.
    AppearanceSettings: Fragment material parameters for the renderer.
    DatasetSettings: Sample count, image size and randomization ranges.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, TYPE_CHECKING

import numpy as np

from shatterstudio.model.geometry import BoundingBox

if TYPE_CHECKING:
    import numpy.typing as npt


@dataclass(frozen=True)
class ShatterVolume:
    """
    Axis-aligned box centred at the origin.
    Used only to sample target positions, never to clip geometry.
    """
    half_extents: tuple[float, float, float] = (3.0, 3.0, 3.0)

    def __post_init__(self) -> None:
        if len(self.half_extents) != 3 or any(e <= 0 for e in self.half_extents):
            raise ValueError(f"Volume half-extents must be three positive numbers, got {self.half_extents}.")

    @classmethod
    def from_size(cls, size: tuple[float, float, float]) -> ShatterVolume:
        return cls(half_extents=tuple(float(s) / 2.0 for s in size))

    @property
    def bounds(self) -> BoundingBox:
        h = np.asarray(self.half_extents, dtype=np.float64)
        return BoundingBox(minimum=-h, maximum=h)

    def sample(self, rng: np.random.Generator) -> npt.NDArray[np.float64]:
        """Uniform random point inside the volume."""
        h = np.asarray(self.half_extents, dtype=np.float64)
        return rng.uniform(-h, h)


@dataclass(frozen=True)
class ShatterSettings:
    fragment_count: int = 30
    solid: bool = True
    use_volume: bool = True
    volume_size: tuple[float, float, float] = (6.0, 6.0, 6.0)

    def __post_init__(self) -> None:
        if self.fragment_count < 1:
            raise ValueError(f"fragment_count must be >= 1, got {self.fragment_count}.")
        # Validates the sizes as a side effect
        ShatterVolume.from_size(self.volume_size)

    def volume(self) -> Optional[ShatterVolume]:
        """The target volume, or None when fragments follow their direction."""
        if not self.use_volume:
            return None
        return ShatterVolume.from_size(self.volume_size)


@dataclass(frozen=True)
class ExplosionSettings:
    force: float = 0.2
    rotation_force: float = 1.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.force <= 1.0:
            raise ValueError(f"force must lie in [0, 1], got {self.force}.")
        if self.rotation_force < 0.0:
            raise ValueError(f"rotation_force must be >= 0, got {self.rotation_force}.")


@dataclass(frozen=True)
class AppearanceSettings:
    base_color: str = "#0088ff"
    metalness: float = 0.5
    roughness: float = 0.5
    randomize_hue: bool = True
    randomize_roughness: bool = True


@dataclass(frozen=True)
class DatasetSettings:
    sample_count: int = 10
    image_width: int = 640
    image_height: int = 480

    randomize_camera: bool = True
    camera_distance_min: float = 6.0
    camera_distance_max: float = 15.0

    randomize_lights: bool = True
    light_min: float = 0.2
    light_max: float = 2.0

    randomize_background: bool = True
    background_dir: Optional[str] = None

    class_id: int = 0

    def __post_init__(self) -> None:
        if self.sample_count < 0:
            raise ValueError(f"sample_count must be >= 0, got {self.sample_count}.")
        if self.image_width <= 0 or self.image_height <= 0:
            raise ValueError(f"Image size must be positive, got {self.image_width}x{self.image_height}.")
        if self.camera_distance_min <= 0:
            raise ValueError("camera_distance_min must be positive.")

    @property
    def aspect(self) -> float:
        return self.image_width / self.image_height


@dataclass(frozen=True)
class SessionSettings:
    """Bundle of the settings a shatter session is created with."""
    shatter: ShatterSettings = field(default_factory=ShatterSettings)
    explosion: ExplosionSettings = field(default_factory=ExplosionSettings)
    appearance: AppearanceSettings = field(default_factory=AppearanceSettings)
