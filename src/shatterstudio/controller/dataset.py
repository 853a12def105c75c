"""
Dataset Generation
==================
This module drives the batch loop that turns repeated random shatters into a
YOLO object-detection dataset.

Why is this file needed?
------------------------
1. Orchestration: Per sample it re-shatters, randomizes the camera, the
   lights and the background, captures an image and computes the labels.
2. Robustness: A failing background or a failing capture never aborts the
   batch; a cancel request stops it after the sample in flight.
3. Cooperation: 'iter_samples' yields after every sample so the caller can
   refresh a display between samples.

Classes:
    GenerationState: Step of the per-sample state machine.
    DatasetGenerator: Runs the loop.
    DatasetResult: Collected samples of one run.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
import logging
import os
import threading
from typing import Callable, Iterator, Optional, Sequence, TYPE_CHECKING

import numpy as np

from shatterstudio.config import DEFAULT_CAMERA_POSITION, IMAGE_EXTENSIONS
from shatterstudio.controller.renderer import LightRig, plan_appearances
from shatterstudio.model.io import DatasetSample
from shatterstudio.model.projection import PerspectiveCamera

if TYPE_CHECKING:
    from shatterstudio.controller.renderer import SceneRenderer
    from shatterstudio.model.settings import DatasetSettings
    from shatterstudio.model.state import ShatterSession

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]
SampleWriter = Callable[[Sequence[DatasetSample]], int]


class GenerationState(StrEnum):
    IDLE = "idle"
    RESHATTER = "reshatter"
    RANDOMIZE_CAMERA = "randomize_camera"
    RANDOMIZE_ENVIRONMENT = "randomize_environment"
    CAPTURE_IMAGE = "capture_image"
    COMPUTE_LABELS = "compute_labels"
    APPEND_SAMPLE = "append_sample"
    FINALIZE = "finalize"


@dataclass
class DatasetResult:
    requested: int
    samples: list[DatasetSample] = field(default_factory=list)
    cancelled: bool = False
    written: int = 0

    @property
    def captured_samples(self) -> list[DatasetSample]:
        return [s for s in self.samples if s.captured]

    @property
    def skipped_count(self) -> int:
        return sum(1 for s in self.samples if not s.captured)


def random_camera(settings: DatasetSettings, rng: np.random.Generator) -> PerspectiveCamera:
    """Camera on a random point of the upper hemisphere band, looking at the origin."""
    theta = rng.random() * np.pi * 2.0
    phi = rng.random() * (np.pi * 0.4) + 0.1
    d_min = settings.camera_distance_min
    d_max = max(d_min, settings.camera_distance_max)
    radius = d_min + rng.random() * (d_max - d_min)
    return PerspectiveCamera.from_spherical(radius, phi, theta, aspect=settings.aspect)


def random_light_rig(settings: DatasetSettings, rng: np.random.Generator) -> LightRig:
    l_min = settings.light_min
    l_max = max(l_min, settings.light_max)
    return LightRig(
        ambient_intensity=l_min + rng.random() * (l_max - l_min) * 0.3,
        directional_intensity=l_min + rng.random() * (l_max - l_min),
        directional_position=(
            (rng.random() - 0.5) * 20.0,
            rng.random() * 20.0,
            (rng.random() - 0.5) * 20.0,
        ),
    )


def list_background_images(directory: Optional[str]) -> list[str]:
    """Image files directly inside 'directory', sorted; [] if it does not exist."""
    if not directory or not os.path.isdir(directory):
        return []
    return sorted(
        os.path.join(directory, name)
        for name in os.listdir(directory)
        if name.lower().endswith(IMAGE_EXTENSIONS)
    )


class DatasetGenerator:
    """
    Runs (re-shatter -> camera -> environment -> capture -> labels) cycles.

    The generator uses the session's random stream for every random choice,
    so a session built with a seeded generator yields a reproducible batch.
    """

    def __init__(
        self,
        session: ShatterSession,
        renderer: SceneRenderer,
        settings: DatasetSettings,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.session = session
        self.renderer = renderer
        self.settings = settings
        self.progress_callback = progress_callback
        self._cancel = cancel_event or threading.Event()
        self._state = GenerationState.IDLE
        self._backgrounds = list_background_images(settings.background_dir)
        self.default_camera = PerspectiveCamera(position=np.array(DEFAULT_CAMERA_POSITION), aspect=settings.aspect)

    @property
    def state(self) -> GenerationState:
        return self._state

    @property
    def is_cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Request a stop; the sample in flight is completed first."""
        self._cancel.set()

    # ------------------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------------------

    def iter_samples(self) -> Iterator[DatasetSample]:
        """Yield one sample at a time, strictly in index order."""
        n = self.settings.sample_count
        for i in range(n):
            if self.is_cancelled:
                logger.info(f"Dataset generation cancelled after {i} of {n} samples.")
                break
            self._report(int(100 * i / max(n, 1)), f"Generating Sample {i + 1} of {n}...")
            yield self._generate_sample(i)

    def generate(self, writer: Optional[SampleWriter] = None) -> DatasetResult:
        """
        Run the whole batch, then hand the captured samples to 'writer'.

        Returns:
            The collected samples; a cancelled run returns the partial batch.
        """
        logger.info(f"Starting dataset generation: {self.settings.sample_count} samples.")
        result = DatasetResult(requested=self.settings.sample_count)
        try:
            for sample in self.iter_samples():
                result.samples.append(sample)
            result.cancelled = self.is_cancelled

            self._state = GenerationState.FINALIZE
            if writer is not None:
                self._report(99, "Compressing Dataset...")
                result.written = writer(result.captured_samples)
        finally:
            self._state = GenerationState.IDLE

        self._report(100, "Done.")
        logger.info(
            f"Dataset generation finished: {len(result.captured_samples)} captured, "
            f"{result.skipped_count} skipped, cancelled={result.cancelled}."
        )
        return result

    # ------------------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------------------

    def _generate_sample(self, index: int) -> DatasetSample:
        self._state = GenerationState.RESHATTER
        fragments = self.session.reshatter()
        appearances = plan_appearances(len(fragments), self.session.settings.appearance, self.session.rng)
        self.renderer.set_fragments(fragments, appearances)

        self._state = GenerationState.RANDOMIZE_CAMERA
        if self.settings.randomize_camera:
            camera = random_camera(self.settings, self.session.rng)
        else:
            camera = self.default_camera
        self.renderer.set_camera(camera)

        self._state = GenerationState.RANDOMIZE_ENVIRONMENT
        self._apply_background()
        if self.settings.randomize_lights:
            self.renderer.set_lights(random_light_rig(self.settings, self.session.rng))

        self._state = GenerationState.CAPTURE_IMAGE
        try:
            image = self.renderer.capture()
        except Exception as e:
            logger.warning(f"Capture of sample {index} failed, skipping: {e}")
            self._state = GenerationState.APPEND_SAMPLE
            return DatasetSample(index=index, captured=False, error=str(e))

        self._state = GenerationState.COMPUTE_LABELS
        records = self.session.yolo_records(camera, self.settings.class_id)

        self._state = GenerationState.APPEND_SAMPLE
        logger.debug(f"Sample {index}: {len(fragments)} fragments, {len(records)} labels.")
        return DatasetSample(index=index, image=image, records=records)

    def _apply_background(self) -> None:
        path: Optional[str] = None
        if self.settings.randomize_background and self._backgrounds:
            path = self._backgrounds[int(self.session.rng.integers(len(self._backgrounds)))]
        try:
            self.renderer.set_background(path)
        except Exception as e:
            logger.warning(f"Background '{path}' failed to load, using default: {e}")
            self.renderer.set_background(None)

    def _report(self, percentage: int, message: str) -> None:
        if self.progress_callback is not None:
            self.progress_callback(percentage, message)
