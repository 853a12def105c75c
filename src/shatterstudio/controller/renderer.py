"""
Off-Screen Rendering (PyVista Adapter)
======================================
This module draws the fragment set and captures images for the dataset.

Why is this file needed?
------------------------
1. Translation: It converts our pure model objects (Fragment, PerspectiveCamera,
   LightRig) into pyvista actors, cameras and lights.
2. Capture: It returns the rendered frame as an (H, W, 3) uint8 array.

The dataset loop only talks to the 'SceneRenderer' protocol, so tests can
substitute a renderer that needs no OpenGL context.
"""
from __future__ import annotations

import colorsys
from dataclasses import dataclass
import logging
from typing import Optional, Protocol, Sequence, TYPE_CHECKING

import matplotlib.colors as mcolors
import matplotlib.image as mpimg
import numpy as np
import pyvista as pv

from shatterstudio.config import DEFAULT_BACKGROUND

if TYPE_CHECKING:
    import numpy.typing as npt

    from shatterstudio.model.fragment import Fragment
    from shatterstudio.model.projection import PerspectiveCamera
    from shatterstudio.model.settings import AppearanceSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FragmentAppearance:
    color: str
    metalness: float
    roughness: float


@dataclass(frozen=True)
class LightRig:
    ambient_intensity: float = 0.2
    directional_intensity: float = 1.0
    directional_position: tuple[float, float, float] = (5.0, 10.0, 5.0)


def shift_hue(color: str, shift: float) -> str:
    """Rotate the hue of a colour in HLS space, keeping lightness and saturation."""
    r, g, b = mcolors.to_rgb(color)
    h, l, s = colorsys.rgb_to_hls(r, g, b)
    return mcolors.to_hex(colorsys.hls_to_rgb((h + shift) % 1.0, l, s))


def plan_appearances(
    count: int,
    settings: AppearanceSettings,
    rng: np.random.Generator
) -> list[FragmentAppearance]:
    """One material per fragment, optionally with a random hue shift and surface."""
    appearances: list[FragmentAppearance] = []
    for _ in range(count):
        color = settings.base_color
        if settings.randomize_hue:
            color = shift_hue(color, rng.random() * 0.1 - 0.05)

        metalness, roughness = settings.metalness, settings.roughness
        if settings.randomize_roughness:
            roughness = float(rng.random())
            metalness = float(rng.random())

        appearances.append(FragmentAppearance(color=color, metalness=metalness, roughness=roughness))
    return appearances


class SceneRenderer(Protocol):
    def set_fragments(self, fragments: Sequence[Fragment], appearances: Sequence[FragmentAppearance]) -> None: ...
    def set_camera(self, camera: PerspectiveCamera) -> None: ...
    def set_lights(self, lights: LightRig) -> None: ...
    def set_background(self, image_path: Optional[str]) -> None: ...
    def capture(self) -> npt.NDArray[np.uint8]: ...
    def close(self) -> None: ...


class PyVistaRenderer:
    """
    Renders fragments with an off-screen pyvista Plotter.

    The plotter window size fixes the image size; cameras passed to
    'set_camera' should use the same aspect ratio so labels line up.
    """

    def __init__(self, width: int = 640, height: int = 480, off_screen: bool = True) -> None:
        self.width = width
        self.height = height
        self.plotter = pv.Plotter(off_screen=off_screen, window_size=[width, height])
        self.plotter.set_background(DEFAULT_BACKGROUND)

        self._actors: list[pv.Actor] = []
        self._ambient: float = LightRig().ambient_intensity
        self._has_background_image: bool = False
        self._shown: bool = False

        self.set_lights(LightRig())

    # ------------------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------------------

    def set_fragments(self, fragments: Sequence[Fragment], appearances: Sequence[FragmentAppearance]) -> None:
        """Replace all fragment actors."""
        for actor in self._actors:
            self.plotter.remove_actor(actor, render=False)
        self._actors.clear()

        for fragment, appearance in zip(fragments, appearances):
            actor = self.plotter.add_mesh(
                fragment.geometry,
                color=appearance.color,
                pbr=True,
                metallic=appearance.metalness,
                roughness=appearance.roughness,
                smooth_shading=False,
                culling=False,
                ambient=self._ambient,
                show_scalar_bar=False,
                render=False,
            )
            actor.user_matrix = fragment.world_matrix()
            self._actors.append(actor)
        logger.debug(f"Renderer holds {len(self._actors)} fragment actors.")

    def set_camera(self, camera: PerspectiveCamera) -> None:
        self.plotter.camera_position = [
            tuple(camera.position),
            tuple(camera.target),
            tuple(camera.up),
        ]
        self.plotter.camera.view_angle = camera.fov
        self.plotter.camera.clipping_range = (camera.near, camera.far)

    def set_lights(self, lights: LightRig) -> None:
        self.plotter.remove_all_lights()
        light = pv.Light(
            position=lights.directional_position,
            focal_point=(0.0, 0.0, 0.0),
            intensity=lights.directional_intensity,
            light_type="scene light",
        )
        light.positional = False
        self.plotter.add_light(light)

        self._ambient = float(np.clip(lights.ambient_intensity, 0.0, 1.0))
        for actor in self._actors:
            actor.prop.ambient = self._ambient

    def set_background(self, image_path: Optional[str]) -> None:
        """
        Show an image behind the scene, or the default colour for None.

        Raises:
            Exception: Whatever the image reader raises for unreadable files.
        """
        if self._has_background_image:
            self.plotter.remove_background_image()
            self._has_background_image = False

        if image_path is None:
            self.plotter.set_background(DEFAULT_BACKGROUND)
            return

        # Fail early on unreadable files, VTK only warns
        mpimg.imread(image_path)
        self.plotter.add_background_image(image_path)
        self._has_background_image = True

    def capture(self) -> npt.NDArray[np.uint8]:
        if not self._shown:
            self.plotter.show(auto_close=False)
            self._shown = True
        else:
            self.plotter.render()
        return np.asarray(self.plotter.screenshot(return_img=True), dtype=np.uint8)

    def close(self) -> None:
        self.plotter.close()
