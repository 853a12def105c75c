"""
Configuration & Constants
=========================
This module serves as the central registry for resource paths and the fixed
constants of the fragmentation pipeline.

Why is this file needed?
------------------------
1. Abstraction: The scale factors of the explosion law, the hull threshold and
   the default background live in one place instead of being repeated in the
   model and the renderer.
2. Deployment: It handles the logic required by PyInstaller (sys._MEIPASS) to
   find assets (background images) when the app is frozen.

Exports:
    ASSETS_PATH (str): Absolute path to the assets directory.
    BACKGROUNDS_PATH (str): Default directory scanned for background images.
"""
import sys
import os
from pathlib import Path


def get_resource_path(relative_path: str) -> str:
    """
    Get absolute path to resource, works for dev and for PyInstaller.
    """
    if hasattr(sys, '_MEIPASS'):
        base_path: str = getattr(sys, '_MEIPASS')
        return os.path.join(base_path, relative_path)

    # config.py is in src/shatterstudio/
    current_file_path: Path = Path(__file__)
    project_root: Path = current_file_path.parent.parent.parent
    return os.path.join(str(project_root), relative_path)


ASSETS_PATH: str = get_resource_path("assets")
BACKGROUNDS_PATH: str = os.path.join(ASSETS_PATH, "backgrounds")

# --- Explosion law ---
EXPLOSION_SCALE: float = 12.0   # world units travelled along 'direction' at force = 1
SPIN_SCALE: float = 15.0        # radians of spin at force = 1, rotation force = 1
DIRECTION_TARGET_DISTANCE: float = 5.0
FALLBACK_DIRECTION: tuple[float, float, float] = (0.0, 1.0, 0.0)

# --- Fragment building ---
MIN_HULL_POINTS: int = 4
EPSILON: float = 1e-9

# --- Assets ---
NORMALIZED_MODEL_SIZE: float = 5.0
IMAGE_EXTENSIONS: tuple[str, ...] = (".png", ".jpg", ".jpeg")

# --- Rendering ---
DEFAULT_BACKGROUND: str = "#050505"
DEFAULT_FOV: float = 75.0
DEFAULT_NEAR: float = 0.1
DEFAULT_FAR: float = 1000.0
DEFAULT_CAMERA_POSITION: tuple[float, float, float] = (8.0, 8.0, 8.0)
