"""
Input/Output Manager
Loads source meshes and writes YOLO datasets (images/ + labels/) to a
directory or a zip archive.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import io
import logging
import os
from typing import Iterable, Optional, Sequence, TYPE_CHECKING
import zipfile

import matplotlib.image as mpimg
import numpy as np
import pyvista as pv

from shatterstudio.config import NORMALIZED_MODEL_SIZE
from shatterstudio.model.geometry import BoundingBox, SourceMesh

if TYPE_CHECKING:
    import numpy.typing as npt

    from shatterstudio.model.projection import YoloRecord

logger = logging.getLogger(__name__)

IMAGES_DIR = "images"
LABELS_DIR = "labels"


@dataclass
class DatasetSample:
    """
    One captured image and its labels.
    'captured' is False when the capture failed; such samples are never persisted.
    """
    index: int
    image: Optional[npt.NDArray[np.uint8]] = None
    records: list[YoloRecord] = field(default_factory=list)
    captured: bool = True
    error: Optional[str] = None

    @property
    def name(self) -> str:
        return DatasetIO.sample_name(self.index)

    @property
    def label_text(self) -> str:
        return DatasetIO.label_text(self.records)


class DatasetIO:

    @staticmethod
    def sample_name(index: int) -> str:
        return f"sample_{index:05d}"

    @staticmethod
    def label_text(records: Iterable[YoloRecord]) -> str:
        return "\n".join(r.to_line() for r in records)

    @staticmethod
    def default_archive_name() -> str:
        return f"shatter_dataset_yolo_{datetime.now().strftime('%Y%m%d_%H%M%S')}.zip"

    @staticmethod
    def encode_png(image: npt.NDArray[np.uint8]) -> bytes:
        buffer = io.BytesIO()
        mpimg.imsave(buffer, np.asarray(image), format="png")
        return buffer.getvalue()

    @staticmethod
    def write_directory(samples: Sequence[DatasetSample], root: str) -> int:
        """
        Write images/<name>.png and labels/<name>.txt under 'root'.

        A sample that fails to encode or write is logged and skipped.

        Returns:
            Number of samples written.
        """
        logger.info(f"Writing dataset to directory: {root}")
        images_dir = os.path.join(root, IMAGES_DIR)
        labels_dir = os.path.join(root, LABELS_DIR)
        os.makedirs(images_dir, exist_ok=True)
        os.makedirs(labels_dir, exist_ok=True)

        written = 0
        for sample in samples:
            if not sample.captured or sample.image is None:
                logger.debug(f"Skipping {sample.name}: not captured.")
                continue
            try:
                png = DatasetIO.encode_png(sample.image)
                with open(os.path.join(images_dir, f"{sample.name}.png"), "wb") as f:
                    f.write(png)
                with open(os.path.join(labels_dir, f"{sample.name}.txt"), "w", encoding="utf-8") as f:
                    f.write(sample.label_text)
            except Exception as e:
                logger.warning(f"Could not write {sample.name}, skipping: {e}")
                continue
            written += 1

        logger.info(f"Wrote {written} samples to {root}")
        return written

    @staticmethod
    def write_archive(samples: Sequence[DatasetSample], filepath: str) -> int:
        """Same layout as 'write_directory', packed into one zip file."""
        logger.info(f"Writing dataset archive: {filepath}")
        written = 0
        try:
            with zipfile.ZipFile(filepath, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for sample in samples:
                    if not sample.captured or sample.image is None:
                        logger.debug(f"Skipping {sample.name}: not captured.")
                        continue
                    # No archive entry for an image that fails to encode
                    try:
                        png = DatasetIO.encode_png(sample.image)
                    except Exception as e:
                        logger.warning(f"Could not encode {sample.name}, skipping: {e}")
                        continue
                    zf.writestr(f"{IMAGES_DIR}/{sample.name}.png", png)
                    zf.writestr(f"{LABELS_DIR}/{sample.name}.txt", sample.label_text)
                    written += 1
        except Exception as e:
            logger.exception(f"Failed to write dataset archive: {e}")
            raise e

        logger.info(f"Archived {written} samples to {filepath}")
        return written


def _iter_surfaces(data: pv.DataSet | pv.MultiBlock, prefix: str) -> Iterable[tuple[str, pv.PolyData]]:
    """Yield every non-empty surface of a (possibly nested) dataset."""
    if isinstance(data, pv.MultiBlock):
        for i, block in enumerate(data):
            if block is None:
                continue
            name = data.get_block_name(i) or f"{prefix}_{i}"
            yield from _iter_surfaces(block, name)
        return
    surface = data if isinstance(data, pv.PolyData) else data.extract_surface()
    if surface.n_cells > 0:
        yield prefix, surface


def normalize_meshes(meshes: Sequence[SourceMesh], size: float = NORMALIZED_MODEL_SIZE) -> list[SourceMesh]:
    """
    Recentre the meshes on their common bounding-box centre and scale them
    uniformly so the bounding-box diagonal equals 'size'.
    """
    non_empty = [m for m in meshes if not m.is_empty]
    if not non_empty:
        return list(meshes)

    bounds = BoundingBox.from_points(np.concatenate([m.triangles for m in non_empty]))
    diagonal = float(np.linalg.norm(bounds.size))
    scale = size / diagonal if diagonal > 0.0 else 1.0

    return [
        SourceMesh(triangles=(m.triangles - bounds.center) * scale, name=m.name)
        for m in meshes
    ]


def load_source_meshes(filepath: str, normalize: bool = True) -> list[SourceMesh]:
    """
    Read every triangle mesh of a model file (anything pyvista can read:
    .glb/.gltf, .obj, .stl, .ply, .vtk, ...).

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file contains no triangles.
    """
    logger.info(f"Loading model from: {filepath}")
    if not os.path.exists(filepath):
        msg = f"Model file '{filepath}' does not exist."
        logger.error(msg)
        raise FileNotFoundError(msg)

    data = pv.read(filepath)
    base = os.path.splitext(os.path.basename(filepath))[0]
    meshes = [SourceMesh.from_polydata(surface, name=name) for name, surface in _iter_surfaces(data, base)]
    meshes = [m for m in meshes if not m.is_empty]
    if not meshes:
        msg = f"Model file '{filepath}' contains no triangles."
        logger.error(msg)
        raise ValueError(msg)

    logger.info(f"Loaded {len(meshes)} mesh(es), {sum(m.triangle_count for m in meshes)} triangles.")
    return normalize_meshes(meshes) if normalize else meshes
