"""
Shatter Session (Data Model)
============================
This module defines the central data structure of a running session.

Why is this file needed?
------------------------
1. State Management: It holds the source meshes, the active settings and the
   current fragment set in one place.
2. Ownership: Replacing or clearing the fragment set always releases the
   previous set, on every path (shatter, re-shatter, reset, close).
3. Decoupling: Renderers and the dataset loop read fragments from this object;
   they never build or free fragments themselves.

Classes:
    ShatterSession: The main container class.
"""
from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Optional, Sequence, TYPE_CHECKING

import numpy as np

from shatterstudio.model.fragment import Fragment, FragmentSet, build_fragments
from shatterstudio.model.partition import partition
from shatterstudio.model.pose import apply_explosion, plan_poses
from shatterstudio.model.projection import ProjectedBox, YoloRecord, project_fragments, yolo_records
from shatterstudio.model.settings import ExplosionSettings, SessionSettings, ShatterSettings

if TYPE_CHECKING:
    from shatterstudio.model.geometry import SourceMesh
    from shatterstudio.model.projection import PerspectiveCamera

logger = logging.getLogger(__name__)


def shatter_meshes(
    sources: Sequence[SourceMesh],
    settings: ShatterSettings,
    rng: np.random.Generator
) -> FragmentSet:
    """
    Partition, build and plan every source mesh.

    Fragments of all meshes are concatenated into one set. Fragments are
    posed at rest (force = 0) until an explosion is applied.
    """
    fragments: list[Fragment] = []
    for source in sources:
        if source.is_empty:
            logger.warning(f"Mesh '{source.name}' has no triangles, skipping.")
            continue
        buckets = partition(source.triangles, settings.fragment_count, rng)
        built = build_fragments(buckets, source, settings.solid)
        logger.debug(f"Mesh '{source.name}': {len(built)} of {len(buckets)} buckets became fragments.")
        fragments.extend(built)

    plan_poses(fragments, rng, settings.volume())

    n_solid = sum(1 for f in fragments if f.is_solid)
    logger.info(
        f"Shattered {len(sources)} mesh(es) into {len(fragments)} fragments "
        f"({n_solid} solid, {len(fragments) - n_solid} shell)."
    )
    return FragmentSet(fragments)


class ShatterSession:
    """
    Owns the active fragment set.

    All mutations happen under a lock, so a reader calling 'fragments' sees
    either the complete old set or the complete new one.
    """

    def __init__(
        self,
        sources: Sequence[SourceMesh],
        settings: Optional[SessionSettings] = None,
        rng: Optional[np.random.Generator] = None
    ) -> None:
        self.sources: tuple[SourceMesh, ...] = tuple(sources)
        self.settings: SessionSettings = settings or SessionSettings()
        self.rng: np.random.Generator = rng if rng is not None else np.random.default_rng()
        # Overlay confidences must not advance the shatter stream
        self.overlay_rng: np.random.Generator = self.rng.spawn(1)[0]

        self._fragment_set: FragmentSet = FragmentSet()
        self._shattered: bool = False
        self._lock = threading.RLock()

    def __enter__(self) -> ShatterSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def shattered(self) -> bool:
        return self._shattered

    @property
    def fragments(self) -> tuple[Fragment, ...]:
        with self._lock:
            return self._fragment_set.fragments

    def update_settings(self, **changes) -> None:
        """
        Replace parts of the settings, e.g. update_settings(explosion=ExplosionSettings(0.5)).
        Takes effect on the next shatter / explode.
        """
        with self._lock:
            self.settings = dataclasses.replace(self.settings, **changes)

    def shatter(self) -> tuple[Fragment, ...]:
        """Shatter the source meshes once. No-op while already shattered."""
        with self._lock:
            if self._shattered:
                return self._fragment_set.fragments
            new_set = shatter_meshes(self.sources, self.settings.shatter, self.rng)
            if len(new_set) == 0:
                logger.warning("Shatter produced no fragments.")
                return ()
            self._fragment_set = new_set
            self._shattered = True
            apply_explosion(self._fragment_set, self.settings.explosion)
            return self._fragment_set.fragments

    def reshatter(self) -> tuple[Fragment, ...]:
        """Release the current fragments and shatter again with fresh seeds."""
        with self._lock:
            self._clear()
            return self.shatter()

    def reset(self) -> None:
        """Release all fragments and return to the assembled source meshes."""
        with self._lock:
            self._clear()
        logger.info("Shatter session has been reset.")

    def close(self) -> None:
        self.reset()

    def explode(self, explosion: Optional[ExplosionSettings] = None) -> None:
        """Move the fragments to the pose of the given (or current) intensities."""
        with self._lock:
            if explosion is not None:
                self.settings = dataclasses.replace(self.settings, explosion=explosion)
            apply_explosion(self._fragment_set, self.settings.explosion)

    def projected_boxes(
        self,
        camera: PerspectiveCamera,
        viewport_width: float,
        viewport_height: float
    ) -> list[ProjectedBox]:
        return project_fragments(self.fragments, camera, viewport_width, viewport_height, self.overlay_rng)

    def yolo_records(self, camera: PerspectiveCamera, class_id: int = 0) -> list[YoloRecord]:
        return yolo_records(self.fragments, camera, class_id)

    def _clear(self) -> None:
        old = self._fragment_set
        self._fragment_set = FragmentSet()
        self._shattered = False
        old.release()
