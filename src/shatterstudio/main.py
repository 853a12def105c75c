"""
Application Initialization
==========================
This module wires the model, the renderer and the dataset loop together and
exposes them as a command-line tool.

Why is this file needed?
------------------------
It acts as the "Dependency Injection" root. It:
1. Builds the immutable settings from the command-line arguments.
2. Instantiates the random generator, the ShatterSession and the renderer.
3. Passes them into the DatasetGenerator and selects the output writer.

Commands:
    generate: Render N randomized shatters and write a YOLO dataset.
    shatter:  Shatter a model once and print a fragment summary.
"""
from __future__ import annotations

import argparse
import logging
import os
import signal
from typing import Optional, Sequence

import numpy as np

from shatterstudio.config import BACKGROUNDS_PATH
from shatterstudio.controller.dataset import DatasetGenerator
from shatterstudio.controller.renderer import PyVistaRenderer
from shatterstudio.logging_config import setup_logging
from shatterstudio.model.geometry import SourceMesh
from shatterstudio.model.io import DatasetIO, load_source_meshes, normalize_meshes
from shatterstudio.model.settings import (
    DatasetSettings, ExplosionSettings, SessionSettings, ShatterSettings
)
from shatterstudio.model.state import ShatterSession

logger = logging.getLogger(__name__)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("mesh", nargs="?", help="Model file (.glb, .gltf, .obj, .stl, .ply, ...).")
    source.add_argument("--cube", action="store_true", help="Shatter a built-in cube instead of a file.")

    parser.add_argument("--fragments", type=int, default=30, help="Number of seeds per mesh.")
    parser.add_argument("--shell", action="store_true", help="Keep original triangles instead of convex hulls.")
    parser.add_argument("--no-volume", action="store_true", help="Explode along directions instead of into a volume.")
    parser.add_argument("--volume", type=float, nargs=3, default=(6.0, 6.0, 6.0), metavar=("X", "Y", "Z"))
    parser.add_argument("--force", type=float, default=0.2, help="Scatter intensity in [0, 1].")
    parser.add_argument("--spin", type=float, default=1.0, help="Spin intensity (>= 0).")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for a reproducible run.")
    parser.add_argument("--log-level", default="INFO", type=str.upper, choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", default=None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shatterstudio",
        description="Shatter 3D meshes and generate YOLO datasets from the fragments.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    gen = commands.add_parser("generate", help="Write a YOLO dataset of randomized shatters.")
    _add_common_arguments(gen)
    gen.add_argument("--samples", type=int, default=10)
    gen.add_argument("--output", default=None, help="Zip archive path (or directory with --directory).")
    gen.add_argument("--directory", action="store_true", help="Write images/ and labels/ into a directory.")
    gen.add_argument("--width", type=int, default=640)
    gen.add_argument("--height", type=int, default=480)
    gen.add_argument("--backgrounds", default=BACKGROUNDS_PATH, help="Directory of background images.")
    gen.add_argument("--fixed-camera", action="store_true")
    gen.add_argument("--fixed-lights", action="store_true")

    info = commands.add_parser("shatter", help="Shatter once and print a fragment summary.")
    _add_common_arguments(info)
    return parser


def _load_sources(args: argparse.Namespace) -> list[SourceMesh]:
    if args.cube:
        return normalize_meshes([SourceMesh.cube()])
    return load_source_meshes(args.mesh)


def _session_settings(args: argparse.Namespace) -> SessionSettings:
    return SessionSettings(
        shatter=ShatterSettings(
            fragment_count=args.fragments,
            solid=not args.shell,
            use_volume=not args.no_volume,
            volume_size=tuple(args.volume),
        ),
        explosion=ExplosionSettings(force=args.force, rotation_force=args.spin),
    )


def run_shatter(args: argparse.Namespace) -> int:
    sources = _load_sources(args)
    rng = np.random.default_rng(args.seed)
    with ShatterSession(sources, _session_settings(args), rng) as session:
        fragments = session.shatter()
        print(f"{len(fragments)} fragments")
        for fragment in fragments:
            box = fragment.world_bounds()
            kind = "solid" if fragment.is_solid else "shell"
            print(
                f"  {fragment.name:<32} {kind:<5} {fragment.geometry.n_points:>6} pts  "
                f"center=({box.center[0]:+.3f}, {box.center[1]:+.3f}, {box.center[2]:+.3f})"
            )
    return 0


def run_generate(args: argparse.Namespace) -> int:
    dataset_settings = DatasetSettings(
        sample_count=args.samples,
        image_width=args.width,
        image_height=args.height,
        randomize_camera=not args.fixed_camera,
        randomize_lights=not args.fixed_lights,
        background_dir=args.backgrounds,
    )

    output = args.output
    if output is None:
        output = "dataset" if args.directory else DatasetIO.default_archive_name()
    if args.directory:
        def writer(samples):
            return DatasetIO.write_directory(samples, output)
    else:
        def writer(samples):
            return DatasetIO.write_archive(samples, output)

    def progress(percentage: int, message: str) -> None:
        logger.info(f"[{percentage:3d}%] {message}")

    sources = _load_sources(args)
    rng = np.random.default_rng(args.seed)
    renderer = PyVistaRenderer(width=args.width, height=args.height)
    try:
        with ShatterSession(sources, _session_settings(args), rng) as session:
            generator = DatasetGenerator(session, renderer, dataset_settings, progress_callback=progress)

            # Ctrl+C finishes the sample in flight and writes the partial batch
            def on_interrupt(signum, frame):
                logger.warning("Interrupt received, stopping after the current sample.")
                generator.cancel()

            previous_handler = signal.signal(signal.SIGINT, on_interrupt)
            try:
                result = generator.generate(writer=writer)
            finally:
                signal.signal(signal.SIGINT, previous_handler)
    finally:
        renderer.close()

    print(f"Wrote {result.written} of {result.requested} samples to {os.path.abspath(output)}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(level=args.log_level, log_file=args.log_file)

    if args.command == "generate":
        return run_generate(args)
    return run_shatter(args)


if __name__ == "__main__":
    raise SystemExit(main())
