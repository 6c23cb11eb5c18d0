#!/usr/bin/env python3
"""PERCH object recognition — depth image + model config → object poses."""

import argparse
import logging
import sys

import numpy as np

from perch.modules.environment import EnvConfig
from perch.recognizer import ObjectRecognizer
from perch.shared.errors import ConfigurationError, PerchError

logging.basicConfig(level=logging.INFO, format="%(asctime)s  %(levelname)-8s  %(message)s", datefmt="%H:%M:%S")


def _args() -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Rendering-based multi-object pose recognition (PERCH)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python main.py --config scene.json --depth observed.npy\n"
            "  python main.py --config scene.json --depth observed.npy --workers 4 --debug-dir debug\n"
        ),
    )
    p.add_argument("--config", required=True, help="environment JSON config")
    p.add_argument("--depth", required=True, help="observed depth image, uint16 mm, .npy")
    p.add_argument("--workers", type=int, default=None, help="cost-evaluation participants")
    p.add_argument("--renderer", choices=["primitive", "pybullet"], default=None)
    p.add_argument("--debug-dir", default=None, help="write observation / successor depth PNGs here")
    p.add_argument("--baselines", action="store_true", help="also log greedy ICP and shape-signature poses")
    p.add_argument("--verbose", action="store_true")
    return p.parse_args()


def _load_depth(path: str) -> np.ndarray:
    try:
        return np.load(path)
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Cannot read depth image {path}: {exc}") from exc


def main() -> int:
    args = _args()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    try:
        config = EnvConfig.from_json(args.config)
        if args.workers is not None:
            config.num_workers = args.workers
        if args.renderer is not None:
            config.renderer = args.renderer
        if args.debug_dir is not None:
            config.image_debug = True
            config.debug_dir = args.debug_dir
        config.validate()
        depth = _load_depth(args.depth)
        with ObjectRecognizer(config, compute_baselines=args.baselines) as recognizer:
            result = recognizer.localize(depth)
    except PerchError as exc:
        logging.getLogger(__name__).error("%s: %s", type(exc).__name__, exc)
        return 1

    if not result.found:
        print("\nNo solution found")
        return 2
    models = config.model_library()
    print(f"\ncost       → {result.cost}")
    print(f"expansions → {result.expansions}")
    for model_id, pose in zip(result.model_ids, result.poses):
        print(f"{models[model_id].name:>12}: x={pose.x:.3f}  y={pose.y:.3f}  theta={pose.theta:.3f}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
