"""Depth image dumps for debugging (observation and rendered successors)."""

import logging
import os

import cv2
import numpy as np

from perch.shared.constants import NO_RETURN

log = logging.getLogger(__name__)


def depth_to_gray(depth_image: np.ndarray) -> np.ndarray:
    """Map valid depths to 0..255 (near = bright); no-return pixels are black."""
    depth = np.asarray(depth_image)
    valid = (depth != NO_RETURN) & (depth > 0)
    gray = np.zeros(depth.shape, dtype=np.uint8)
    if not valid.any():
        return gray
    lo, hi = float(depth[valid].min()), float(depth[valid].max())
    span = max(hi - lo, 1.0)
    gray[valid] = (255 - np.clip((depth[valid] - lo) / span, 0, 1) * 200).astype(np.uint8)
    return gray


def save_depth_image(path: str, depth_image: np.ndarray) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    if not cv2.imwrite(path, depth_to_gray(depth_image)):
        log.warning("Could not write depth image to %s", path)
    return path
