"""
#WHERE
    Used by both renderers, the cost evaluator, heuristics, the environment
    (observation clouds) and tests.

#WHAT
    Pinhole camera model: intrinsics from image size + vertical FOV, a 4x4
    camera-to-world pose in the optical convention (z forward, x right,
    y down), per-pixel rays and depth image -> point cloud conversion.

#INPUT
    Image size, FOV, near/far planes, camera pose; depth images.

#OUTPUT
    CameraModel; (N, 3) world points with their flat pixel indices.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import numpy as np

from perch.shared.constants import (
    DEFAULT_FAR, DEFAULT_FOV, DEFAULT_IMG_HEIGHT, DEFAULT_IMG_WIDTH,
    DEFAULT_NEAR, DEPTH_SCALE, NO_RETURN,
)


def look_at(eye: Sequence[float], target: Sequence[float],
            up: Sequence[float] = (0.0, 0.0, 1.0)) -> np.ndarray:
    """Camera-to-world pose looking from *eye* at *target*.

    *up* must not be parallel to the viewing direction; for a straight
    top-down view pass e.g. ``up=(0, 1, 0)``.
    """
    eye = np.asarray(eye, dtype=np.float64)
    z = np.asarray(target, dtype=np.float64) - eye
    z /= np.linalg.norm(z)
    x = np.cross(z, np.asarray(up, dtype=np.float64))
    norm = np.linalg.norm(x)
    if norm < 1e-9:
        raise ValueError("up vector is parallel to the viewing direction")
    x /= norm
    y = np.cross(z, x)
    pose = np.eye(4)
    pose[:3, 0], pose[:3, 1], pose[:3, 2], pose[:3, 3] = x, y, z, eye
    return pose


@dataclass
class CameraModel:
    width: int = DEFAULT_IMG_WIDTH
    height: int = DEFAULT_IMG_HEIGHT
    fov: float = DEFAULT_FOV      # vertical, degrees
    near: float = DEFAULT_NEAR
    far: float = DEFAULT_FAR
    pose: np.ndarray = field(default_factory=lambda: np.eye(4))
    _rays: Optional[np.ndarray] = field(default=None, init=False, repr=False, compare=False)

    @property
    def fy(self) -> float:
        return (self.height / 2.0) / math.tan(math.radians(self.fov) / 2.0)

    @property
    def fx(self) -> float:
        return self.fy

    @property
    def cx(self) -> float:
        return self.width / 2.0 - 0.5

    @property
    def cy(self) -> float:
        return self.height / 2.0 - 0.5

    @property
    def num_pixels(self) -> int:
        return self.width * self.height

    @property
    def rotation(self) -> np.ndarray:
        return np.asarray(self.pose, dtype=np.float64)[:3, :3]

    @property
    def position(self) -> np.ndarray:
        return np.asarray(self.pose, dtype=np.float64)[:3, 3]

    def pixel_rays(self) -> np.ndarray:
        """(H*W, 3) camera-frame ray directions with unit optical z."""
        if self._rays is None:
            v, u = np.mgrid[0:self.height, 0:self.width]
            rays = np.stack([(u - self.cx) / self.fx,
                             (v - self.cy) / self.fy,
                             np.ones_like(u, dtype=np.float64)], axis=-1)
            self._rays = rays.reshape(-1, 3).astype(np.float64)
        return self._rays

    def world_rays(self) -> Tuple[np.ndarray, np.ndarray]:
        """Ray origin and (H*W, 3) world directions; ray parameter == depth."""
        return self.position, self.pixel_rays() @ self.rotation.T

    def valid_mask(self, depth_image: np.ndarray) -> np.ndarray:
        flat = np.asarray(depth_image).reshape(-1)
        return (flat != NO_RETURN) & (flat > 0)

    def to_points(self, depth_image: np.ndarray,
                  indices: Optional[np.ndarray] = None,
                  frame: str = "world") -> Tuple[np.ndarray, np.ndarray]:
        """Back-project valid pixels of *depth_image*.

        Returns ``(points, pixel_indices)``.  When *indices* is given only
        those flat pixel indices are considered.
        """
        flat = np.asarray(depth_image).reshape(-1)
        if flat.size != self.num_pixels:
            raise ValueError(f"Depth image has {flat.size} pixels, expected {self.num_pixels}")
        valid = self.valid_mask(flat)
        if indices is None:
            idx = np.flatnonzero(valid)
        else:
            idx = np.asarray(indices, dtype=np.int64)
            idx = idx[valid[idx]]
        depth_m = flat[idx].astype(np.float64) / DEPTH_SCALE
        points = self.pixel_rays()[idx] * depth_m[:, None]
        if frame == "world":
            points = points @ self.rotation.T + self.position
        return points, idx

    def empty_image(self) -> np.ndarray:
        return np.full((self.height, self.width), NO_RETURN, dtype=np.uint16)
