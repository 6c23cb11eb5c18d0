"""Numpy ray caster for upright box / cylinder models standing on the table.

Deterministic and dependency-light, so it is the default renderer for
synthetic scenes and tests.  Mesh models are rendered as their bounding box.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

import numpy as np

from perch.modules.object_models import ObjectModel
from perch.modules.state_space import ObjectState
from perch.shared.constants import DEPTH_SCALE, NO_RETURN
from perch.shared.errors import RenderFailure
from .camera import CameraModel

log = logging.getLogger(__name__)

_EPS = 1e-12


def _safe_dirs(dirs: np.ndarray) -> np.ndarray:
    return np.where(np.abs(dirs) < _EPS, _EPS, dirs)


def _intersect_box(origin: np.ndarray, dirs: np.ndarray, half: np.ndarray) -> np.ndarray:
    """Slab test against ``[-hx, hx] x [-hy, hy] x [0, 2hz]``; inf where missed."""
    lo = np.array([-half[0], -half[1], 0.0])
    hi = np.array([half[0], half[1], 2.0 * half[2]])
    inv = 1.0 / _safe_dirs(dirs)
    t1 = (lo - origin) * inv
    t2 = (hi - origin) * inv
    t_near = np.minimum(t1, t2).max(axis=1)
    t_far = np.maximum(t1, t2).min(axis=1)
    hit = (t_far >= t_near) & (t_near > 0)
    return np.where(hit, t_near, np.inf)


def _intersect_cylinder(origin: np.ndarray, dirs: np.ndarray,
                        radius: float, height: float) -> np.ndarray:
    """Closest hit with an upright cylinder standing on z = 0; inf where missed."""
    ox, oy, oz = origin
    dx, dy, dz = dirs[:, 0], dirs[:, 1], dirs[:, 2]

    a = dx * dx + dy * dy
    b = 2.0 * (ox * dx + oy * dy)
    c = ox * ox + oy * oy - radius * radius
    disc = b * b - 4.0 * a * c
    with np.errstate(invalid="ignore", divide="ignore"):
        t_side = (-b - np.sqrt(np.maximum(disc, 0.0))) / (2.0 * a)
    z_side = oz + t_side * dz
    side_ok = (a > _EPS) & (disc >= 0) & (t_side > 0) & (z_side >= 0) & (z_side <= height)
    t = np.where(side_ok, t_side, np.inf)

    safe_dz = _safe_dirs(dz)
    for cap_z in (height, 0.0):
        t_cap = (cap_z - oz) / safe_dz
        px, py = ox + t_cap * dx, oy + t_cap * dy
        cap_ok = (np.abs(dz) > _EPS) & (t_cap > 0) & (px * px + py * py <= radius * radius)
        t = np.where(cap_ok & (t_cap < t), t_cap, t)
    return t


class PrimitiveDepthRenderer:
    """Renders upright primitives resting at ``table_height``."""

    def __init__(self, width: int, height: int, fov: float, near: float, far: float,
                 table_height: float = 0.0):
        self.width = width
        self.height = height
        self.fov = fov
        self.near = near
        self.far = far
        self.table_height = table_height

    def _camera(self, camera_pose: np.ndarray) -> CameraModel:
        return CameraModel(width=self.width, height=self.height, fov=self.fov,
                           near=self.near, far=self.far, pose=np.asarray(camera_pose, dtype=np.float64))

    def render(self, models: Sequence[ObjectModel], objects: Sequence[ObjectState],
               camera_pose: np.ndarray) -> np.ndarray:
        camera = self._camera(camera_pose)
        origin, dirs = camera.world_rays()
        depth = np.full(camera.num_pixels, np.inf)

        for obj in objects:
            try:
                model = models[obj.model_id]
            except IndexError as exc:
                raise RenderFailure(f"Unknown model id {obj.model_id}") from exc
            pose = obj.cont_pose
            c, s = math.cos(pose.theta), math.sin(pose.theta)
            # world -> object frame: inverse yaw about the footprint centre
            rot_inv = np.array([[c, s, 0.0], [-s, c, 0.0], [0.0, 0.0, 1.0]])
            local_origin = rot_inv @ (origin - np.array([pose.x, pose.y, self.table_height]))
            local_dirs = dirs @ rot_inv.T

            if model.shape == "cylinder":
                radius, height = model.size
                t = _intersect_cylinder(local_origin, local_dirs, radius, height)
            else:
                t = _intersect_box(local_origin, local_dirs, np.asarray(model.half_extents))
            depth = np.minimum(depth, t)

        visible = (depth >= self.near) & (depth <= self.far)
        image = np.full(camera.num_pixels, NO_RETURN, dtype=np.uint16)
        mm = np.round(depth[visible] * DEPTH_SCALE)
        image[visible] = np.minimum(mm, NO_RETURN - 1).astype(np.uint16)
        return image.reshape(self.height, self.width)
