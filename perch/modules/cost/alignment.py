"""Planar (x, y, yaw) point-to-point ICP.

Objects rest on a gravity-aligned table, so refinement only needs the
three planar degrees of freedom.  Correspondences are found in 3D with a
KD-tree; the transform is fitted in the table plane with the Kabsch / SVD
method and applied to the source cloud until the error stops improving.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree

from perch.modules.state_space import ContPose, normalize_angle
from perch.shared.constants import ICP_MAX_CORRESPONDENCE, ICP_MAX_ITERATIONS, ICP_TOLERANCE
from perch.shared.errors import AlignmentFailure

log = logging.getLogger(__name__)


def _check_cloud(points: np.ndarray, name: str) -> np.ndarray:
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise AlignmentFailure(f"{name} must be an (N, 3) array, got shape {points.shape}")
    if not np.all(np.isfinite(points)):
        raise AlignmentFailure(f"{name} contains non-finite values")
    return points


def planar_transform(dx: float, dy: float, dtheta: float) -> np.ndarray:
    c, s = math.cos(dtheta), math.sin(dtheta)
    return np.array([[c, -s, dx], [s, c, dy], [0.0, 0.0, 1.0]])


def transform_points(transform: np.ndarray, points: np.ndarray) -> np.ndarray:
    out = np.array(points, dtype=np.float64, copy=True)
    out[:, :2] = points[:, :2] @ transform[:2, :2].T + transform[:2, 2]
    return out


def estimate_planar_transform(source_xy: np.ndarray, target_xy: np.ndarray) -> np.ndarray:
    """Least-squares rigid 2D transform mapping *source_xy* onto *target_xy*."""
    src_c = source_xy.mean(axis=0)
    dst_c = target_xy.mean(axis=0)
    h = (source_xy - src_c).T @ (target_xy - dst_c)
    u, _, vt = np.linalg.svd(h)
    rot = vt.T @ u.T
    if np.linalg.det(rot) < 0:
        vt[1, :] *= -1
        rot = vt.T @ u.T
    transform = np.eye(3)
    transform[:2, :2] = rot
    transform[:2, 2] = dst_c - rot @ src_c
    return transform


def apply_to_pose(transform: np.ndarray, pose: ContPose) -> ContPose:
    """Pose of an object whose points were moved by *transform*."""
    x, y = transform[:2, :2] @ np.array([pose.x, pose.y]) + transform[:2, 2]
    dtheta = math.atan2(transform[1, 0], transform[0, 0])
    return ContPose(float(x), float(y), normalize_angle(pose.theta + dtheta))


def align(source_points: np.ndarray, target_points: np.ndarray,
          max_iterations: int = ICP_MAX_ITERATIONS,
          max_correspondence: float = ICP_MAX_CORRESPONDENCE,
          tolerance: float = ICP_TOLERANCE,
          target_tree: Optional[cKDTree] = None) -> Tuple[np.ndarray, float]:
    """Align *source_points* to *target_points*.

    Returns ``(transform, residual_score)``: a 3x3 homogeneous planar
    transform and the mean squared distance of source points to their
    nearest target within *max_correspondence* (``inf`` without inliers).
    """
    source = _check_cloud(source_points, "source_points")
    target = _check_cloud(target_points, "target_points")
    transform = np.eye(3)
    if len(source) == 0 or len(target) == 0:
        return transform, math.inf

    tree = target_tree if target_tree is not None else cKDTree(target)
    current = source.copy()
    prev_error = math.inf
    for iteration in range(max_iterations):
        dist, idx = tree.query(current, distance_upper_bound=max_correspondence)
        inliers = np.isfinite(dist)
        if inliers.sum() < 3:
            log.debug("ICP stopped at iteration %d: %d correspondences", iteration, int(inliers.sum()))
            break
        step = estimate_planar_transform(current[inliers, :2], target[idx[inliers], :2])
        current = transform_points(step, current)
        transform = step @ transform
        error = float(np.mean(dist[inliers] ** 2))
        if abs(prev_error - error) < tolerance:
            break
        prev_error = error

    dist, _ = tree.query(current, distance_upper_bound=max_correspondence)
    inliers = np.isfinite(dist)
    residual = float(np.mean(dist[inliers] ** 2)) if inliers.any() else math.inf
    return transform, residual
