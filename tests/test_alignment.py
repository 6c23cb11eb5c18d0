"""Tests for planar ICP alignment."""

import math

import numpy as np
import pytest

from perch.modules.cost import (
    align, apply_to_pose, estimate_planar_transform, planar_transform, transform_points,
)
from perch.modules.state_space import ContPose
from perch.shared.errors import AlignmentFailure


def l_shape(step=0.005):
    """Points on the top of an L-shaped block; asymmetric so yaw is observable."""
    xs, ys = np.meshgrid(np.arange(0.0, 0.3, step), np.arange(0.0, 0.2, step))
    pts = np.stack([xs.ravel(), ys.ravel()], axis=1)
    keep = (pts[:, 0] < 0.1) | (pts[:, 1] < 0.06)
    pts = pts[keep]
    return np.column_stack([pts, np.full(len(pts), 0.1)])


class TestPlanarTransform:

    def test_identity(self):
        np.testing.assert_allclose(planar_transform(0, 0, 0), np.eye(3))

    def test_transform_points_keeps_height(self):
        pts = np.array([[1.0, 0.0, 0.3]])
        moved = transform_points(planar_transform(0.0, 0.0, math.pi / 2), pts)
        np.testing.assert_allclose(moved, [[0.0, 1.0, 0.3]], atol=1e-12)

    def test_apply_to_pose(self):
        pose = apply_to_pose(planar_transform(0.1, 0.0, math.pi / 2), ContPose(1.0, 0.0, 0.0))
        assert pose.x == pytest.approx(0.1)
        assert pose.y == pytest.approx(1.0)
        assert pose.theta == pytest.approx(math.pi / 2)

    def test_estimate_exact_correspondences(self):
        src = l_shape()[:, :2]
        truth = planar_transform(0.05, -0.02, 0.3)
        dst = src @ truth[:2, :2].T + truth[:2, 2]
        np.testing.assert_allclose(estimate_planar_transform(src, dst), truth, atol=1e-9)


class TestAlign:

    def test_recovers_small_motion(self):
        rng = np.random.default_rng(7)
        target = l_shape()
        target = target[rng.permutation(len(target))[:500]]
        truth = planar_transform(0.004, -0.003, 0.015)
        source = transform_points(np.linalg.inv(truth), target)
        transform, residual = align(source, target, max_iterations=100, tolerance=1e-12)
        np.testing.assert_allclose(transform_points(transform, source), target, atol=1e-3)
        assert residual < 1e-5

    def test_empty_source(self):
        transform, residual = align(np.empty((0, 3)), l_shape())
        np.testing.assert_allclose(transform, np.eye(3))
        assert residual == math.inf

    def test_no_correspondences(self):
        far = l_shape() + np.array([5.0, 5.0, 0.0])
        transform, residual = align(far, l_shape())
        np.testing.assert_allclose(transform, np.eye(3))
        assert residual == math.inf

    def test_bad_shape(self):
        with pytest.raises(AlignmentFailure, match="must be an"):
            align(np.zeros((4, 2)), l_shape())

    def test_non_finite(self):
        bad = l_shape()
        bad[0, 0] = np.nan
        with pytest.raises(AlignmentFailure, match="non-finite"):
            align(bad, l_shape())
