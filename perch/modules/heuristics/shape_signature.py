"""
#WHERE
    Used by estimators.ShapeSignatureHeuristic and the environment façade
    (compute_shape_signature_poses).

#WHAT
    Viewpoint-feature-histogram style pose estimator.  A global descriptor
    per point cluster:

        [ height-above-table hist | radial-distance hist | bearing hist ]

    each normalised to sum 1.  The first two are yaw invariant and identify
    the model; the bearing histogram shifts with yaw and identifies the
    view.  Model signatures are trained by rendering every model at every
    yaw step; scene clusters come from Euclidean clustering of a voxel
    downsampled cloud.

#INPUT
    Renderer (via CostEvaluator), model library, pose grid, observed cloud.

#OUTPUT
    List[ShapeMatch] — (model id, planar pose, match distance, cluster size).
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components
from scipy.spatial import cKDTree

from perch.modules.object_models import ModelLibrary
from perch.modules.state_space import ContPose, GraphState, ObjectState, PoseGrid
from perch.shared.constants import CLUSTER_TOLERANCE, FULL_TURN, MIN_CLUSTER_SIZE, SIGNATURE_BINS
from .models import ShapeMatch

log = logging.getLogger(__name__)


def voxel_downsample(points: np.ndarray, voxel: float) -> np.ndarray:
    """Keep the first point of every occupied voxel (order preserving)."""
    if len(points) == 0:
        return points
    keys = np.floor(points / voxel).astype(np.int64)
    _, first = np.unique(keys, axis=0, return_index=True)
    return points[np.sort(first)]


def euclidean_clusters(points: np.ndarray, tolerance: float = CLUSTER_TOLERANCE,
                       min_size: int = MIN_CLUSTER_SIZE) -> List[np.ndarray]:
    """Connected components of the *tolerance*-radius neighbour graph.

    Clusters are returned largest first (ties by first point index).
    """
    n = len(points)
    if n == 0:
        return []
    pairs = cKDTree(points).query_pairs(tolerance, output_type="ndarray")
    graph = coo_matrix((np.ones(len(pairs)), (pairs[:, 0], pairs[:, 1])), shape=(n, n))
    _, labels = connected_components(graph, directed=False)
    clusters = [np.flatnonzero(labels == label) for label in np.unique(labels)]
    clusters = [c for c in clusters if len(c) >= min_size]
    clusters.sort(key=lambda c: (-len(c), int(c[0])))
    return clusters


class ShapeSignatureEstimator:
    def __init__(self, models: ModelLibrary, grid: PoseGrid, table_height: float,
                 render_points: Callable[[GraphState], np.ndarray],
                 bins: int = SIGNATURE_BINS, cluster_tolerance: float = CLUSTER_TOLERANCE,
                 min_cluster_size: int = MIN_CLUSTER_SIZE):
        self.models = models
        self.grid = grid
        self.table_height = table_height
        self.render_points = render_points
        self.bins = bins
        self.cluster_tolerance = cluster_tolerance
        self.min_cluster_size = min_cluster_size
        self.max_height = 1.2 * max(m.height for m in models)
        self.max_radius = 1.5 * max(m.circumscribed_radius for m in models)
        # (model_id, theta, signature)
        self._views: List[Tuple[int, float, np.ndarray]] = []

    @property
    def is_trained(self) -> bool:
        return bool(self._views)

    def signature(self, points: np.ndarray) -> np.ndarray:
        center = points[:, :2].mean(axis=0)
        offsets = points[:, :2] - center
        heights = points[:, 2] - self.table_height
        radial = np.hypot(offsets[:, 0], offsets[:, 1])
        bearing = np.mod(np.arctan2(offsets[:, 1], offsets[:, 0]), FULL_TURN)
        parts = [
            np.histogram(heights, bins=self.bins, range=(0.0, self.max_height))[0],
            np.histogram(radial, bins=self.bins, range=(0.0, self.max_radius))[0],
            np.histogram(bearing, bins=self.bins, range=(0.0, FULL_TURN))[0],
        ]
        return np.concatenate([p / max(p.sum(), 1) for p in parts]).astype(np.float64)

    def train(self, anchor: Tuple[float, float]) -> None:
        """Render every model at every yaw step at *anchor* and store signatures."""
        self._views = []
        for model_id, model in enumerate(self.models):
            thetas = [0.0] if model.symmetric else [k * self.grid.theta_res
                                                    for k in range(self.grid.num_thetas)]
            for theta in thetas:
                obj = ObjectState.create(model_id, ContPose(anchor[0], anchor[1], theta),
                                         self.grid, model.symmetric, model.flipped)
                points = self.render_points(GraphState((obj,)))
                if len(points) < self.min_cluster_size:
                    continue
                self._views.append((model_id, obj.cont_pose.theta, self.signature(points)))
        log.info("Shape signatures trained: %d views of %d models", len(self._views), len(self.models))

    def match(self, points: np.ndarray,
              model_ids: Optional[set] = None) -> Optional[Tuple[int, float, float]]:
        """Best (model_id, theta, distance) for one cluster."""
        sig = self.signature(points)
        best = None
        for model_id, theta, view in self._views:
            if model_ids is not None and model_id not in model_ids:
                continue
            distance = float(np.abs(sig - view).sum())
            if best is None or distance < best[2]:
                best = (model_id, theta, distance)
        return best

    def estimate(self, cloud: np.ndarray, model_ids: Optional[set] = None) -> List[ShapeMatch]:
        if not self.is_trained or len(cloud) == 0:
            return []
        sparse = voxel_downsample(cloud, self.cluster_tolerance / 2.0)
        matches = []
        for cluster in euclidean_clusters(sparse, self.cluster_tolerance, self.min_cluster_size):
            points = sparse[cluster]
            best = self.match(points, model_ids)
            if best is None:
                continue
            model_id, theta, distance = best
            cx, cy = points[:, :2].mean(axis=0)
            matches.append(ShapeMatch(model_id, ContPose(float(cx), float(cy), theta),
                                      distance, len(cluster)))
        return matches


__all__ = ["ShapeSignatureEstimator", "euclidean_clusters", "voxel_downsample"]
