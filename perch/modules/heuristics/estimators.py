"""
#WHERE
    Owned by the environment façade; one instance per heuristic kind.

#WHAT
    Goal-distance estimates for a partial scene hypothesis.  Both work on
    the residual cloud (observed points whose pixels no ancestor has
    counted yet):

        AlignmentHeuristic       seed each unplaced model at the residual
                                 centroid for every yaw step, ICP it onto
                                 the residual, score = model points still
                                 unexplained; sum of the smallest scores
                                 for the objects that remain to be placed.
        ShapeSignatureHeuristic  cluster the residual, match every cluster
                                 to a trained model view; sum of
                                 round(distance * cluster size) for the
                                 best matches of unplaced models.

    Goal states always score 0.  The greedy planner from the alignment
    heuristic also produces a full-scene baseline hypothesis.

#INPUT
    GraphState, its counted pixels, the evaluator (renderer + observation).

#OUTPUT
    Non-negative integer estimate, or a GraphState for the greedy planner.
"""

from __future__ import annotations

import logging
from typing import FrozenSet, List, Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree

from perch.modules.cost import CostEvaluator, align, apply_to_pose, transform_points
from perch.modules.state_space import ContPose, GraphState, ObjectState
from .shape_signature import ShapeSignatureEstimator

log = logging.getLogger(__name__)


def residual_cloud(evaluator: CostEvaluator, counted_pixels: FrozenSet[int]) -> np.ndarray:
    """Observed points whose pixels are not in *counted_pixels*."""
    obs = evaluator.observation
    if obs.is_empty or not counted_pixels:
        return obs.points
    counted = np.fromiter(counted_pixels, dtype=np.int64, count=len(counted_pixels))
    return obs.points[~np.isin(obs.pixel_indices, counted)]


def render_points(evaluator: CostEvaluator, state: GraphState) -> np.ndarray:
    points, _ = evaluator.camera.to_points(evaluator.render(state))
    return points


class AlignmentHeuristic:
    def __init__(self, evaluator: CostEvaluator):
        self.evaluator = evaluator

    @property
    def num_objects(self) -> int:
        return self.evaluator.num_objects

    def _seeds(self, model_id: int, center: np.ndarray) -> List[ObjectState]:
        grid = self.evaluator.generator.grid
        model = self.evaluator.models[model_id]
        steps = 1 if model.symmetric else grid.num_thetas
        seeds = []
        for k in range(steps):
            seeds.append(self.evaluator.generator.make_object(
                model_id, ContPose(float(center[0]), float(center[1]), k * grid.theta_res)))
        return seeds

    def fit_model(self, model_id: int, residual: np.ndarray,
                  tree: Optional[cKDTree] = None) -> Tuple[int, Optional[ContPose]]:
        """Best (unexplained point count, aligned pose) of one model against *residual*."""
        if len(residual) == 0:
            return 0, None
        tree = tree if tree is not None else cKDTree(residual)
        config = self.evaluator.config
        best_score, best_pose = None, None
        for seed in self._seeds(model_id, residual[:, :2].mean(axis=0)):
            source = render_points(self.evaluator, GraphState((seed,)))
            if len(source) == 0:
                continue
            transform, _ = align(source, residual,
                                 max_iterations=config.icp_max_iterations,
                                 max_correspondence=config.icp_max_correspondence,
                                 tolerance=config.icp_tolerance,
                                 target_tree=tree)
            dist, _ = tree.query(transform_points(transform, source),
                                 distance_upper_bound=config.sensor_resolution)
            score = int(np.count_nonzero(~np.isfinite(dist)))
            if best_score is None or score < best_score:
                best_score, best_pose = score, apply_to_pose(transform, seed.cont_pose)
        if best_score is None:
            return 0, None
        return best_score, best_pose

    def estimate(self, state: GraphState, counted_pixels: FrozenSet[int] = frozenset()) -> int:
        remaining = self.num_objects - state.num_objects
        if remaining <= 0:
            return 0
        residual = residual_cloud(self.evaluator, counted_pixels)
        if len(residual) == 0:
            return 0
        tree = cKDTree(residual)
        scores = sorted(self.fit_model(model_id, residual, tree)[0]
                        for model_id in range(len(self.evaluator.models))
                        if not state.contains_model(model_id))
        return int(sum(scores[:remaining]))

    def greedy_poses(self) -> GraphState:
        """Place objects one at a time, each the best-fitting unplaced model.

        Points explained by a placed model are removed from the residual
        before the next placement.
        """
        state = GraphState(())
        residual = self.evaluator.observation.points
        resolution = self.evaluator.config.sensor_resolution
        generator = self.evaluator.generator
        while state.num_objects < self.num_objects and len(residual) > 0:
            tree = cKDTree(residual)
            best = None
            for model_id in range(len(self.evaluator.models)):
                if state.contains_model(model_id):
                    continue
                score, pose = self.fit_model(model_id, residual, tree)
                if pose is None or not generator.is_valid_pose(state, model_id, pose,
                                                               after_refinement=True):
                    continue
                if best is None or score < best[0]:
                    best = (score, model_id, pose)
            if best is None:
                log.info("Greedy ICP stopped after %d objects: no valid placement", state.num_objects)
                break
            _, model_id, pose = best
            state = state.append(generator.make_object(model_id, pose))
            placed = render_points(self.evaluator, GraphState((state.last_object,)))
            if len(placed):
                dist, _ = cKDTree(placed).query(residual, distance_upper_bound=resolution)
                residual = residual[~np.isfinite(dist)]
            log.debug("Greedy ICP placed model %d at (%.3f, %.3f, %.3f)",
                      model_id, pose.x, pose.y, pose.theta)
        return state


class ShapeSignatureHeuristic:
    def __init__(self, evaluator: CostEvaluator, estimator: Optional[ShapeSignatureEstimator] = None):
        self.evaluator = evaluator
        if estimator is None:
            generator = evaluator.generator
            estimator = ShapeSignatureEstimator(
                evaluator.models, generator.grid, generator.table_height,
                lambda state: render_points(evaluator, state))
        self.estimator = estimator

    def train(self) -> None:
        generator = self.evaluator.generator
        anchor = ((generator.x_min + generator.x_max) / 2.0,
                  (generator.y_min + generator.y_max) / 2.0)
        self.estimator.train(anchor)

    def poses(self, state: Optional[GraphState] = None,
              counted_pixels: FrozenSet[int] = frozenset()) -> GraphState:
        """One placement per unplaced model from the best-matching residual cluster."""
        if not self.estimator.is_trained:
            self.train()
        state = state if state is not None else GraphState(())
        unplaced = {m for m in range(len(self.evaluator.models)) if not state.contains_model(m)}
        residual = residual_cloud(self.evaluator, counted_pixels)
        generator = self.evaluator.generator
        for match in self.estimator.estimate(residual, unplaced):
            if state.num_objects >= self.evaluator.num_objects:
                break
            if state.contains_model(match.model_id):
                continue
            if not generator.is_valid_pose(state, match.model_id, match.pose, after_refinement=True):
                log.debug("Shape match for model %d at (%.3f, %.3f) rejected as invalid",
                          match.model_id, match.pose.x, match.pose.y)
                continue
            state = state.append(generator.make_object(match.model_id, match.pose))
        return state

    def estimate(self, state: GraphState, counted_pixels: FrozenSet[int] = frozenset()) -> int:
        remaining = self.evaluator.num_objects - state.num_objects
        if remaining <= 0:
            return 0
        if not self.estimator.is_trained:
            self.train()
        unplaced = {m for m in range(len(self.evaluator.models)) if not state.contains_model(m)}
        matches = self.estimator.estimate(residual_cloud(self.evaluator, counted_pixels), unplaced)
        values = sorted(int(round(m.distance * m.cluster_size)) for m in matches)
        return int(sum(values[:remaining]))
