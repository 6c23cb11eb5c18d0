"""
#WHERE
    Held by every participant of the cost dispatcher (coordinator and
    workers each own a copy); used by the environment façade and tests.

#WHAT
    Edge cost for one parent -> child transition:

        render child ──→ occlusion test vs parent render
                            │ occluded → pruned (cost None)
                            ▼
                 target cost: new rendered points not explained
                              by the observation
                 source cost: observed points in the new object's depth
                              band (all remaining at the last level) not
                              explained by the child render
                            │
                            ▼
                 optional planar ICP of the new object → re-render,
                 re-score, keep if better (ties → lower source cost)

    Counted pixels carry "already explained" observed pixels down each
    branch so no observed pixel is scored twice in one ancestry chain.

#INPUT
    CostComputationInput (parent, child, parent depth image, parent
    counted pixels); the observation set on the evaluator.

#OUTPUT
    CostComputationOutput (integer cost, adjusted child, properties,
    child depth image).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree

from perch.modules.object_models import ModelLibrary
from perch.modules.rendering import CameraModel, DepthRenderer
from perch.modules.state_space import GraphState, GraphStateProperties, ObjectState
from perch.modules.successors import SuccessorGenerator
from perch.shared.constants import DEPTH_SCALE, NO_RETURN
from perch.shared.errors import RenderFailure
from .alignment import align, apply_to_pose
from .models import CostComputationInput, CostComputationOutput, CostConfig

log = logging.getLogger(__name__)


@dataclass
class Observation:
    """The sensor depth image and its world-frame cloud."""
    depth_image: np.ndarray
    points: np.ndarray
    pixel_indices: np.ndarray
    depths: np.ndarray
    tree: Optional[cKDTree] = field(default=None, repr=False)

    @classmethod
    def from_depth(cls, depth_image: np.ndarray, camera: CameraModel) -> "Observation":
        depth_image = np.asarray(depth_image, dtype=np.uint16).reshape(camera.height, camera.width)
        points, idx = camera.to_points(depth_image)
        tree = cKDTree(points) if len(points) else None
        return cls(depth_image=depth_image, points=points, pixel_indices=idx,
                   depths=depth_image.reshape(-1)[idx].astype(np.int64), tree=tree)

    @classmethod
    def empty(cls, camera: CameraModel) -> "Observation":
        return cls.from_depth(camera.empty_image(), camera)

    @property
    def is_empty(self) -> bool:
        return len(self.pixel_indices) == 0


def is_occluded(parent_depth: np.ndarray, child_depth: np.ndarray
                ) -> Tuple[bool, np.ndarray, int, int]:
    """Occlusion test between consecutive renders.

    The child is rejected when the new object lies in front of previously
    rendered content, or when it adds no visible pixel.  Otherwise returns
    the newly rendered pixel indices and their min / max depth.
    """
    parent = np.asarray(parent_depth).reshape(-1)
    child = np.asarray(child_depth).reshape(-1)
    parent_hit = parent != NO_RETURN
    child_hit = child != NO_RETURN
    if np.any(parent_hit & child_hit & (child < parent)):
        return True, np.empty(0, dtype=np.int64), NO_RETURN, 0
    new_pixels = np.flatnonzero(child_hit & ~parent_hit)
    if new_pixels.size == 0:
        return True, new_pixels, NO_RETURN, 0
    new_depths = child[new_pixels]
    return False, new_pixels, int(new_depths.min()), int(new_depths.max())


@dataclass(slots=True)
class _Scored:
    child: GraphState
    depth_image: np.ndarray
    new_pixels: np.ndarray
    min_depth: int
    max_depth: int
    target_cost: int
    source_cost: int
    counted_pixels: FrozenSet[int]

    @property
    def total(self) -> int:
        return self.target_cost + self.source_cost


class CostEvaluator:
    def __init__(self, models: ModelLibrary, camera: CameraModel, renderer: DepthRenderer,
                 generator: SuccessorGenerator, num_objects: int,
                 cost_config: Optional[CostConfig] = None,
                 observation: Optional[Observation] = None):
        self.models = models
        self.camera = camera
        self.renderer = renderer
        self.generator = generator
        self.num_objects = num_objects
        self.config = cost_config or CostConfig()
        self.observation = observation or Observation.empty(camera)

    def set_observation(self, observation: Observation) -> None:
        self.observation = observation

    # ── Rendering ────────────────────────────────────────────────────────

    def render(self, state: GraphState) -> np.ndarray:
        if state.num_objects == 0:
            return self.camera.empty_image()
        try:
            image = self.renderer.render(self.models, state.objects, self.camera.pose)
        except RenderFailure:
            raise
        except Exception as exc:
            raise RenderFailure(f"Rendering {state.num_objects} objects failed: {exc}") from exc
        image = np.asarray(image)
        if image.shape != (self.camera.height, self.camera.width):
            raise RenderFailure(
                f"Renderer returned shape {image.shape}, expected {(self.camera.height, self.camera.width)}")
        return image.astype(np.uint16, copy=False)

    # ── Cost terms ───────────────────────────────────────────────────────

    def target_cost(self, new_points: np.ndarray) -> int:
        """Newly rendered points with no observed point within sensor resolution."""
        if len(new_points) == 0:
            return 0
        if self.observation.tree is None:
            return len(new_points)
        dist, _ = self.observation.tree.query(new_points,
                                              distance_upper_bound=self.config.sensor_resolution)
        return int(np.count_nonzero(~np.isfinite(dist)))

    def source_cost(self, child_depth: np.ndarray, min_depth: int, max_depth: int,
                    last_level: bool, parent_counted: FrozenSet[int]
                    ) -> Tuple[int, np.ndarray]:
        """Observed points in the new object's depth band not explained by the child render.

        Returns the cost and the observed pixel indices that were evaluated.
        """
        obs = self.observation
        if obs.is_empty:
            return 0, np.empty(0, dtype=np.int64)
        candidates = np.ones(len(obs.pixel_indices), dtype=bool)
        if parent_counted:
            counted = np.fromiter(parent_counted, dtype=np.int64, count=len(parent_counted))
            candidates &= ~np.isin(obs.pixel_indices, counted)
        if not last_level:
            tol_mm = self.config.sensor_resolution * DEPTH_SCALE
            candidates &= (obs.depths >= min_depth - tol_mm) & (obs.depths <= max_depth + tol_mm)
        evaluated = obs.pixel_indices[candidates]
        if evaluated.size == 0:
            return 0, evaluated

        rendered, _ = self.camera.to_points(child_depth)
        if len(rendered) == 0:
            return int(evaluated.size), evaluated
        dist, _ = cKDTree(rendered).query(obs.points[candidates],
                                          distance_upper_bound=self.config.sensor_resolution)
        return int(np.count_nonzero(~np.isfinite(dist))), evaluated

    def _score(self, parent_depth: np.ndarray, child: GraphState,
               parent_counted: FrozenSet[int]) -> Optional[_Scored]:
        child_depth = self.render(child)
        occluded, new_pixels, min_depth, max_depth = is_occluded(parent_depth, child_depth)
        if occluded:
            return None
        new_points, _ = self.camera.to_points(child_depth, indices=new_pixels)
        target = self.target_cost(new_points)
        last_level = child.num_objects == self.num_objects
        source, evaluated = self.source_cost(child_depth, min_depth, max_depth,
                                             last_level, parent_counted)
        counted = parent_counted.union(new_pixels.tolist(), evaluated.tolist())
        return _Scored(child, child_depth, new_pixels, min_depth, max_depth,
                       target, source, frozenset(counted))

    # ── Refinement ───────────────────────────────────────────────────────

    def refine(self, parent: GraphState, scored: _Scored) -> Optional[ObjectState]:
        """ICP the new object's rendered points onto nearby observed points."""
        obs = self.observation
        last = scored.child.last_object
        if obs.is_empty or last is None:
            return None
        source, _ = self.camera.to_points(scored.depth_image, indices=scored.new_pixels)
        reach = self.models[last.model_id].circumscribed_radius + self.config.icp_max_correspondence
        near = np.hypot(obs.points[:, 0] - last.cont_pose.x,
                        obs.points[:, 1] - last.cont_pose.y) <= reach
        if len(source) < 3 or near.sum() < 3:
            return None
        transform, residual = align(source, obs.points[near],
                                    max_iterations=self.config.icp_max_iterations,
                                    max_correspondence=self.config.icp_max_correspondence,
                                    tolerance=self.config.icp_tolerance)
        refined_pose = apply_to_pose(transform, last.cont_pose)
        log.debug("ICP model %d: (%.3f, %.3f, %.3f) -> (%.3f, %.3f, %.3f) residual=%.6f",
                  last.model_id, last.cont_pose.x, last.cont_pose.y, last.cont_pose.theta,
                  refined_pose.x, refined_pose.y, refined_pose.theta, residual)
        if not self.generator.is_valid_pose(parent, last.model_id, refined_pose,
                                            after_refinement=True):
            log.debug("Refined pose for model %d rejected as invalid", last.model_id)
            return None
        refined = self.generator.make_object(last.model_id, refined_pose)
        if refined.cont_pose == last.cont_pose:
            return None
        return refined

    # ── Entry point ──────────────────────────────────────────────────────

    def compute_cost(self, inp: CostComputationInput) -> CostComputationOutput:
        parent, child = inp.source_state, inp.child_state
        parent_counted = frozenset(inp.source_counted_pixels)
        best = self._score(inp.source_depth_image, child, parent_counted)
        if best is None:
            return CostComputationOutput(cost=None)

        if self.config.use_icp:
            refined = self.refine(parent, best)
            if refined is not None:
                candidate = self._score(inp.source_depth_image, child.replace_last(refined),
                                        parent_counted)
                if candidate is not None and (candidate.total, candidate.source_cost) < (best.total, best.source_cost):
                    best = candidate

        last = best.child.last_object
        properties = GraphStateProperties(
            cost=best.total,
            target_cost=best.target_cost,
            source_cost=best.source_cost,
            last_min_depth=best.min_depth,
            last_max_depth=best.max_depth,
            adjusted_pose=last.cont_pose if last is not None else None,
            counted_pixels=best.counted_pixels,
        )
        return CostComputationOutput(cost=best.total, adjusted_child_state=best.child,
                                     properties=properties, depth_image=best.depth_image)

    __call__ = compute_cost
