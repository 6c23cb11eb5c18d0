"""
#WHERE
    Used by the environment façade (expand), the cost evaluator (pose
    re-validation after refinement), heuristics (seed poses) and tests.

#WHAT
    Expands a scene hypothesis with k placements into every valid
    hypothesis with k+1 placements: one new object, for a model not yet
    placed, at every discretised (x, y, theta) grid pose.

#INPUT
    GraphState, model library, bounds, grid, table height, camera.

#OUTPUT
    Ordered list of candidate GraphStates (model id, x, y, theta order).
"""

from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Set

import numpy as np

from perch.modules.object_models import ModelLibrary
from perch.modules.rendering import CameraModel
from perch.modules.state_space import ContPose, GraphState, ObjectState, PoseGrid

log = logging.getLogger(__name__)


class SuccessorGenerator:
    def __init__(self, models: ModelLibrary, grid: PoseGrid, x_max: float, y_max: float,
                 table_height: float, camera: CameraModel):
        self.models = models
        self.grid = grid
        self.x_min, self.y_min = grid.x_min, grid.y_min
        self.x_max, self.y_max = x_max, y_max
        self.table_height = table_height
        self.camera = camera
        self.nx = max(1, int(round((x_max - self.x_min) / grid.res)))
        self.ny = max(1, int(round((y_max - self.y_min) / grid.res)))

    def grid_poses(self) -> Iterator[ContPose]:
        """Every grid pose, x-major then y then theta.  The max bound is excluded."""
        for i in range(self.nx):
            for j in range(self.ny):
                for k in range(self.grid.num_thetas):
                    yield ContPose(self.x_min + i * self.grid.res,
                                   self.y_min + j * self.grid.res,
                                   k * self.grid.theta_res)

    def make_object(self, model_id: int, pose: ContPose) -> ObjectState:
        model = self.models[model_id]
        return ObjectState.create(model_id, pose, self.grid, model.symmetric, model.flipped)

    # ── Validity ─────────────────────────────────────────────────────────

    def in_bounds(self, pose: ContPose) -> bool:
        return self.x_min <= pose.x <= self.x_max and self.y_min <= pose.y <= self.y_max

    def _on_table_in_view(self, model_id: int, pose: ContPose) -> bool:
        """Model standing on the table at *pose* must lie in front of the camera."""
        height = self.models[model_id].height
        points = np.array([[pose.x, pose.y, self.table_height],
                           [pose.x, pose.y, self.table_height + height]])
        cam = (points - self.camera.position) @ self.camera.rotation
        return bool(np.all(cam[:, 2] > self.camera.near))

    def is_valid_pose(self, state: GraphState, model_id: int, pose: ContPose,
                      after_refinement: bool = False) -> bool:
        if not self.in_bounds(pose):
            return False
        if self.models[model_id].height <= 0 or not self._on_table_in_view(model_id, pose):
            return False
        if after_refinement:
            # refined poses are off-grid; their cell must still be a grid cell
            disc = self.grid.discretize(pose)
            if not (0 <= disc.x < self.nx and 0 <= disc.y < self.ny):
                return False
        radius = self.models[model_id].inscribed_radius
        for placed in state:
            other = self.models[placed.model_id].inscribed_radius
            if pose.distance_to(placed.cont_pose) < radius + other:
                return False
        return True

    # ── Expansion ────────────────────────────────────────────────────────

    def successors(self, state: GraphState, num_objects: int,
                   model_ids: Optional[List[int]] = None) -> List[GraphState]:
        if state.num_objects >= num_objects:
            return []
        candidates: List[GraphState] = []
        seen: Set[ObjectState] = set()
        ids = range(len(self.models)) if model_ids is None else sorted(model_ids)
        for model_id in ids:
            if state.contains_model(model_id):
                continue
            for pose in self.grid_poses():
                obj = self.make_object(model_id, pose)
                if obj in seen:
                    continue
                if not self.is_valid_pose(state, model_id, obj.cont_pose):
                    continue
                seen.add(obj)
                candidates.append(state.append(obj))
        log.debug("State with %d objects -> %d candidates", state.num_objects, len(candidates))
        return candidates
