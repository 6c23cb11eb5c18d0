"""
#WHERE
    Held by the recognizer (perch/recognizer.py), main.py, or any external
    search driver that speaks the expand / goal_heuristic / is_goal
    interface.

#WHAT
    The search environment.  Owns every per-run cache and collaborator:

        StateStore ── ids <-> GraphStates
        SuccessorGenerator ── candidates for one more object
        CostEvaluator (via dispatcher) ── edge costs, adjusted children
        AlignmentHeuristic / ShapeSignatureHeuristic ── goal estimates

    expand() is memoised per state id, so repeated queries from a
    multi-queue driver only pay for the first evaluation.  Properties of a
    state (counted pixels, depth band) are those of the first expansion
    that produced it.

#INPUT
    EnvConfig, observed depth image.

#OUTPUT
    Successor ids / edge costs, heuristic values, goal tests, final poses.
"""

from __future__ import annotations

import logging
import math
import os
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from perch.modules.cost import CostComputationInput, CostComputationOutput, CostEvaluator, Observation
from perch.modules.dispatch import make_dispatcher
from perch.modules.heuristics import AlignmentHeuristic, HeuristicKind, ShapeSignatureHeuristic
from perch.modules.rendering import DepthRenderer, create_renderer, save_depth_image
from perch.modules.state_space import ContPose, GraphState, GraphStateProperties, StateStore
from perch.modules.successors import SuccessorGenerator
from perch.shared.errors import ConfigurationError, UnsupportedOperationError
from .config import EnvConfig
from .models import EnvStats

log = logging.getLogger(__name__)


class EnvObjectRecognition:
    def __init__(self, config: EnvConfig, renderer: Optional[DepthRenderer] = None,
                 start_method: Optional[str] = None):
        config.validate()
        self.config = config
        self.models = config.model_library()
        self.grid = config.grid()
        self.camera = config.camera()
        self.renderer = renderer or create_renderer(
            config.renderer, config.img_width, config.img_height, config.fov,
            config.near, config.far, config.table_height)
        self.generator = SuccessorGenerator(self.models, self.grid, config.x_max, config.y_max,
                                            config.table_height, self.camera)
        self.evaluator = CostEvaluator(self.models, self.camera, self.renderer, self.generator,
                                       config.num_objects, config.cost)
        self.dispatcher = make_dispatcher(self.evaluator, config.num_workers,
                                          start_method=start_method)
        self.icp_heuristic = AlignmentHeuristic(self.evaluator)
        self.shape_heuristic = ShapeSignatureHeuristic(self.evaluator)

        self.store = StateStore()
        self._depth_images: Dict[int, np.ndarray] = {}
        self._succs: Dict[int, Tuple[List[int], List[int]]] = {}
        self._g_values: Dict[int, float] = {}
        self._properties: Dict[int, GraphStateProperties] = {}
        self._heuristics: Dict[Tuple[HeuristicKind, int], int] = {}
        self.stats = EnvStats()
        self.start_state_id = -1
        self.reset()
        log.info("Environment ready: %d models, %d objects, grid %dx%dx%d, %dx%d image, %d workers",
                 len(self.models), config.num_objects, self.generator.nx, self.generator.ny,
                 self.grid.num_thetas, config.img_width, config.img_height, self.dispatcher.size)

    # ── Lifecycle ────────────────────────────────────────────────────────

    def reset(self) -> None:
        """Drop every per-observation cache and re-intern the start state."""
        self.store.clear()
        self._depth_images.clear()
        self._succs.clear()
        self._g_values.clear()
        self._properties.clear()
        self._heuristics.clear()
        self.stats = EnvStats()
        self.start_state_id = self.store.intern(GraphState(()))
        self._g_values[self.start_state_id] = 0
        self._properties[self.start_state_id] = GraphStateProperties()

    def close(self) -> None:
        self.dispatcher.close()
        close = getattr(self.renderer, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> "EnvObjectRecognition":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ── Observation ──────────────────────────────────────────────────────

    def set_observation(self, depth_image: np.ndarray) -> None:
        depth_image = np.asarray(depth_image)
        expected = (self.camera.height, self.camera.width)
        if depth_image.shape != expected and depth_image.size != self.camera.num_pixels:
            raise ConfigurationError(f"Observed depth image has shape {depth_image.shape}, expected {expected}")
        observation = Observation.from_depth(depth_image, self.camera)
        self.reset()
        self.evaluator.set_observation(observation)
        self.dispatcher.broadcast(self.evaluator)
        if observation.is_empty:
            log.warning("Observed depth image has no returns")
        else:
            log.info("Observation set: %d points", len(observation.points))
        if self.config.image_debug:
            self._save_debug("observation.png", observation.depth_image)

    def set_observation_from_poses(self, model_ids: Sequence[int],
                                   poses: Sequence[ContPose]) -> np.ndarray:
        """Render a synthetic scene and use it as the observation."""
        if len(model_ids) != len(poses):
            raise ValueError(f"{len(model_ids)} model ids but {len(poses)} poses")
        state = GraphState(tuple(self.generator.make_object(m, p) for m, p in zip(model_ids, poses)))
        depth_image = self.evaluator.render(state)
        self.set_observation(depth_image)
        return depth_image

    @property
    def observation(self) -> Observation:
        return self.evaluator.observation

    # ── State store ──────────────────────────────────────────────────────

    def state_id(self, state: GraphState) -> int:
        return self.store.intern(state)

    def state(self, state_id: int) -> GraphState:
        return self.store.resolve(state_id)

    def state_count(self) -> int:
        return len(self.store)

    def is_goal(self, state_id: int) -> bool:
        return self.state(state_id).num_objects == self.config.num_objects

    def g_value(self, state_id: int) -> float:
        self.state(state_id)
        return self._g_values.get(state_id, math.inf)

    def properties(self, state_id: int) -> Optional[GraphStateProperties]:
        self.state(state_id)
        return self._properties.get(state_id)

    def env_stats(self) -> EnvStats:
        return self.stats

    def depth_image(self, state_id: int) -> np.ndarray:
        image = self._depth_images.get(state_id)
        if image is None:
            image = self.evaluator.render(self.state(state_id))
            self._depth_images[state_id] = image
        return image

    # ── Expansion ────────────────────────────────────────────────────────

    def expand(self, state_id: int) -> Tuple[List[int], List[int]]:
        cached = self._succs.get(state_id)
        if cached is not None:
            log.debug("Successors of state %d served from cache", state_id)
            return cached
        state = self.state(state_id)
        if self.is_goal(state_id):
            self._succs[state_id] = ([], [])
            return self._succs[state_id]

        parent_depth = self.depth_image(state_id)
        parent_props = self._properties.get(state_id) or GraphStateProperties()
        candidates = self.generator.successors(state, self.config.num_objects)
        inputs = [CostComputationInput(state, child, parent_depth, parent_props.counted_pixels)
                  for child in candidates]
        outputs = self.dispatcher.compute_costs(inputs)

        # refined candidates landing on one cell collapse to the cheapest edge
        winners: Dict[GraphState, CostComputationOutput] = {}
        for output in outputs:
            if not output.is_valid:
                continue
            self.stats.succs_valid += 1
            held = winners.get(output.adjusted_child_state)
            if held is None or _edge_rank(output) < _edge_rank(held):
                winners[output.adjusted_child_state] = output

        parent_g = self._g_values.get(state_id, math.inf)
        succ_ids: List[int] = []
        costs: List[int] = []
        for output in winners.values():
            child_id = self._intern_child(output)
            if parent_g + output.cost < self._g_values.get(child_id, math.inf):
                self._g_values[child_id] = parent_g + output.cost
            if self.config.image_debug:
                self._save_debug(f"succ_{child_id}.png", output.depth_image)
            log.debug("Edge %d -> %d cost %d", state_id, child_id, output.cost)
            succ_ids.append(child_id)
            costs.append(output.cost)

        self.stats.succs_rendered += len(candidates)
        self.stats.expansions += 1
        result = (succ_ids, costs)
        self._succs[state_id] = result
        log.info("Expanded state %d (%d objects): succs rendered %d, valid %d",
                 state_id, state.num_objects, len(candidates), len(result[0]))
        return result

    def _intern_child(self, output: CostComputationOutput) -> int:
        """Intern the winning child; a state seen before keeps its own pose and properties."""
        child = output.adjusted_child_state
        child_id = self.store.get_id(child)
        if child_id is None:
            child_id = self.store.intern(child)
            self._properties[child_id] = output.properties
        elif child_id not in self._properties and _same_poses(self.store.resolve(child_id), child):
            self._properties[child_id] = output.properties
        return child_id

    def best_successor(self, state_id: int) -> Optional[int]:
        succ_ids, costs = self.expand(state_id)
        if not succ_ids:
            return None
        best = min(range(len(succ_ids)), key=lambda i: (costs[i], i))
        return succ_ids[best]

    def goal_poses(self, state_id: int) -> List[ContPose]:
        """Continuous poses of *state_id*'s objects, ordered by model id."""
        state = self.state(state_id)
        return [obj.cont_pose for obj in sorted(state, key=lambda o: o.model_id)]

    # ── Heuristics ───────────────────────────────────────────────────────

    def goal_heuristic(self, state_id: int, kind: HeuristicKind = HeuristicKind.ANCHOR) -> int:
        kind = HeuristicKind(kind)
        key = (kind, state_id)
        if key in self._heuristics:
            return self._heuristics[key]
        state = self.state(state_id)
        if kind == HeuristicKind.ANCHOR or self.is_goal(state_id):
            value = 0
        else:
            props = self._properties.get(state_id) or GraphStateProperties()
            if kind == HeuristicKind.ICP:
                value = self.icp_heuristic.estimate(state, props.counted_pixels)
            else:
                value = self.shape_heuristic.estimate(state, props.counted_pixels)
        self._heuristics[key] = value
        log.debug("h_%s(%d) = %d", kind.name, state_id, value)
        return value

    def goal_heuristic_for_queue(self, q_id: int, state_id: int) -> int:
        try:
            kind = HeuristicKind(q_id)
        except ValueError as exc:
            raise ValueError(f"No heuristic for queue {q_id}") from exc
        return self.goal_heuristic(state_id, kind)

    def precompute_heuristics(self) -> None:
        """Train shape signatures and fill the start state's heuristic values."""
        self.shape_heuristic.train()
        for kind in HeuristicKind:
            self.goal_heuristic(self.start_state_id, kind)
        log.info("Start heuristics: icp=%d shape=%d",
                 self._heuristics[(HeuristicKind.ICP, self.start_state_id)],
                 self._heuristics[(HeuristicKind.SHAPE_SIGNATURE, self.start_state_id)])

    def compute_greedy_icp_poses(self) -> GraphState:
        state = self.icp_heuristic.greedy_poses()
        log.info("Greedy ICP placed %d of %d objects", state.num_objects, self.config.num_objects)
        return state

    def compute_shape_signature_poses(self) -> GraphState:
        state = self.shape_heuristic.poses()
        log.info("Shape signatures placed %d of %d objects", state.num_objects, self.config.num_objects)
        return state

    # ── Unsupported queries ──────────────────────────────────────────────

    def get_preds(self, state_id: int):
        raise UnsupportedOperationError("Predecessor generation is not supported")

    def get_lazy_succs(self, state_id: int):
        raise UnsupportedOperationError("Lazy successor generation is not supported")

    def get_lazy_preds(self, state_id: int):
        raise UnsupportedOperationError("Lazy predecessor generation is not supported")

    def get_start_heuristic(self, state_id: int):
        raise UnsupportedOperationError("Start heuristics are not supported; search is forward only")

    def get_from_to_heuristic(self, from_id: int, to_id: int):
        raise UnsupportedOperationError("From-to heuristics are not supported")

    # ── Debug ────────────────────────────────────────────────────────────

    def _save_debug(self, name: str, depth_image: np.ndarray) -> None:
        os.makedirs(self.config.debug_dir, exist_ok=True)
        save_depth_image(os.path.join(self.config.debug_dir, name), depth_image)


def _edge_rank(output: CostComputationOutput) -> Tuple[int, int]:
    return output.cost, output.properties.source_cost


def _same_poses(a: GraphState, b: GraphState) -> bool:
    return ([o.cont_pose for o in a.canonical_key()]
            == [o.cont_pose for o in b.canonical_key()])
