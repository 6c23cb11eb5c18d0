"""
#WHERE
    Entry point of the whole system — called by main.py and tests.

#WHAT
    End-to-end recognition: observed depth image → environment →
    greedy best-successor descent from the empty scene → goal poses.
    Optionally logs the greedy-ICP and shape-signature baselines.

#INPUT
    Observed depth image (uint16 mm), EnvConfig.

#OUTPUT
    RecognitionResult (found flag, per-object poses, goal state id, path
    cost, expansion count).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from perch.modules.environment import EnvConfig, EnvObjectRecognition
from perch.modules.rendering import DepthRenderer
from perch.modules.state_space import ContPose

log = logging.getLogger(__name__)


@dataclass
class RecognitionResult:
    found: bool
    poses: List[ContPose] = field(default_factory=list)
    model_ids: List[int] = field(default_factory=list)
    state_id: Optional[int] = None
    cost: float = 0.0
    expansions: int = 0
    elapsed: float = 0.0


class ObjectRecognizer:
    """Depth image → object poses. Builds the environment lazily on first localize()."""

    def __init__(self, config: EnvConfig, renderer: Optional[DepthRenderer] = None,
                 compute_baselines: bool = False) -> None:
        self.config = config
        self.renderer = renderer
        self.compute_baselines = compute_baselines
        self._env: Optional[EnvObjectRecognition] = None

    @property
    def env(self) -> EnvObjectRecognition:
        if self._env is None:
            self._env = EnvObjectRecognition(self.config, renderer=self.renderer)
        return self._env

    def close(self) -> None:
        if self._env is not None:
            self._env.close()
            self._env = None

    def __enter__(self) -> "ObjectRecognizer":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def localize(self, depth_image: np.ndarray) -> RecognitionResult:
        start = time.perf_counter()
        env = self.env
        env.set_observation(depth_image)

        if self.compute_baselines:
            env.precompute_heuristics()
            greedy = env.compute_greedy_icp_poses()
            log.info("Greedy ICP baseline: %s", [(o.model_id, o.cont_pose) for o in greedy])
            shape = env.compute_shape_signature_poses()
            log.info("Shape signature baseline: %s", [(o.model_id, o.cont_pose) for o in shape])

        state_id = env.start_state_id
        while not env.is_goal(state_id):
            succ = env.best_successor(state_id)
            if succ is None:
                log.info("No solution: state %d has no valid successors", state_id)
                return RecognitionResult(found=False, state_id=state_id,
                                         expansions=env.env_stats().expansions,
                                         elapsed=time.perf_counter() - start)
            state_id = succ

        state = env.state(state_id)
        result = RecognitionResult(
            found=True,
            poses=env.goal_poses(state_id),
            model_ids=sorted(state.model_ids),
            state_id=state_id,
            cost=env.g_value(state_id),
            expansions=env.env_stats().expansions,
            elapsed=time.perf_counter() - start,
        )
        stats = env.env_stats()
        log.info("Recognized %d objects in %.2fs: cost %s, %d expansions, succs rendered %d / valid %d",
                 len(result.poses), result.elapsed, result.cost, result.expansions,
                 stats.succs_rendered, stats.succs_valid)
        return result
