"""
#WHERE
    Used by evaluator.py, the dispatcher (message payloads), the environment
    façade and tests.

#WHAT
    Cost-computation knobs and the input / output records exchanged between
    the façade, the dispatcher and the cost evaluator.

#INPUT
    Parent / child states with the parent's cached depth image and counted
    pixels.

#OUTPUT
    CostConfig, CostComputationInput, CostComputationOutput dataclasses.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional

import numpy as np

from perch.modules.state_space import GraphState, GraphStateProperties
from perch.shared.constants import (
    ICP_MAX_CORRESPONDENCE, ICP_MAX_ITERATIONS, ICP_TOLERANCE, SENSOR_RESOLUTION,
)


@dataclass
class CostConfig:
    sensor_resolution: float = SENSOR_RESOLUTION   # m, "explained" tolerance
    use_icp: bool = True
    icp_max_iterations: int = ICP_MAX_ITERATIONS
    icp_max_correspondence: float = ICP_MAX_CORRESPONDENCE
    icp_tolerance: float = ICP_TOLERANCE


@dataclass(slots=True)
class CostComputationInput:
    source_state: GraphState
    child_state: GraphState
    source_depth_image: np.ndarray
    source_counted_pixels: FrozenSet[int] = frozenset()


@dataclass(slots=True)
class CostComputationOutput:
    """Result of scoring one edge.  ``cost is None`` means occluded (pruned)."""
    cost: Optional[int]
    adjusted_child_state: Optional[GraphState] = None
    properties: Optional[GraphStateProperties] = None
    depth_image: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def is_valid(self) -> bool:
        return self.cost is not None
