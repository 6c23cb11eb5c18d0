"""
#WHERE
    Imported by dispatch, heuristics, environment and tests.

#WHAT
    Cost Module — rendering-based edge-cost evaluation (occlusion test,
    target / source pixel accounting, ICP pose refinement) and the planar
    ICP alignment service.

#INPUT
    CostComputationInput batches; the observed depth image.

#OUTPUT
    CostComputationOutput per edge.
"""

from .models import CostConfig, CostComputationInput, CostComputationOutput
from .alignment import align, apply_to_pose, planar_transform, transform_points, estimate_planar_transform
from .evaluator import CostEvaluator, Observation, is_occluded

__all__ = [
    "CostConfig",
    "CostComputationInput",
    "CostComputationOutput",
    "align",
    "apply_to_pose",
    "planar_transform",
    "transform_points",
    "estimate_planar_transform",
    "CostEvaluator",
    "Observation",
    "is_occluded",
]
