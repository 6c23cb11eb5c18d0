"""
#WHERE
    Used by estimators.py, shape_signature.py, the environment façade and
    tests.

#WHAT
    Heuristic kinds (one per multi-heuristic search queue) and the
    shape-signature match record.

#INPUT
    None.

#OUTPUT
    HeuristicKind enum, ShapeMatch dataclass.
"""

from dataclasses import dataclass
from enum import IntEnum

from perch.modules.state_space import ContPose


class HeuristicKind(IntEnum):
    """Value doubles as the search-queue id of a multi-heuristic driver."""
    ANCHOR = 0
    ICP = 1
    SHAPE_SIGNATURE = 2


@dataclass(slots=True, frozen=True)
class ShapeMatch:
    model_id: int
    pose: ContPose
    distance: float       # signature distance, 0 = identical
    cluster_size: int
