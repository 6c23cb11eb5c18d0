"""
State Space Module
==================
Scene hypotheses as sets of discretised object placements, plus the store
that interns them into stable integer ids.

Example:
    from perch.modules.state_space import GraphState, ObjectState, PoseGrid, StateStore

    grid = PoseGrid(x_min=0.0, y_min=0.0, res=0.05, theta_res=math.pi / 2)
    state = GraphState().append(ObjectState.create(0, ContPose(0.1, 0.2, 0.0), grid))
    state_id = StateStore().intern(state)
"""

from .models import (
    ContPose,
    DiscPose,
    PoseGrid,
    ObjectState,
    GraphState,
    GraphStateProperties,
    normalize_angle,
    canonical_theta,
)
from .store import StateStore

__all__ = [
    "ContPose",
    "DiscPose",
    "PoseGrid",
    "ObjectState",
    "GraphState",
    "GraphStateProperties",
    "normalize_angle",
    "canonical_theta",
    "StateStore",
]
