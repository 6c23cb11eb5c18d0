"""
#WHERE
    Used by store.py, the successor generator, cost evaluator, heuristics,
    environment façade, recognizer and their tests.

#WHAT
    Value types for one object placement and a scene hypothesis:
    continuous / discrete planar poses, the grid that converts between
    them, ObjectState, GraphState and per-state GraphStateProperties.

#INPUT
    Model ids, continuous poses, grid parameters.

#OUTPUT
    Immutable, hashable ContPose / DiscPose / ObjectState / GraphState
    instances; GraphStateProperties records.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import FrozenSet, Iterator, Optional, Tuple

from perch.shared.constants import FULL_TURN, NO_RETURN


def normalize_angle(theta: float) -> float:
    """Wrap *theta* into ``[0, 2π)``."""
    theta = math.fmod(theta, FULL_TURN)
    if theta < 0:
        theta += FULL_TURN
    # fmod can land exactly on 2π after the correction above
    return 0.0 if theta >= FULL_TURN else theta


def canonical_theta(theta: float, symmetric: bool = False, flipped: bool = False) -> float:
    """Map *theta* to the representative of its equivalence class.

    Rotationally symmetric models look identical at every yaw, so they all
    collapse to 0.  Flipped models look identical after a half turn.
    """
    if symmetric:
        return 0.0
    theta = normalize_angle(theta)
    if flipped:
        theta = math.fmod(theta, math.pi)
    return theta


@dataclass(slots=True, frozen=True)
class ContPose:
    x: float = 0.0
    y: float = 0.0
    theta: float = 0.0

    def to_disc(self, grid: "PoseGrid") -> "DiscPose":
        return grid.discretize(self)

    def distance_to(self, other: "ContPose") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(slots=True, frozen=True)
class DiscPose:
    x: int = 0
    y: int = 0
    theta: int = 0

    def to_cont(self, grid: "PoseGrid") -> ContPose:
        return grid.continuous(self)


@dataclass(slots=True, frozen=True)
class PoseGrid:
    """Linear / angular resolution grid anchored at ``(x_min, y_min)``."""
    x_min: float
    y_min: float
    res: float
    theta_res: float

    @property
    def num_thetas(self) -> int:
        return max(1, int(round(FULL_TURN / self.theta_res)))

    def discretize(self, pose: ContPose) -> DiscPose:
        return DiscPose(
            x=int(round((pose.x - self.x_min) / self.res)),
            y=int(round((pose.y - self.y_min) / self.res)),
            theta=int(round(normalize_angle(pose.theta) / self.theta_res)) % self.num_thetas,
        )

    def continuous(self, pose: DiscPose) -> ContPose:
        return ContPose(
            x=self.x_min + pose.x * self.res,
            y=self.y_min + pose.y * self.res,
            theta=normalize_angle(pose.theta * self.theta_res),
        )


@dataclass(slots=True, frozen=True)
class ObjectState:
    """One placed object.

    Identity is ``(model_id, disc_pose)``.  ``cont_pose`` rides along so a
    refined (ICP-adjusted) pose survives without changing identity.
    """
    model_id: int
    disc_pose: DiscPose
    cont_pose: ContPose = field(compare=False, default_factory=ContPose)

    @classmethod
    def create(cls, model_id: int, pose: ContPose, grid: PoseGrid,
               symmetric: bool = False, flipped: bool = False) -> "ObjectState":
        canon = ContPose(pose.x, pose.y, canonical_theta(pose.theta, symmetric, flipped))
        disc = grid.discretize(canon)
        # a theta just under the half turn rounds onto it
        half = grid.num_thetas // 2
        if flipped and grid.num_thetas % 2 == 0 and half > 0:
            disc = DiscPose(disc.x, disc.y, disc.theta % half)
        return cls(model_id=model_id, disc_pose=disc, cont_pose=canon)

    def sort_key(self) -> Tuple[int, int, int, int]:
        d = self.disc_pose
        return (self.model_id, d.x, d.y, d.theta)


@dataclass(slots=True, frozen=True, eq=False)
class GraphState:
    """A partial or complete scene hypothesis.

    ``objects`` keeps placement order, but equality and hashing are over
    the set of placements: two paths that place the same objects in a
    different order reach the same node.
    """
    objects: Tuple[ObjectState, ...] = ()

    def __post_init__(self) -> None:
        ids = [o.model_id for o in self.objects]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Repeated model id in state: {ids}")

    def __len__(self) -> int:
        return len(self.objects)

    def __iter__(self) -> Iterator[ObjectState]:
        return iter(self.objects)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GraphState):
            return NotImplemented
        return frozenset(self.objects) == frozenset(other.objects)

    def __hash__(self) -> int:
        return hash(self.canonical_key())

    def canonical_key(self) -> Tuple[ObjectState, ...]:
        return tuple(sorted(self.objects, key=ObjectState.sort_key))

    @property
    def num_objects(self) -> int:
        return len(self.objects)

    @property
    def model_ids(self) -> FrozenSet[int]:
        return frozenset(o.model_id for o in self.objects)

    @property
    def last_object(self) -> Optional[ObjectState]:
        return self.objects[-1] if self.objects else None

    def contains_model(self, model_id: int) -> bool:
        return any(o.model_id == model_id for o in self.objects)

    def append(self, obj: ObjectState) -> "GraphState":
        return GraphState(self.objects + (obj,))

    def replace_last(self, obj: ObjectState) -> "GraphState":
        if not self.objects:
            raise ValueError("Cannot replace the last object of an empty state")
        return GraphState(self.objects[:-1] + (obj,))


@dataclass(slots=True, frozen=True)
class GraphStateProperties:
    """Bookkeeping attached to a state after its incoming edge was scored."""
    cost: int = 0
    target_cost: int = 0
    source_cost: int = 0
    last_min_depth: int = NO_RETURN
    last_max_depth: int = 0
    adjusted_pose: Optional[ContPose] = None
    counted_pixels: FrozenSet[int] = frozenset()
