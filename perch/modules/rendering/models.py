"""
#WHERE
    Used by camera.py, primitive_renderer.py, pybullet_renderer.py, the cost
    evaluator, heuristics and environment.

#WHAT
    DepthRenderer protocol (Strategy pattern interface) and the DepthImage
    convention shared by every renderer.

#INPUT
    Model library, object placements, camera pose.

#OUTPUT
    DepthImage: (img_height, img_width) uint16 array in millimetres,
    NO_RETURN where nothing was hit.  Pixel index = row * img_width + col.
"""

from typing import Protocol, Sequence

import numpy as np

from perch.modules.object_models import ObjectModel
from perch.modules.state_space import ObjectState

DepthImage = np.ndarray


class DepthRenderer(Protocol):
    """Strategy interface for depth rendering backends.

    Implementations must be deterministic for identical inputs and
    picklable so each cost-evaluation worker can hold its own copy.
    """

    width: int
    height: int

    def render(self, models: Sequence[ObjectModel], objects: Sequence[ObjectState],
               camera_pose: np.ndarray) -> DepthImage: ...
