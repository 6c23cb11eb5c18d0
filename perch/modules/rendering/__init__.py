"""
#WHERE
    Imported by cost, heuristics, environment and tests.

#WHAT
    Rendering Module — depth renderer protocol, pinhole camera model,
    numpy primitive ray caster, PyBullet adapter and OpenCV debug dumps.

#INPUT
    Model library, object placements, camera pose.

#OUTPUT
    uint16 depth images (mm) and world-frame point clouds.
"""

from .models import DepthRenderer, DepthImage
from .camera import CameraModel, look_at
from .primitive_renderer import PrimitiveDepthRenderer
from .pybullet_renderer import PyBulletDepthRenderer, ShapeFactory
from .factory import create_renderer
from .debug import save_depth_image, depth_to_gray

__all__ = [
    "DepthRenderer",
    "DepthImage",
    "CameraModel",
    "look_at",
    "PrimitiveDepthRenderer",
    "PyBulletDepthRenderer",
    "ShapeFactory",
    "create_renderer",
    "save_depth_image",
    "depth_to_gray",
]
