"""Renderer selection by name."""

from perch.shared.errors import ConfigurationError
from .primitive_renderer import PrimitiveDepthRenderer
from .pybullet_renderer import PyBulletDepthRenderer

_RENDERERS = {
    "primitive": PrimitiveDepthRenderer,
    "pybullet": PyBulletDepthRenderer,
}


def create_renderer(name: str, width: int, height: int, fov: float, near: float, far: float,
                    table_height: float):
    cls = _RENDERERS.get(name)
    if cls is None:
        raise ConfigurationError(f"Unknown renderer {name!r}; choose from {sorted(_RENDERERS)}")
    return cls(width=width, height=height, fov=fov, near=near, far=far, table_height=table_height)
