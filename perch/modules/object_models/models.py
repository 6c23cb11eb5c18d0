"""
#WHERE
    Used by the renderers, successor generator, cost evaluator, heuristics,
    environment config and test fixtures.

#WHAT
    Geometry summary of one known rigid object (primitive or mesh) and the
    ordered model library the search draws candidates from.

#INPUT
    Shape tag, size parameters, optional mesh path, symmetry / flip flags.

#OUTPUT
    ObjectModel / ModelLibrary instances with footprint radii and height.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from perch.shared.errors import ConfigurationError

log = logging.getLogger(__name__)

SHAPES = ("box", "cylinder", "mesh")


@dataclass(slots=True, frozen=True)
class ObjectModel:
    """One known object.

    ``size`` holds half extents ``(hx, hy, hz)`` for boxes and meshes (the
    mesh's bounding box) and ``(radius, height)`` for cylinders.  Models
    stand upright on the table; the reference point is the footprint
    centre at table height.
    """
    name: str
    shape: str = "box"
    size: Tuple[float, ...] = (0.05, 0.05, 0.05)
    mesh_path: Optional[str] = None
    symmetric: bool = False
    flipped: bool = False
    color: Tuple[float, ...] = field(default=(0.6, 0.6, 0.6, 1.0), compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectModel":
        try:
            return cls(
                name=str(data["name"]),
                shape=str(data.get("shape", "box")).lower(),
                size=tuple(float(s) for s in data.get("size", (0.05, 0.05, 0.05))),
                mesh_path=data.get("mesh_path"),
                symmetric=bool(data.get("symmetric", False)),
                flipped=bool(data.get("flipped", False)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid model entry {data!r}: {exc}") from exc

    def validate(self) -> None:
        if self.shape not in SHAPES:
            raise ConfigurationError(f"Unknown shape {self.shape!r} for model {self.name!r}")
        expected = 2 if self.shape == "cylinder" else 3
        if len(self.size) != expected:
            raise ConfigurationError(
                f"Model {self.name!r}: {self.shape} needs {expected} size values, got {len(self.size)}")
        if any(s <= 0 for s in self.size):
            raise ConfigurationError(f"Model {self.name!r}: sizes must be positive, got {self.size}")
        if self.shape == "mesh":
            if not self.mesh_path:
                raise ConfigurationError(f"Model {self.name!r}: mesh shape needs mesh_path")
            if not os.path.exists(self.mesh_path):
                raise ConfigurationError(f"Mesh not found for {self.name!r}: {self.mesh_path}")

    @property
    def half_extents(self) -> Tuple[float, float, float]:
        if self.shape == "cylinder":
            r, h = self.size
            return (r, r, h / 2.0)
        return tuple(self.size)  # type: ignore[return-value]

    @property
    def height(self) -> float:
        return 2.0 * self.half_extents[2]

    @property
    def inscribed_radius(self) -> float:
        hx, hy, _ = self.half_extents
        return min(hx, hy)

    @property
    def circumscribed_radius(self) -> float:
        if self.shape == "cylinder":
            return self.size[0]
        hx, hy, _ = self.half_extents
        return math.hypot(hx, hy)


class ModelLibrary:
    """Ordered, validated collection of ObjectModels; index == model id."""

    def __init__(self, models: Sequence[ObjectModel]):
        if not models:
            raise ConfigurationError("Model library is empty")
        for model in models:
            model.validate()
        names = [m.name for m in models]
        if len(names) != len(set(names)):
            raise ConfigurationError(f"Duplicate model names: {names}")
        self._models: List[ObjectModel] = list(models)
        log.info("Model library: %d models (%s)", len(self._models), ", ".join(names))

    @classmethod
    def from_dicts(cls, entries: Sequence[Dict[str, Any]]) -> "ModelLibrary":
        return cls([ObjectModel.from_dict(e) for e in entries])

    def __len__(self) -> int:
        return len(self._models)

    def __getitem__(self, model_id: int) -> ObjectModel:
        return self._models[model_id]

    def __iter__(self) -> Iterator[ObjectModel]:
        return iter(self._models)

    def id_of(self, name: str) -> int:
        for model_id, model in enumerate(self._models):
            if model.name == name:
                return model_id
        raise KeyError(name)

    @property
    def models(self) -> List[ObjectModel]:
        return list(self._models)
