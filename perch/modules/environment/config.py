"""
#WHERE
    Used by env.py, recognizer.py, main.py and tests.

#WHAT
    Environment configuration: table, camera, planar bounds, grid
    resolutions, image geometry, object / model counts, model geometry,
    renderer choice, cost knobs, worker count and debug options.  Loads
    from a dict or JSON file and validates every field.

#INPUT
    JSON config file or dict.

#OUTPUT
    EnvConfig dataclass; derived PoseGrid, CameraModel, ModelLibrary.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from perch.modules.cost.models import CostConfig
from perch.modules.object_models import ModelLibrary, ObjectModel
from perch.modules.rendering import CameraModel, look_at
from perch.modules.state_space import PoseGrid
from perch.shared.constants import (
    DEFAULT_FAR, DEFAULT_FOV, DEFAULT_IMG_HEIGHT, DEFAULT_IMG_WIDTH, DEFAULT_NEAR,
    DEFAULT_RES, DEFAULT_THETA_RES,
)
from perch.shared.errors import ConfigurationError

log = logging.getLogger(__name__)


_FLOAT_FIELDS = ("table_height", "x_min", "x_max", "y_min", "y_max", "res", "theta_res",
                 "fov", "near", "far")
_INT_FIELDS = ("img_width", "img_height", "num_objects", "num_workers")
_COST_FLOAT_FIELDS = ("sensor_resolution", "icp_max_correspondence", "icp_tolerance")
_COST_INT_FIELDS = ("icp_max_iterations",)


def _default_camera_pose() -> List[List[float]]:
    return look_at((0.5, 0.5, 1.5), (0.5, 0.5, 0.0), up=(0.0, 1.0, 0.0)).tolist()


def _as_number(name: str, value: Any, kind: type):
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise ConfigurationError(f"{name} must be finite, got {value!r}")
    if kind is int and float(value) != int(value):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    return kind(value)


@dataclass
class EnvConfig:
    table_height: float = 0.0
    camera_pose: List[List[float]] = field(default_factory=_default_camera_pose)
    x_min: float = 0.0
    x_max: float = 1.0
    y_min: float = 0.0
    y_max: float = 1.0
    res: float = DEFAULT_RES
    theta_res: float = DEFAULT_THETA_RES
    img_width: int = DEFAULT_IMG_WIDTH
    img_height: int = DEFAULT_IMG_HEIGHT
    fov: float = DEFAULT_FOV
    near: float = DEFAULT_NEAR
    far: float = DEFAULT_FAR
    num_objects: int = 1
    num_models: Optional[int] = None     # None -> len(models)
    models: List[ObjectModel] = field(default_factory=list)
    renderer: str = "primitive"          # "primitive" | "pybullet"
    cost: CostConfig = field(default_factory=CostConfig)
    num_workers: int = 1                 # participants, coordinator included
    image_debug: bool = False
    debug_dir: str = "debug"

    # ── Loading ──────────────────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnvConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {sorted(unknown)}")
        kwargs = dict(data)
        if "models" in kwargs:
            kwargs["models"] = [m if isinstance(m, ObjectModel) else ObjectModel.from_dict(m)
                                for m in kwargs["models"]]
        if isinstance(kwargs.get("cost"), dict):
            try:
                kwargs["cost"] = CostConfig(**kwargs["cost"])
            except TypeError as exc:
                raise ConfigurationError(f"Invalid cost config: {exc}") from exc
        config = cls(**kwargs)
        config.validate()
        return config

    @classmethod
    def from_json(cls, path: str | Path) -> "EnvConfig":
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Config file {path} is not valid JSON: {exc}") from exc
        log.info("Loaded config %s", path)
        return cls.from_dict(data)

    # ── Validation ───────────────────────────────────────────────────────

    def _coerce_numbers(self) -> None:
        for owner, names, kind in ((self, _FLOAT_FIELDS, float), (self, _INT_FIELDS, int),
                                   (self.cost, _COST_FLOAT_FIELDS, float),
                                   (self.cost, _COST_INT_FIELDS, int)):
            for name in names:
                setattr(owner, name, _as_number(name, getattr(owner, name), kind))
        if self.num_models is not None:
            self.num_models = _as_number("num_models", self.num_models, int)

    def validate(self) -> None:
        if not isinstance(self.cost, CostConfig):
            raise ConfigurationError(f"cost must be a mapping, got {self.cost!r}")
        self._coerce_numbers()
        if not (self.x_min < self.x_max and self.y_min < self.y_max):
            raise ConfigurationError(
                f"Malformed bounds x[{self.x_min}, {self.x_max}] y[{self.y_min}, {self.y_max}]")
        if self.res <= 0 or self.theta_res <= 0 or self.theta_res > 2 * math.pi:
            raise ConfigurationError(f"Invalid resolutions res={self.res} theta_res={self.theta_res}")
        if self.img_width <= 0 or self.img_height <= 0:
            raise ConfigurationError(f"Invalid image size {self.img_width}x{self.img_height}")
        if not (0 < self.fov < 180) or not (0 < self.near < self.far):
            raise ConfigurationError(f"Invalid camera fov={self.fov} near={self.near} far={self.far}")
        try:
            pose = np.asarray(self.camera_pose, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"camera_pose must be a 4x4 matrix of numbers: {exc}") from exc
        if pose.shape != (4, 4):
            raise ConfigurationError(f"camera_pose must be 4x4, got {pose.shape}")
        if not self.models:
            raise ConfigurationError("At least one object model is required")
        if self.num_models is not None and self.num_models != len(self.models):
            raise ConfigurationError(
                f"num_models={self.num_models} but {len(self.models)} models were given")
        if not 1 <= self.num_objects <= len(self.models):
            raise ConfigurationError(
                f"num_objects={self.num_objects} must be in [1, {len(self.models)}]")
        if self.num_workers < 1:
            raise ConfigurationError(f"num_workers must be >= 1, got {self.num_workers}")
        if self.cost.sensor_resolution <= 0:
            raise ConfigurationError("cost.sensor_resolution must be positive")
        for model in self.models:
            model.validate()

    # ── Derived objects ──────────────────────────────────────────────────

    @property
    def camera_pose_array(self) -> np.ndarray:
        return np.asarray(self.camera_pose, dtype=np.float64)

    def grid(self) -> PoseGrid:
        return PoseGrid(x_min=self.x_min, y_min=self.y_min, res=self.res, theta_res=self.theta_res)

    def camera(self) -> CameraModel:
        return CameraModel(width=self.img_width, height=self.img_height, fov=self.fov,
                           near=self.near, far=self.far, pose=self.camera_pose_array)

    def model_library(self) -> ModelLibrary:
        return ModelLibrary(self.models)
