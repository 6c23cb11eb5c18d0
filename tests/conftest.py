"""Shared fixtures: a small top-down table scene rendered with the numpy ray caster."""

import math

import pytest

from perch.modules.cost import CostEvaluator, Observation
from perch.modules.environment import EnvConfig, EnvObjectRecognition
from perch.modules.rendering import PrimitiveDepthRenderer
from perch.modules.successors import SuccessorGenerator

CRATE = {"name": "crate", "shape": "box", "size": [0.1, 0.1, 0.1]}
TRAY = {"name": "tray", "shape": "box", "size": [0.1, 0.1, 0.025]}
CAN = {"name": "can", "shape": "cylinder", "size": [0.08, 0.2], "symmetric": True}


def _config(**overrides) -> EnvConfig:
    data = {
        "img_width": 64,
        "img_height": 48,
        "res": 0.1,
        "theta_res": math.pi / 2,
        "num_objects": 1,
        "models": [CRATE],
        "cost": {"sensor_resolution": 0.01},
    }
    data.update(overrides)
    return EnvConfig.from_dict(data)


@pytest.fixture
def make_config():
    return _config


@pytest.fixture
def config():
    return _config()


@pytest.fixture
def two_object_config():
    return _config(models=[CRATE, TRAY], num_objects=2)


def build_evaluator(config: EnvConfig, renderer=None) -> CostEvaluator:
    camera = config.camera()
    models = config.model_library()
    renderer = renderer or PrimitiveDepthRenderer(config.img_width, config.img_height, config.fov,
                                                  config.near, config.far, config.table_height)
    generator = SuccessorGenerator(models, config.grid(), config.x_max, config.y_max,
                                   config.table_height, camera)
    return CostEvaluator(models, camera, renderer, generator, config.num_objects, config.cost,
                         Observation.empty(camera))


@pytest.fixture
def make_evaluator():
    return build_evaluator


@pytest.fixture
def make_env():
    envs = []

    def factory(config: EnvConfig, **kwargs) -> EnvObjectRecognition:
        env = EnvObjectRecognition(config, **kwargs)
        envs.append(env)
        return env

    yield factory
    for env in envs:
        env.close()
