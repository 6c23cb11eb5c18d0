"""End-to-end tests for the recognizer and the CLI."""

import json
import sys

import numpy as np
import pytest

from perch.modules.state_space import ContPose
from perch.recognizer import ObjectRecognizer

from conftest import CRATE, TRAY

import main as cli


def render_scene(config, placements):
    with ObjectRecognizer(config) as recognizer:
        model_ids = [m for m, _ in placements]
        return recognizer.env.set_observation_from_poses(model_ids, [p for _, p in placements])


class TestObjectRecognizer:

    def test_single_object(self, config):
        depth = render_scene(config, [(0, ContPose(0.5, 0.5, 0.0))])
        with ObjectRecognizer(config) as recognizer:
            result = recognizer.localize(depth)
        assert result.found
        assert result.model_ids == [0]
        assert result.poses[0].distance_to(ContPose(0.5, 0.5)) < 0.05
        assert result.cost == 0
        assert result.expansions == 1

    def test_two_objects(self, make_config):
        config = make_config(models=[CRATE, TRAY], num_objects=2, res=0.2)
        depth = render_scene(config, [(0, ContPose(0.2, 0.2, 0.0)), (1, ContPose(0.6, 0.6, 0.0))])
        with ObjectRecognizer(config) as recognizer:
            result = recognizer.localize(depth)
        assert result.found
        assert result.model_ids == [0, 1]
        assert len(result.poses) == 2
        assert result.expansions == 2

    def test_no_solution(self, make_config):
        # every grid pose is outside the camera's view, so no candidate is visible
        config = make_config(x_min=5.0, x_max=6.0, y_min=5.0, y_max=6.0)
        with ObjectRecognizer(config) as recognizer:
            result = recognizer.localize(np.full((48, 64), 20000, dtype=np.uint16))
        assert not result.found
        assert result.poses == []
        assert result.state_id == 0

    def test_baselines(self, make_config):
        config = make_config(models=[CRATE, TRAY])
        depth = render_scene(config, [(0, ContPose(0.5, 0.5, 0.0))])
        with ObjectRecognizer(config, compute_baselines=True) as recognizer:
            assert recognizer.localize(depth).found

    def test_environment_reused(self, config):
        recognizer = ObjectRecognizer(config)
        try:
            assert recognizer.env is recognizer.env
        finally:
            recognizer.close()


class TestCli:

    def write_inputs(self, tmp_path, config_dict, depth):
        cfg = tmp_path / "scene.json"
        cfg.write_text(json.dumps(config_dict))
        obs = tmp_path / "obs.npy"
        np.save(obs, depth)
        return str(cfg), str(obs)

    def test_prints_poses(self, config, tmp_path, monkeypatch, capsys):
        depth = render_scene(config, [(0, ContPose(0.5, 0.5, 0.0))])
        cfg, obs = self.write_inputs(tmp_path, {"img_width": 64, "img_height": 48, "res": 0.1,
                                                "models": [CRATE]}, depth)
        monkeypatch.setattr(sys, "argv", ["main.py", "--config", cfg, "--depth", obs])
        assert cli.main() == 0
        assert "crate" in capsys.readouterr().out

    def test_bad_config(self, tmp_path, monkeypatch):
        cfg, obs = self.write_inputs(tmp_path, {"models": []}, np.zeros((2, 2), dtype=np.uint16))
        monkeypatch.setattr(sys, "argv", ["main.py", "--config", cfg, "--depth", obs])
        assert cli.main() == 1

    def test_no_solution(self, tmp_path, monkeypatch, capsys):
        cfg, obs = self.write_inputs(
            tmp_path,
            {"img_width": 64, "img_height": 48, "x_min": 5, "x_max": 6, "y_min": 5, "y_max": 6,
             "models": [CRATE]},
            np.full((48, 64), 20000, dtype=np.uint16))
        monkeypatch.setattr(sys, "argv", ["main.py", "--config", cfg, "--depth", obs])
        assert cli.main() == 2
        assert "No solution" in capsys.readouterr().out

    def test_non_numeric_config_field(self, tmp_path, monkeypatch):
        cfg, obs = self.write_inputs(tmp_path, {"res": "a", "models": [CRATE]},
                                     np.zeros((48, 64), dtype=np.uint16))
        monkeypatch.setattr(sys, "argv", ["main.py", "--config", cfg, "--depth", obs])
        assert cli.main() == 1

    def test_wrong_depth_shape(self, tmp_path, monkeypatch):
        cfg, obs = self.write_inputs(tmp_path, {"img_width": 64, "img_height": 48, "models": [CRATE]},
                                     np.zeros((10, 10), dtype=np.uint16))
        monkeypatch.setattr(sys, "argv", ["main.py", "--config", cfg, "--depth", obs])
        assert cli.main() == 1

    def test_missing_depth_file(self, tmp_path, monkeypatch):
        cfg, _ = self.write_inputs(tmp_path, {"img_width": 64, "img_height": 48, "models": [CRATE]},
                                   np.zeros((48, 64), dtype=np.uint16))
        monkeypatch.setattr(sys, "argv", ["main.py", "--config", cfg, "--depth", str(tmp_path / "none.npy")])
        assert cli.main() == 1
