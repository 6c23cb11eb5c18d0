"""Tests for the rendering-based edge cost."""

import numpy as np
import pytest

from perch.modules.cost import CostComputationInput, Observation, is_occluded
from perch.modules.object_models import ModelLibrary, ObjectModel
from perch.modules.state_space import ContPose, GraphState, ObjectState
from perch.shared import NO_RETURN
from perch.shared.errors import RenderFailure


def blank(shape=(4, 4)):
    return np.full(shape, NO_RETURN, dtype=np.uint16)


class TestOcclusion:

    def test_new_pixels_reported(self):
        parent, child = blank(), blank()
        child[1, 1], child[1, 2] = 900, 950
        occluded, new_pixels, lo, hi = is_occluded(parent, child)
        assert not occluded
        assert new_pixels.tolist() == [5, 6]
        assert (lo, hi) == (900, 950)

    def test_object_in_front_of_placed_content(self):
        parent, child = blank(), blank()
        parent[0, 0] = 1000
        child[0, 0], child[2, 2] = 900, 900
        assert is_occluded(parent, child)[0]

    def test_object_behind_placed_content(self):
        parent, child = blank(), blank()
        parent[0, 0] = child[0, 0] = 1000
        child[2, 2] = 1200
        occluded, new_pixels, _, _ = is_occluded(parent, child)
        assert not occluded
        assert new_pixels.tolist() == [10]

    def test_no_visible_pixels(self):
        parent = blank()
        parent[0, 0] = 1000
        assert is_occluded(parent, parent.copy())[0]


class TestCostEvaluator:

    @pytest.fixture(autouse=True)
    def _scene(self, config, make_evaluator):
        self.evaluator = make_evaluator(config)
        self.generator = self.evaluator.generator
        self.truth = GraphState((self.generator.make_object(0, ContPose(0.5, 0.5, 0.0)),))
        observed = self.evaluator.render(self.truth)
        self.evaluator.set_observation(Observation.from_depth(observed, self.evaluator.camera))
        self.start = GraphState()
        self.start_depth = self.evaluator.camera.empty_image()

    def edge(self, x, y, theta=0.0):
        child = GraphState((self.generator.make_object(0, ContPose(x, y, theta)),))
        return self.evaluator.compute_cost(CostComputationInput(self.start, child, self.start_depth))

    def test_exact_hypothesis_costs_nothing(self):
        out = self.edge(0.5, 0.5)
        assert out.is_valid
        assert out.cost == 0
        assert out.properties.source_cost == 0

    def test_wrong_hypothesis_costs_more(self):
        assert self.edge(0.1, 0.1).cost > self.edge(0.5, 0.5).cost

    def test_wrong_hypothesis_counts_both_terms(self):
        out = self.edge(0.1, 0.1)
        assert out.properties.target_cost > 0
        assert out.properties.source_cost > 0
        assert out.cost == out.properties.target_cost + out.properties.source_cost

    def test_deterministic(self):
        first, second = self.edge(0.4, 0.5), self.edge(0.4, 0.5)
        assert first.cost == second.cost
        assert first.adjusted_child_state == second.adjusted_child_state
        assert first.adjusted_child_state.last_object.cont_pose == second.adjusted_child_state.last_object.cont_pose

    def test_depth_image_is_child_render(self):
        out = self.edge(0.5, 0.5)
        np.testing.assert_array_equal(out.depth_image, self.evaluator.render(out.adjusted_child_state))

    def test_counted_pixels_bounded(self):
        out = self.edge(0.3, 0.6)
        assert len(out.properties.counted_pixels) <= self.evaluator.camera.num_pixels

    def test_invisible_object_pruned(self):
        parent = self.truth
        parent_depth = self.evaluator.render(parent)
        # a second crate-sized model in the same spot adds no pixel
        self.evaluator.models = ModelLibrary([ObjectModel("a", size=(0.1, 0.1, 0.1)),
                                              ObjectModel("b", size=(0.1, 0.1, 0.1))])
        child = parent.append(ObjectState.create(1, ContPose(0.5, 0.5, 0.0), self.generator.grid))
        out = self.evaluator.compute_cost(CostComputationInput(parent, child, parent_depth))
        assert not out.is_valid
        assert out.cost is None

    def test_render_failure_propagates(self):
        class Broken:
            def render(self, models, objects, camera_pose):
                raise RuntimeError("no GL context")

        self.evaluator.renderer = Broken()
        with pytest.raises(RenderFailure, match="no GL context"):
            self.edge(0.5, 0.5)

    def test_wrong_render_shape(self):
        class Tiny:
            def render(self, models, objects, camera_pose):
                return np.zeros((2, 2), dtype=np.uint16)

        self.evaluator.renderer = Tiny()
        with pytest.raises(RenderFailure, match="shape"):
            self.edge(0.5, 0.5)


class TestCountedPixels:

    def test_child_counts_superset_of_parent(self, two_object_config, make_evaluator):
        evaluator = make_evaluator(two_object_config)
        generator = evaluator.generator
        truth = GraphState((generator.make_object(0, ContPose(0.3, 0.3, 0.0)),
                            generator.make_object(1, ContPose(0.7, 0.7, 0.0))))
        evaluator.set_observation(Observation.from_depth(evaluator.render(truth), evaluator.camera))

        start, start_depth = GraphState(), evaluator.camera.empty_image()
        first = GraphState((generator.make_object(0, ContPose(0.3, 0.3, 0.0)),))
        parent_out = evaluator.compute_cost(CostComputationInput(start, first, start_depth))
        assert parent_out.is_valid
        parent = parent_out.adjusted_child_state
        parent_counted = parent_out.properties.counted_pixels

        checked = 0
        for child in generator.successors(parent, num_objects=2)[::7]:
            out = evaluator.compute_cost(CostComputationInput(parent, child, parent_out.depth_image,
                                                              parent_counted))
            if not out.is_valid:
                continue
            _, new_pixels, _, _ = is_occluded(parent_out.depth_image, out.depth_image)
            counted = out.properties.counted_pixels
            assert parent_counted <= counted
            assert set(new_pixels.tolist()) <= counted
            assert len(counted) <= evaluator.camera.num_pixels
            checked += 1
        assert checked > 0


class TestEmptyObservation:

    def test_cost_is_target_cost_only(self, make_config, make_evaluator):
        evaluator = make_evaluator(make_config(res=0.05))
        start, start_depth = GraphState(), evaluator.camera.empty_image()
        children = evaluator.generator.successors(start, num_objects=1)
        assert len(children) == 1600
        for child in children[::40]:
            out = evaluator.compute_cost(CostComputationInput(start, child, start_depth))
            assert out.is_valid
            assert out.properties.source_cost == 0
            assert out.cost == out.properties.target_cost
            assert out.adjusted_child_state == child
