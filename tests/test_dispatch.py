"""Tests for the coordinator / worker cost dispatcher."""

import os
import sys

import pytest

from perch.modules.cost import CostComputationInput, Observation
from perch.modules.dispatch import LocalDispatcher, ProcessPoolDispatcher, make_dispatcher, partition
from perch.modules.rendering import PrimitiveDepthRenderer
from perch.modules.state_space import ContPose, GraphState
from perch.shared.errors import DispatchError, RenderFailure

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses the fork start method")


class FailingRenderer(PrimitiveDepthRenderer):
    """Once armed, raises either in the process that built it or everywhere else."""

    def __init__(self, *args, fail_in="worker", **kwargs):
        super().__init__(*args, **kwargs)
        self.owner = os.getpid()
        self.fail_in = fail_in
        self.armed = False

    def render(self, models, objects, camera_pose):
        in_owner = os.getpid() == self.owner
        if self.armed and in_owner == (self.fail_in == "coordinator"):
            raise RuntimeError(f"{self.fail_in} renderer lost its context")
        return super().render(models, objects, camera_pose)


def _failing_setup(config, make_evaluator, fail_in):
    renderer = FailingRenderer(config.img_width, config.img_height, config.fov,
                               config.near, config.far, fail_in=fail_in)
    evaluator = make_evaluator(config, renderer)
    inputs = _batch(evaluator)
    renderer.armed = True
    return evaluator, inputs


class TestPartition:

    def test_even(self):
        assert partition(8, 4) == [range(0, 2), range(2, 4), range(4, 6), range(6, 8)]

    def test_uneven_chunks_are_ceil(self):
        assert partition(10, 4) == [range(0, 3), range(3, 6), range(6, 9), range(9, 10)]

    def test_more_workers_than_items(self):
        slices = partition(2, 4)
        assert [len(s) for s in slices] == [1, 1, 0, 0]

    def test_empty(self):
        assert all(len(s) == 0 for s in partition(0, 3))

    def test_covers_everything_once(self):
        covered = [i for s in partition(37, 5) for i in s]
        assert covered == list(range(37))


def _batch(evaluator):
    generator = evaluator.generator
    truth = GraphState((generator.make_object(0, ContPose(0.5, 0.5, 0.0)),))
    evaluator.set_observation(Observation.from_depth(evaluator.render(truth), evaluator.camera))
    start, depth = GraphState(), evaluator.camera.empty_image()
    children = generator.successors(start, num_objects=1)[::5]
    return [CostComputationInput(start, child, depth) for child in children]


def _summary(outputs):
    return [(o.cost, o.adjusted_child_state,
             o.adjusted_child_state.last_object.cont_pose if o.adjusted_child_state else None)
            for o in outputs]


class TestLocalDispatcher:

    def test_sequential(self, config, make_evaluator):
        evaluator = make_evaluator(config)
        inputs = _batch(evaluator)
        with make_dispatcher(evaluator, 1) as dispatcher:
            assert isinstance(dispatcher, LocalDispatcher)
            outputs = dispatcher.compute_costs(inputs)
        assert _summary(outputs) == _summary([evaluator.compute_cost(i) for i in inputs])

    def test_render_failure_surfaces_as_dispatch_error(self, config, make_evaluator):
        evaluator, inputs = _failing_setup(config, make_evaluator, "coordinator")
        with pytest.raises(DispatchError, match="coordinator renderer lost its context") as info:
            LocalDispatcher(evaluator).compute_costs(inputs)
        assert isinstance(info.value.__cause__, RenderFailure)


@pytest.mark.slow
class TestProcessPoolDispatcher:

    def test_same_results_for_1_2_4_workers(self, config, make_evaluator):
        evaluator = make_evaluator(config)
        inputs = _batch(evaluator)
        results = {}
        for workers in (1, 2, 4):
            with make_dispatcher(evaluator, workers, start_method="fork") as dispatcher:
                assert dispatcher.size == workers
                results[workers] = _summary(dispatcher.compute_costs(inputs))
        assert len(results[1]) == len(inputs)
        assert results[1] == results[2] == results[4]

    def test_empty_batch(self, config, make_evaluator):
        with ProcessPoolDispatcher(make_evaluator(config), 2, start_method="fork") as dispatcher:
            assert dispatcher.compute_costs([]) == []

    def test_broadcast_reaches_workers(self, config, make_evaluator):
        evaluator = make_evaluator(config)
        inputs = _batch(evaluator)
        expected = _summary([evaluator.compute_cost(i) for i in inputs])
        fresh = make_evaluator(config)
        with ProcessPoolDispatcher(fresh, 3, start_method="fork") as dispatcher:
            # workers were forked with an empty observation
            dispatcher.broadcast(evaluator)
            assert _summary(dispatcher.compute_costs(inputs)) == expected

    @pytest.mark.parametrize("fail_in", ["worker", "coordinator"])
    def test_failure_aborts_with_dispatch_error(self, config, make_evaluator, fail_in):
        evaluator, inputs = _failing_setup(config, make_evaluator, fail_in)
        dispatcher = ProcessPoolDispatcher(evaluator, 2, start_method="fork")
        with pytest.raises(DispatchError, match=f"{fail_in} renderer lost its context") as info:
            dispatcher.compute_costs(inputs)
        assert isinstance(info.value.__cause__, RenderFailure)
        with pytest.raises(DispatchError, match="closed"):
            dispatcher.compute_costs(inputs)
        dispatcher.close()

    def test_closed_dispatcher(self, config, make_evaluator):
        dispatcher = ProcessPoolDispatcher(make_evaluator(config), 2, start_method="fork")
        dispatcher.close()
        with pytest.raises(DispatchError, match="closed"):
            dispatcher.barrier()

    def test_invalid_worker_count(self, config, make_evaluator):
        with pytest.raises(ValueError, match="num_workers"):
            ProcessPoolDispatcher(make_evaluator(config), 0)
