"""
Parallel Cost Dispatcher Module
===============================
Fans an ordered batch of edge-cost requests out to a coordinator + worker
process pool and gathers the results back in input order.

Example:
    from perch.modules.dispatch import make_dispatcher

    with make_dispatcher(evaluator, num_workers=4) as dispatcher:
        outputs = dispatcher.compute_costs(inputs)
"""

from .dispatcher import LocalDispatcher, ProcessPoolDispatcher, make_dispatcher, partition

__all__ = ["LocalDispatcher", "ProcessPoolDispatcher", "make_dispatcher", "partition"]
