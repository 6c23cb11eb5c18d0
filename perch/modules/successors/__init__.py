"""
Successor Generator Module
==========================
Proposes next-level scene hypotheses on the discretised pose grid and
prunes out-of-bounds, unsupported, colliding and duplicate placements.

Example:
    from perch.modules.successors import SuccessorGenerator

    generator = SuccessorGenerator(models, grid, x_max=1.0, y_max=1.0,
                                   table_height=0.0, camera=camera)
    children = generator.successors(GraphState(), num_objects=2)
"""

from .generator import SuccessorGenerator

__all__ = ["SuccessorGenerator"]
