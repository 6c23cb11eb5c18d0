"""
#WHERE
    Imported by rendering, successors, cost, heuristics and environment.

#WHAT
    Object model geometry (box / cylinder / mesh bounding box) and the
    ordered model library.

#INPUT
    Model entries from the environment config.

#OUTPUT
    ObjectModel, ModelLibrary.
"""

from .models import ObjectModel, ModelLibrary, SHAPES

__all__ = ["ObjectModel", "ModelLibrary", "SHAPES"]
