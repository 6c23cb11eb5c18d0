"""
#WHERE
    Imported by every perch module and by tests.

#WHAT
    Shared constants and the exception taxonomy.

#INPUT
    None (constant registries).

#OUTPUT
    Sensor / grid / cost constants; PerchError hierarchy.
"""

from .constants import NO_RETURN, DEPTH_SCALE
from .errors import (
    PerchError,
    ConfigurationError,
    UnknownStateError,
    RenderFailure,
    AlignmentFailure,
    DispatchError,
    UnsupportedOperationError,
)

__all__ = [
    "NO_RETURN",
    "DEPTH_SCALE",
    "PerchError",
    "ConfigurationError",
    "UnknownStateError",
    "RenderFailure",
    "AlignmentFailure",
    "DispatchError",
    "UnsupportedOperationError",
]
