"""Exception taxonomy for the recognition environment.

Invalid poses and occluded transitions are not errors: the candidate is
dropped.  A search that never reaches a goal is not an error either; the
recognizer reports it as ``found=False``.
"""


class PerchError(Exception):
    """Base class for every error raised by perch."""


class ConfigurationError(PerchError, ValueError):
    """Invalid bounds, resolutions, counts or model geometry (fatal at startup)."""


class UnknownStateError(PerchError, KeyError):
    """A state id was resolved that the state store never allocated."""


class RenderFailure(PerchError, RuntimeError):
    """The renderer failed or returned an unusable depth image."""


class AlignmentFailure(PerchError, RuntimeError):
    """The alignment service was given malformed point sets."""


class DispatchError(PerchError, RuntimeError):
    """A participant of the parallel cost collective failed or disappeared."""


class UnsupportedOperationError(PerchError, NotImplementedError):
    """Query that the one-directional expansion model does not support."""
