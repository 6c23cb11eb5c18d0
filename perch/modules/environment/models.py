"""
#WHERE
    Returned by EnvObjectRecognition.env_stats(); logged by the recognizer.

#WHAT
    Running counters for one observation.

#INPUT
    None.

#OUTPUT
    EnvStats dataclass.
"""

from dataclasses import dataclass


@dataclass(slots=True)
class EnvStats:
    succs_rendered: int = 0   # candidates sent to the cost evaluator
    succs_valid: int = 0      # candidates that survived the occlusion test
    expansions: int = 0
