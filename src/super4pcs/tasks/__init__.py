"""High-level tasks: global rigid registration.

Each task is implemented as a class with a fit method.
"""

from .registration import (
    Match4PCS,
    Match4PCSBase,
    MatchResult,
    MatchSuper4PCS,
    compute_transformation,
)
