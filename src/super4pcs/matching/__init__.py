"""Building blocks of the 4-points congruent sets matching."""

from .base_selector import Base, BaseSelector, make_base
from .congruent_sets import (
    BruteForceCongruentSetFinder,
    CongruentSet,
    CongruentSetFinder,
    SmartCongruentSetFinder,
)
from .estimation import TransformEstimator
from .options import MatchOptions, number_of_trials, validate_options
from .pair_index import (
    BasePairSource,
    BruteForcePairs,
    Pair,
    PairCache,
    PairIndex,
    PairSet,
)
from .verification import Verifier
