"""Super4PCS: global rigid registration of point clouds in python."""

from .data import PointCloud, clean_invalid_normals
from .errors import (
    ConfigurationError,
    DegenerateBaseError,
    DegenerateInputError,
    GeometricDegeneracyError,
    InputStructureError,
    InputTypeError,
    NotFittedError,
    ShapeError,
    SingularCorrespondenceError,
)
from .geometry import *
from .globals import float_dtype, int_dtype
from .input_validation import *
from .matching import *
from .neighborhoods import *
from .tasks import *
from .types import *

__version__ = "0.1.0"

__all__ = [
    "PointCloud",
    "clean_invalid_normals",
    "data",
    "errors",
    "geometry",
    "input_validation",
    "matching",
    "neighborhoods",
    "tasks",
    "types",
]
