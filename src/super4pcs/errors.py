"""Custom errors for the super4pcs package."""

from beartype.roar import BeartypeCallHintParamViolation
from jaxtyping import TypeCheckError

InputTypeError = (TypeCheckError, BeartypeCallHintParamViolation)


class InputStructureError(ValueError):
    """Raised when the input structure is not valid."""


class ShapeError(Exception):
    """Raised when an input has an invalid shape."""


class NotFittedError(Exception):
    """Raised when the matcher is not fitted."""


class ConfigurationError(ValueError):
    """Raised when the matching options are not valid."""


class DegenerateInputError(ValueError):
    """Raised when a point cloud is too small to be registered."""


class GeometricDegeneracyError(Exception):
    """Base class for the recoverable geometric failures of the matching."""


class DegenerateBaseError(GeometricDegeneracyError):
    """Raised when no well-conditioned base can be drawn from the reference."""


class SingularCorrespondenceError(GeometricDegeneracyError):
    """Raised when a correspondence does not define a rigid transform."""
