"""Runtime checker for function's arguments."""

from beartype import beartype
from jaxtyping import jaxtyped

from ..globals import typecheck_enabled


def typecheck(func):
    """Runtime checker for function's arguments.

    Combines jaxtyping, which checks the dtypes and the named dimensions of
    tensors (e.g. ``"n 3"``), with beartype for all the other annotations.
    Named dimensions are bound once per call, so two arguments annotated with
    the same ``n`` must have the same number of points.

    When the ``SUPER4PCS_TYPECHECK`` environment variable is set to ``0``
    before importing the package, the function is returned unchanged.

    Parameters
    ----------
    func : callable
        the function to decorate

    Returns
    -------
    callable
        the decorated function
    """
    if not typecheck_enabled:
        return func
    return jaxtyped(typechecker=beartype)(func)
