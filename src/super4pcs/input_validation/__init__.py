"""Validation of the arguments of the public functions.

- ``typecheck`` checks the annotations at runtime (tensor dtypes and shapes
  included),
- ``convert_inputs`` turns numpy arrays and lists into tensors of the library
  dtype before the check,
- ``one_and_only_one`` and ``no_more_than_one`` constrain groups of keyword
  arguments such as ``seed`` and ``generator``.

The decorators wrap with ``functools.wraps``: beartype reads the annotations
of the wrapped function through it.
"""

from .converters import convert_inputs
from .notnone_rules import no_more_than_one, one_and_only_one
from .typechecking import typecheck
