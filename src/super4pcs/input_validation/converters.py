"""Converters for arguments."""

import itertools
from functools import wraps
from inspect import isclass, signature
from types import UnionType
from typing import Union, get_args, get_origin, get_type_hints

import jaxtyping
import numpy as np
import torch

from ..globals import float_dtype, int_dtype

_dtype_names = {
    "float32": torch.float32,
    "float64": torch.float64,
    "int64": torch.int64,
}


def detect_array_dtypes(t):
    """List the dtypes required by a (possibly Union) jaxtyping annotation."""
    if get_origin(t) in [Union, UnionType]:
        return list(
            set(
                itertools.chain(*[detect_array_dtypes(a) for a in get_args(t)])
            )
        )

    # Only annotations pinned to a single dtype trigger a conversion, vague
    # ones (e.g. "Int" for indices) are left to the type checker.
    elif isclass(t) and issubclass(t, jaxtyping.AbstractArray):
        if len(t.dtypes) == 1 and t.dtypes[0] in _dtype_names:
            return list(t.dtypes)
        else:
            return []

    else:
        return []


def closest_dtype(dtype, target_dtypes):
    """Pick the dtype a tensor of dtype ``dtype`` should be converted to."""
    targets = [_dtype_names[name] for name in target_dtypes]
    if len(targets) == 1:
        return targets[0]

    if dtype.is_floating_point and float_dtype in targets:
        return float_dtype
    if not dtype.is_floating_point and int_dtype in targets:
        return int_dtype

    msg = f"Unsupported target dtype: {target_dtypes}"
    raise NotImplementedError(msg)


def convert_inputs(func):
    """Convert array-like arguments to tensors of the annotated dtype.

    Lists, tuples, numpy arrays and tensors passed for an argument annotated
    with a jaxtyping tensor type of a single dtype (e.g. ``Points3d``) are
    converted before the call. Other values are passed through and left to
    the type checker.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        sig = signature(func)
        bound_args = sig.bind(*args, **kwargs)
        bound_args.apply_defaults()

        for param_name, param_type in get_type_hints(func).items():
            if param_name not in bound_args.arguments:
                continue

            target_dtypes = detect_array_dtypes(param_type)
            if not target_dtypes:
                continue

            value = bound_args.arguments[param_name]

            if isinstance(value, list | tuple):
                value = np.asarray(value)

            if isinstance(value, np.ndarray):
                value = torch.from_numpy(value)

            if isinstance(value, torch.Tensor):
                if torch.is_complex(value):
                    msg = "Complex tensors are not supported"
                    raise ValueError(msg)

                dtype = closest_dtype(value.dtype, target_dtypes)
                bound_args.arguments[param_name] = value.to(dtype=dtype)

        return func(*bound_args.args, **bound_args.kwargs)

    return wrapper
