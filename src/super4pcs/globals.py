"""This modules contains global variables for the super4pcs package"""

import os
from warnings import warn

import torch

# float dtype is float32 by default, and can be switch to float64 using the
# SUPER4PCS_FLOAT_DTYPE environment variable (before importing super4pcs).
admissile_float_dtypes = ["float32", "float64"]
float_dtype = os.environ.get("SUPER4PCS_FLOAT_DTYPE", "float32")

if float_dtype in admissile_float_dtypes:
    float_dtype = getattr(torch, float_dtype)

else:
    warn(
        f"Unknown float dtype {float_dtype}. Possible values are"
        + f" {admissile_float_dtypes}. Using float32 as default.",
        stacklevel=1,
    )
    float_dtype = torch.float32

# int dtype is int64
int_dtype = torch.int64

# Runtime type checking of the public functions can be switched off with
# SUPER4PCS_TYPECHECK=0, e.g. for long matching runs.
typecheck_enabled = os.environ.get("SUPER4PCS_TYPECHECK", "1") != "0"
