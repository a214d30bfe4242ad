"""Types aliases and utility functions for super4pcs."""

import numpy as np
import torch
from jaxtyping import Float32, Float64, Int, Int32, Int64

from .globals import float_dtype, int_dtype

# Type aliases
Number = int | float

correspondence = {
    torch.float32: Float32,
    torch.float64: Float64,
    torch.int64: Int64,
    torch.int32: Int32,
}

JaxFloat = correspondence[float_dtype]
JaxInt = correspondence[int_dtype]

# Only tensors with the library dtypes are accepted
Float1dTensor = JaxFloat[torch.Tensor, "_"]
FloatScalar = JaxFloat[torch.Tensor, ""]
Int1dTensor = JaxInt[torch.Tensor, "_"]

IntSequence = Int[torch.Tensor, "_"] | Int[np.ndarray, "_"] | list[int]

# Point clouds
Points3d = JaxFloat[torch.Tensor, "_ 3"]
PointTextureCoords = JaxFloat[torch.Tensor, "n_points 2"]

# Rigid motions
RotationMatrix = JaxFloat[torch.Tensor, "3 3"]
TranslationVector = JaxFloat[torch.Tensor, "3"]
Quaternion = JaxFloat[torch.Tensor, "4"]
HomogeneousMatrix = JaxFloat[torch.Tensor, "4 4"]

# 4-points sets
QuadPoints = JaxFloat[torch.Tensor, "4 3"]
QuadIndices = JaxInt[torch.Tensor, "4"]

# Integer cell coordinates of a hash grid
CellOffsets = JaxInt[torch.Tensor, "_ 3"]


class point_cloud_type:
    """Class for point clouds."""
