"""Cleanup of invalid normals."""

from warnings import warn

import torch

from ..errors import ShapeError
from ..input_validation import convert_inputs, typecheck
from ..types import Number, Points3d


@convert_inputs
@typecheck
def clean_invalid_normals(
    points: Points3d, normals: Points3d, min_norm: Number = 0.1
) -> tuple[Points3d, Points3d]:
    """Filter out points whose normal is degenerate.

    Scanners and mesh exporters regularly write null or tiny normals. Points
    whose normal has a norm below ``min_norm`` are dropped, the normals of the
    remaining points are rescaled to unit length. The inputs are not
    modified: new index-aligned tensors are returned.

    Parameters
    ----------
    points
        (n, 3) positions.
    normals
        (n, 3) normals, aligned with the points.
    min_norm
        Norm below which a normal is considered invalid.

    Returns
    -------
    tuple[Points3d, Points3d]
        The kept positions and their unit normals.
    """
    if len(points) != len(normals):
        msg = (
            f"points and normals must be aligned, got {len(points)} points"
            + f" and {len(normals)} normals"
        )
        raise ShapeError(msg)

    norms = torch.linalg.norm(normals, dim=1)
    keep = norms >= min_norm

    n_removed = int((~keep).sum())
    if n_removed > 0:
        warn(
            f"Removed {n_removed} points with invalid normals.",
            stacklevel=2,
        )

    return points[keep].clone(), normals[keep] / norms[keep, None]
