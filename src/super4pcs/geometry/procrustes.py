"""Closed-form rigid alignment of corresponding point sets."""

import torch

from ..errors import SingularCorrespondenceError
from ..input_validation import typecheck
from ..types import Number, Points3d
from .transforms import RigidTransform

# Relative threshold on the singular values of the centered source below
# which the correspondence does not pin down a rotation.
SINGULAR_RATIO = 1e-6


@typecheck
def estimate_rigid_transform(
    source: Points3d,
    target: Points3d,
    min_spread: Number = 0.0,
) -> RigidTransform:
    """Rigid transform minimizing the squared distances.

    Solves ``min_{R, t} sum_i |R @ source_i + t - target_i|^2`` with the
    Kabsch/Procrustes method: the rotation is read from the SVD of the
    cross-covariance matrix of the centered point sets, with a sign
    correction so that reflections are never returned.

    Parameters
    ----------
    source
        (n, 3) points to move.
    target
        (n, 3) points, ``target[i]`` corresponding to ``source[i]``.
    min_spread
        Smallest admissible second singular value of the centered source.
        The rotation about a line is only known up to the spread of the
        points around it: sources thinner than ``min_spread`` are rejected.

    Raises
    ------
    SingularCorrespondenceError
        If the source points are (nearly) coincident or collinear, in which
        case the rotation about their common line is undetermined.

    Returns
    -------
    RigidTransform
        The optimal transform.
    """
    if source.shape != target.shape:
        msg = (
            f"source and target must have the same shape, got {source.shape}"
            + f" and {target.shape}"
        )
        raise ValueError(msg)

    src_centroid = source.mean(dim=0)
    tgt_centroid = target.mean(dim=0)

    src_centered = source - src_centroid
    tgt_centered = target - tgt_centroid

    spread = torch.linalg.svdvals(src_centered)
    if spread[0] == 0 or spread[1] <= SINGULAR_RATIO * spread[0]:
        msg = "The source points are coincident or collinear"
        raise SingularCorrespondenceError(msg)
    thickness = float(spread[1])
    if thickness < min_spread:
        msg = (
            f"The source points are nearly collinear, spread {thickness:.3g}"
            + f" is below {min_spread:.3g}"
        )
        raise SingularCorrespondenceError(msg)

    H = src_centered.T @ tgt_centered

    U, _, Vt = torch.linalg.svd(H)
    V = Vt.T
    R = V @ U.T
    if torch.det(R) < 0:
        V = V.clone()
        V[:, -1] *= -1
        R = V @ U.T
    t = tgt_centroid - R @ src_centroid
    return RigidTransform(rotation=R, translation=t)
