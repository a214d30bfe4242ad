"""Rigid transforms.

A rigid transform is stored as a rotation matrix and a translation vector.
It maps a point ``x`` to ``R @ x + t`` and is equivalently described by the
4x4 homogeneous matrix ``[[R, t], [0, 1]]``.
"""

from __future__ import annotations

from typing import NamedTuple

import torch

from ..globals import float_dtype
from ..input_validation import convert_inputs, typecheck
from ..types import (
    FloatScalar,
    HomogeneousMatrix,
    Points3d,
    Quaternion,
    RotationMatrix,
    TranslationVector,
)


class RigidTransform(NamedTuple):
    """A rotation followed by a translation.

    Parameters
    ----------
    rotation
        Orthonormal (3, 3) matrix with determinant 1.
    translation
        (3,) translation vector.
    """

    rotation: RotationMatrix
    translation: TranslationVector

    @classmethod
    def identity(cls) -> RigidTransform:
        """The transform that leaves every point in place."""
        return cls(
            rotation=torch.eye(3, dtype=float_dtype),
            translation=torch.zeros(3, dtype=float_dtype),
        )

    @classmethod
    @convert_inputs
    @typecheck
    def from_matrix(cls, matrix: HomogeneousMatrix) -> RigidTransform:
        """Build a transform from a 4x4 homogeneous matrix."""
        return cls(
            rotation=matrix[:3, :3].clone(),
            translation=matrix[:3, 3].clone(),
        )

    @classmethod
    @convert_inputs
    @typecheck
    def from_quaternion(
        cls,
        quaternion: Quaternion,
        translation: TranslationVector,
    ) -> RigidTransform:
        """Build a transform from a (w, x, y, z) quaternion and a translation.

        This is the pose convention of the Stanford scan repository
        configuration files, once the scalar part is moved first.
        """
        return cls(
            rotation=quaternion_to_matrix(quaternion),
            translation=translation,
        )

    @property
    def matrix(self) -> HomogeneousMatrix:
        """The 4x4 homogeneous matrix of the transform."""
        matrix = torch.eye(4, dtype=self.rotation.dtype)
        matrix[:3, :3] = self.rotation
        matrix[:3, 3] = self.translation
        return matrix

    def apply(self, points: Points3d) -> Points3d:
        """Transform a set of points."""
        return points @ self.rotation.T + self.translation

    def apply_to_normals(self, normals: Points3d) -> Points3d:
        """Rotate a set of normals (translations do not act on vectors)."""
        return normals @ self.rotation.T

    def inverse(self) -> RigidTransform:
        """The transform undoing this one."""
        rotation = self.rotation.T
        return RigidTransform(
            rotation=rotation.contiguous(),
            translation=-(rotation @ self.translation),
        )

    def compose(self, other: RigidTransform) -> RigidTransform:
        """The transform applying ``other`` first, then ``self``."""
        return RigidTransform(
            rotation=self.rotation @ other.rotation,
            translation=self.rotation @ other.translation + self.translation,
        )

    def rotation_angle(self) -> FloatScalar:
        """Angle (radians) of the rotation, in [0, pi]."""
        cosine = (torch.trace(self.rotation) - 1) / 2
        return torch.arccos(torch.clamp(cosine, -1.0, 1.0))


@convert_inputs
@typecheck
def quaternion_to_matrix(quaternions: torch.Tensor) -> torch.Tensor:
    """
    Convert rotations given as quaternions to rotation matrices.

    Parameters
    ----------
    quaternions
        Quaternions with real part first, as tensor of shape (..., 4). They
        do not need to be normalized.

    Returns
    -------
        Rotation matrices as tensor of shape (..., 3, 3).
    """
    r, i, j, k = torch.unbind(quaternions, -1)
    two_s = 2.0 / (quaternions * quaternions).sum(-1)

    o = torch.stack(
        (
            1 - two_s * (j * j + k * k),
            two_s * (i * j - k * r),
            two_s * (i * k + j * r),
            two_s * (i * j + k * r),
            1 - two_s * (i * i + k * k),
            two_s * (j * k - i * r),
            two_s * (i * k - j * r),
            two_s * (j * k + i * r),
            1 - two_s * (i * i + j * j),
        ),
        -1,
    )
    return o.reshape(quaternions.shape[:-1] + (3, 3))


@convert_inputs
@typecheck
def axis_angle_to_matrix(axis_angle: torch.Tensor) -> torch.Tensor:
    """Convert rotations given as axis/angle to rotation matrices.

    Parameters
    ----------
    axis_angle
        Rotations given as a vector in axis angle form, as a tensor of shape
        (..., 3), where the magnitude is the angle turned anticlockwise in
        radians around the vector's direction.

    Returns
    -------
    torch.Tensor
        Rotation matrices as tensor of shape (..., 3, 3).
    """
    angles = torch.norm(axis_angle, p=2, dim=-1, keepdim=True)
    half_angles = angles * 0.5
    small_angles = angles.abs() < 1e-6
    sin_half_angles_over_angles = torch.empty_like(angles)
    sin_half_angles_over_angles[~small_angles] = (
        torch.sin(half_angles[~small_angles]) / angles[~small_angles]
    )
    # for x small, sin(x/2) is about x/2 - (x/2)^3/6
    # so sin(x/2)/x is about 1/2 - (x*x)/48
    sin_half_angles_over_angles[small_angles] = (
        0.5 - (angles[small_angles] * angles[small_angles]) / 48
    )
    quaternions = torch.cat(
        [torch.cos(half_angles), axis_angle * sin_half_angles_over_angles],
        dim=-1,
    )
    return quaternion_to_matrix(quaternions)
