"""Rigid transforms from 4-points correspondences."""

from __future__ import annotations

import math

import torch

from ..errors import SingularCorrespondenceError
from ..geometry import RigidTransform, estimate_rigid_transform
from ..input_validation import typecheck
from ..types import QuadPoints, TranslationVector
from .options import MatchOptions


class TransformEstimator:
    """Estimate and filter the transform of a congruent set.

    Parameters
    ----------
    options
        The matching options. ``delta`` bounds the residual of the
        correspondence and, unless ``min_correspondence_spread`` is set,
        the thinness of the bases. ``max_angle_deg`` and
        ``max_translation_distance`` bound the transform.
    reference_centroid
        The point whose displacement is compared to
        ``max_translation_distance``. Defaults to the origin.
    """

    def __init__(
        self,
        options: MatchOptions,
        *,
        reference_centroid: TranslationVector | None = None,
    ) -> None:
        self.options = options
        self.reference_centroid = reference_centroid

    @typecheck
    def estimate(
        self, base_points: QuadPoints, target_points: QuadPoints
    ) -> RigidTransform:
        """Transform mapping the base points onto their matched points.

        Parameters
        ----------
        base_points
            The (4, 3) base points, in the reference cloud.
        target_points
            The (4, 3) matched points, in the target cloud.

        Raises
        ------
        SingularCorrespondenceError
            If the base points are within ``min_correspondence_spread`` of
            a line, if the points can not be rigidly aligned up to
            ``delta``, or if the transform moves more than allowed by the
            options.

        Returns
        -------
        RigidTransform
            The least-squares transform.
        """
        min_spread = self.options.min_correspondence_spread
        if min_spread is None:
            min_spread = self.options.delta
        transform = estimate_rigid_transform(
            base_points, target_points, min_spread=min_spread
        )

        residuals = transform.apply(base_points) - target_points
        rms = float((residuals**2).sum(dim=1).mean().sqrt())
        if rms > self.options.delta:
            msg = (
                f"The correspondence is not rigid, residual {rms:.3g} is"
                + f" above delta={self.options.delta:.3g}"
            )
            raise SingularCorrespondenceError(msg)

        max_angle = self.options.max_angle_deg
        if max_angle is not None:
            angle = math.degrees(float(transform.rotation_angle()))
            if angle > max_angle:
                msg = f"Rotation of {angle:.1f} degrees, above {max_angle}"
                raise SingularCorrespondenceError(msg)

        max_translation = self.options.max_translation_distance
        if max_translation is not None:
            if self.reference_centroid is None:
                center = torch.zeros_like(transform.translation)
            else:
                center = self.reference_centroid
            displacement = float(
                torch.linalg.norm(transform.apply(center[None])[0] - center)
            )
            if displacement > max_translation:
                msg = (
                    f"Translation of {displacement:.3g}, above"
                    + f" {max_translation:.3g}"
                )
                raise SingularCorrespondenceError(msg)

        return transform
