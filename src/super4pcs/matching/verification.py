"""Largest common pointset (LCP) score of a candidate transform."""

from __future__ import annotations

import math

import torch

from ..data import PointCloud
from ..geometry import RigidTransform
from ..input_validation import typecheck
from ..neighborhoods import NeighborIndex
from ..types import Number
from .options import MatchOptions

# Number of reference points scored between two checks of the early
# termination bound.
VERIFICATION_CHUNK_SIZE = 64


class Verifier:
    """Score rigid transforms by the fraction of matched reference points.

    A transformed reference point is matched when its nearest target point
    is closer than ``delta`` and, when both clouds carry them, when their
    normals make an angle below ``max_normal_angle_deg`` and their colors
    are closer than ``max_color_distance``.

    Parameters
    ----------
    reference
        The (sampled) reference cloud.
    target_index
        Nearest neighbor index over the target positions.
    target
        The target cloud indexed by ``target_index``, for its normals and
        colors.
    options
        The matching options.
    """

    def __init__(
        self,
        reference: PointCloud,
        target_index: NeighborIndex,
        target: PointCloud,
        options: MatchOptions,
    ) -> None:
        if target_index.n_points != target.n_points:
            msg = (
                f"The index holds {target_index.n_points} points but the"
                + f" target has {target.n_points}"
            )
            raise ValueError(msg)

        self.reference = reference
        self.target_index = target_index
        self.target = target
        self.options = options

        self.use_normals = reference.has_normals and target.has_normals
        self.use_colors = (
            reference.has_colors
            and target.has_colors
            and math.isfinite(options.max_color_distance)
        )
        self.min_normal_cosine = math.cos(
            math.radians(options.max_normal_angle_deg)
        )

    def _matches(
        self, transform: RigidTransform, indices: slice
    ) -> torch.Tensor:
        points = transform.apply(self.reference.points[indices])
        distances, neighbors = self.target_index.nearest(points)
        matched = distances <= self.options.delta

        if self.use_normals:
            normals = transform.apply_to_normals(
                self.reference.normals[indices]
            )
            cosines = (normals * self.target.normals[neighbors]).sum(dim=1)
            matched &= cosines >= self.min_normal_cosine

        if self.use_colors:
            color_distances = torch.linalg.norm(
                self.reference.colors[indices] - self.target.colors[neighbors],
                dim=1,
            )
            matched &= color_distances <= self.options.max_color_distance

        return matched

    @typecheck
    def score(
        self,
        transform: RigidTransform,
        terminate_below: Number | None = None,
    ) -> float:
        """Fraction of the reference points matched after the transform.

        Parameters
        ----------
        transform
            The candidate transform, mapping the reference onto the target.
        terminate_below
            If given, scoring stops as soon as the score can not reach this
            value any more. The returned value is then a lower bound of the
            score, strictly below ``terminate_below``.

        Returns
        -------
        float
            The score, in [0, 1].
        """
        n_points = self.reference.n_points
        if n_points == 0:
            return 0.0

        n_matched = 0
        for start in range(0, n_points, VERIFICATION_CHUNK_SIZE):
            stop = min(start + VERIFICATION_CHUNK_SIZE, n_points)
            matches = self._matches(transform, slice(start, stop))
            n_matched += int(matches.sum())

            if terminate_below is not None:
                best_possible = (n_matched + n_points - stop) / n_points
                if best_possible < terminate_below:
                    return n_matched / n_points

        return n_matched / n_points
