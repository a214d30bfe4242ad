"""Random selection of coplanar 4-points bases in the reference cloud."""

from __future__ import annotations

import logging
from typing import NamedTuple

import torch

from ..errors import DegenerateBaseError
from ..geometry import closest_points_on_segments
from ..globals import int_dtype
from ..input_validation import typecheck
from ..types import Points3d, QuadIndices
from .options import MatchOptions

logger = logging.getLogger(__name__)

# Triangles with an area below this fraction of the squared maximum base
# diameter are considered flat.
MIN_RELATIVE_AREA = 1e-6

# Positions of the diagonals (first two) in the three ways of splitting four
# points into two segments.
DIAGONAL_ORDERINGS = ((0, 1, 2, 3), (0, 2, 1, 3), (0, 3, 1, 2))


class Base(NamedTuple):
    """A 4-points base and its affine invariants.

    Parameters
    ----------
    indices
        Indices of the four points in the reference cloud. The diagonals of
        the base are ``(indices[0], indices[1])`` and
        ``(indices[2], indices[3])``.
    d1
        Length of the first diagonal.
    d2
        Length of the second diagonal.
    r1
        Position, as a fraction of the first diagonal, of its point closest
        to the second diagonal.
    r2
        Same for the second diagonal.
    gap
        Distance between the closest points of the two diagonals, zero for a
        planar base whose diagonals cross.
    """

    indices: QuadIndices
    d1: float
    d2: float
    r1: float
    r2: float
    gap: float

    def points(self, cloud_points: Points3d) -> Points3d:
        """The (4, 3) positions of the base."""
        return cloud_points[self.indices]


@typecheck
def make_base(points: Points3d, indices: QuadIndices) -> Base:
    """Order four points into the base whose diagonals come closest.

    Among the three ways of pairing the four points into two segments, the
    pairing whose segments are the closest is kept: for a planar convex
    quadrilateral, its diagonals, which cross.
    """
    candidates = []
    for ordering in DIAGONAL_ORDERINGS:
        ordered = indices[list(ordering)]
        p0, p1, q0, q1 = points[ordered]
        r1, r2, gap = closest_points_on_segments(p0, p1, q0, q1)
        candidates.append((gap, ordered, r1, r2))

    gap, ordered, r1, r2 = min(candidates, key=lambda c: c[0])
    p0, p1, q0, q1 = points[ordered]
    return Base(
        indices=ordered,
        d1=float(torch.linalg.norm(p1 - p0)),
        d2=float(torch.linalg.norm(q1 - q0)),
        r1=r1,
        r2=r2,
        gap=gap,
    )


class BaseSelector:
    """Draw wide, nearly coplanar 4-points bases.

    A base is made of a triangle, chosen as the widest of ``n_base_trials``
    random triangles whose sides lie between the minimum spread and the
    maximum base diameter, and of the fourth point closest to the plane of
    the triangle among the points far enough from its three vertices.

    The maximum base diameter is ``overlap_estimate`` times the diameter of
    the cloud, so that a base has a fair chance to fit in the overlapping
    area. The minimum spread is ``min_base_spread`` times this diameter.

    Parameters
    ----------
    points
        The (n, 3) reference points.
    options
        The matching options.
    generator
        The random source.
    """

    @typecheck
    def __init__(
        self,
        points: Points3d,
        options: MatchOptions,
        generator: torch.Generator | None = None,
    ) -> None:
        self.points = points
        self.options = options
        self.generator = generator

        if len(points) > 0:
            extent = points.max(dim=0).values - points.min(dim=0).values
            diameter = float(torch.linalg.norm(extent))
        else:
            diameter = 0.0

        self.max_base_diameter = options.overlap_estimate * diameter
        self.min_spread = options.min_base_spread * self.max_base_diameter

    def _admissible(self, lengths: torch.Tensor) -> torch.Tensor:
        return (lengths >= self.min_spread) & (
            lengths <= self.max_base_diameter
        )

    def _select_triangle(self) -> torch.Tensor:
        n_points = len(self.points)
        triangles = torch.randint(
            n_points,
            (self.options.n_base_trials, 3),
            generator=self.generator,
            dtype=int_dtype,
        )
        a, b, c = (self.points[triangles[:, k]] for k in range(3))

        sides = torch.stack(
            [
                torch.linalg.norm(b - a, dim=1),
                torch.linalg.norm(c - b, dim=1),
                torch.linalg.norm(a - c, dim=1),
            ],
            dim=1,
        )
        valid = self._admissible(sides).all(dim=1)
        if not valid.any():
            msg = "No random triangle has admissible side lengths"
            raise DegenerateBaseError(msg)

        areas = torch.linalg.norm(torch.cross(b - a, c - a, dim=1), dim=1) / 2
        areas = torch.where(valid, areas, torch.zeros_like(areas))
        best = int(torch.argmax(areas))

        if areas[best] <= MIN_RELATIVE_AREA * self.max_base_diameter**2:
            msg = "The admissible triangles are flat"
            raise DegenerateBaseError(msg)

        return triangles[best]

    def _select_fourth_point(
        self, triangle: torch.Tensor
    ) -> tuple[int, float]:
        a, b, c = self.points[triangle]
        normal = torch.cross(b - a, c - a, dim=0)
        normal = normal / torch.linalg.norm(normal)

        distances = torch.stack(
            [torch.linalg.norm(self.points - v, dim=1) for v in (a, b, c)],
            dim=1,
        )
        valid = self._admissible(distances).all(dim=1)
        if not valid.any():
            msg = "No point completes the triangle into a base"
            raise DegenerateBaseError(msg)

        plane_distances = ((self.points - a) @ normal).abs()
        plane_distances = torch.where(
            valid,
            plane_distances,
            torch.full_like(plane_distances, float("inf")),
        )
        fourth = int(torch.argmin(plane_distances))
        return fourth, float(plane_distances[fourth])

    def select(self) -> Base:
        """Draw a new base.

        Raises
        ------
        DegenerateBaseError
            If no admissible base could be found in this draw: the cloud is
            too small, flat along a line, or its points are too close to
            each other for the spread constraints.

        Returns
        -------
        Base
            The selected base.
        """
        if len(self.points) < 4 or self.max_base_diameter <= 0:
            msg = "The cloud is too small to draw a base"
            raise DegenerateBaseError(msg)

        triangle = self._select_triangle()
        fourth, planarity_error = self._select_fourth_point(triangle)

        max_error = self.options.max_base_planarity_error
        if max_error is not None and planarity_error > max_error:
            msg = (
                f"The most coplanar base is off by {planarity_error:.3g},"
                + f" more than {max_error:.3g}"
            )
            raise DegenerateBaseError(msg)

        indices = torch.cat(
            [triangle, torch.tensor([fourth], dtype=int_dtype)]
        )
        base = make_base(self.points, indices)
        logger.debug(
            "Selected base %s (d1=%.4g, d2=%.4g, r1=%.3f, r2=%.3f, gap=%.3g)",
            base.indices.tolist(),
            base.d1,
            base.d2,
            base.r1,
            base.r2,
            base.gap,
        )
        return base
