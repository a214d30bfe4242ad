"""Extraction of the 4-points sets of the target congruent to a base.

A base ``(a, b, c, d)`` is described by the lengths of its diagonals
``[a, b]`` and ``[c, d]`` and by the positions ``r1`` and ``r2`` of their
closest points along each diagonal. Both are preserved by rigid motions, so a
congruent set ``(a', b', c', d')`` in the target is made of a pair at distance
``d1`` and a pair at distance ``d2`` whose points at ``r1`` and ``r2`` along
the pairs (nearly) coincide.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from typing import NamedTuple

import torch

from ..input_validation import typecheck
from ..types import Points3d, QuadIndices
from .base_selector import Base
from .options import MatchOptions
from .pair_index import (
    BasePairSource,
    BruteForcePairs,
    PairCache,
    PairIndex,
    PairSet,
)

logger = logging.getLogger(__name__)

# The four sides of a base, diagonals excluded, as positions in the base.
BASE_SIDES = ((0, 2), (0, 3), (1, 2), (1, 3))


class CongruentSet(NamedTuple):
    """A correspondence between a base and four target points."""

    base_indices: QuadIndices
    target_indices: QuadIndices


def _angles(normals_a: torch.Tensor, normals_b: torch.Tensor) -> torch.Tensor:
    cosines = (normals_a * normals_b).sum(dim=-1)
    return torch.arccos(cosines.clamp(-1.0, 1.0))


class CongruentSetFinder:
    """Enumerate the congruent sets of a base in the target.

    Parameters
    ----------
    pair_source
        The extractor of the pairs of target points at a given distance.
    options
        The matching options.
    target_normals
        Optional (n, 3) unit normals of the target points. When the
        reference normals are also given to ``find``, pairs whose normals
        make an angle too different from the angle between the normals of
        the base diagonal are discarded.
    """

    def __init__(
        self,
        pair_source: BasePairSource,
        options: MatchOptions,
        *,
        target_normals: Points3d | None = None,
    ) -> None:
        self.pair_source = pair_source
        self.options = options
        self.target_normals = target_normals

    @property
    def points(self) -> Points3d:
        return self.pair_source.points

    def _filter_normals(
        self,
        pairs: PairSet,
        reference_normals: Points3d | None,
        first: torch.Tensor,
        second: torch.Tensor,
    ) -> PairSet:
        if reference_normals is None or self.target_normals is None:
            return pairs
        if self.options.max_normal_angle_deg >= 180:
            return pairs

        base_angle = _angles(
            reference_normals[first], reference_normals[second]
        )
        pair_angles = _angles(
            self.target_normals[pairs.first], self.target_normals[pairs.second]
        )
        max_angle = math.radians(self.options.max_normal_angle_deg)
        return pairs.select((pair_angles - base_angle).abs() <= max_angle)

    def _side_lengths(
        self, points: Points3d, quads: torch.Tensor
    ) -> torch.Tensor:
        return torch.stack(
            [
                torch.linalg.norm(
                    points[quads[..., i]] - points[quads[..., j]], dim=-1
                )
                for i, j in BASE_SIDES
            ],
            dim=-1,
        )

    def candidates(
        self,
        base: Base,
        reference_points: Points3d,
        reference_normals: Points3d | None = None,
    ) -> torch.Tensor:
        """All the congruent sets of a base, as a (m, 4) tensor.

        Row ``k`` holds the target indices matched to ``base.indices``.
        """
        delta = self.options.delta
        indices = base.indices

        pairs1 = self.pair_source.pairs(base.d1)
        pairs1 = self._filter_normals(
            pairs1, reference_normals, indices[0], indices[1]
        )
        pairs2 = self.pair_source.pairs(base.d2)
        pairs2 = self._filter_normals(
            pairs2, reference_normals, indices[2], indices[3]
        )

        matches1, matches2 = self.pair_source.match_interpolated(
            pairs1, base.r1, pairs2, base.r2, radius=delta + base.gap
        )
        quads = torch.stack(
            [
                pairs1.first[matches1],
                pairs1.second[matches1],
                pairs2.first[matches2],
                pairs2.second[matches2],
            ],
            dim=1,
        )

        # Two base points can not be mapped to the same target point
        distinct = torch.ones(len(quads), dtype=torch.bool)
        for i in range(4):
            for j in range(i + 1, 4):
                distinct &= quads[:, i] != quads[:, j]
        quads = quads[distinct]

        base_sides = self._side_lengths(reference_points, indices)
        target_sides = self._side_lengths(self.points, quads)
        congruent = ((target_sides - base_sides).abs() <= delta).all(dim=1)
        quads = quads[congruent]

        logger.debug(
            "%d and %d pairs, %d congruent sets",
            pairs1.n_pairs,
            pairs2.n_pairs,
            len(quads),
        )
        return quads

    @typecheck
    def find(
        self,
        base: Base,
        reference_points: Points3d,
        reference_normals: Points3d | None = None,
    ) -> Iterator[CongruentSet]:
        """Enumerate the congruent sets of a base.

        The congruent sets are all extracted at once by ``candidates``, then
        yielded one by one.

        Parameters
        ----------
        base
            The base, drawn from ``reference_points``.
        reference_points
            The (n, 3) reference points.
        reference_normals
            Optional (n, 3) unit normals of the reference points.

        Returns
        -------
        Iterator[CongruentSet]
            An iterator over the congruent sets, in no particular order.
        """
        quads = self.candidates(base, reference_points, reference_normals)
        return (
            CongruentSet(base_indices=base.indices, target_indices=quad)
            for quad in quads
        )


class SmartCongruentSetFinder(CongruentSetFinder):
    """Congruent sets through the Super4PCS pair index.

    Parameters
    ----------
    points
        The (n, 3) target points.
    options
        The matching options.
    target_normals
        Optional (n, 3) unit normals of the target points.
    cache
        The pair cache, shared by all the finders of the same target.
    """

    def __init__(
        self,
        points: Points3d,
        options: MatchOptions,
        *,
        target_normals: Points3d | None = None,
        cache: PairCache | None = None,
    ) -> None:
        super().__init__(
            PairIndex(points, options.delta, cache=cache),
            options,
            target_normals=target_normals,
        )


class BruteForceCongruentSetFinder(CongruentSetFinder):
    """Congruent sets through exhaustive comparisons, as in 4PCS.

    Parameters
    ----------
    points
        The (n, 3) target points.
    options
        The matching options.
    target_normals
        Optional (n, 3) unit normals of the target points.
    """

    def __init__(
        self,
        points: Points3d,
        options: MatchOptions,
        *,
        target_normals: Points3d | None = None,
    ) -> None:
        super().__init__(
            BruteForcePairs(points, options.delta),
            options,
            target_normals=target_normals,
        )
