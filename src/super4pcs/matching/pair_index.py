"""Extraction of the pairs of target points at a given distance.

Two pair sources share the same interface:

- ``PairIndex`` (Super4PCS smart indexing): the target points are bucketed
  in nested grids (``CellTree``) down to cells of size ``delta``, and pairs
  of cells that can not hold points at a distance in
  ``[d - delta, d + delta]`` are pruned at every level. Extracted pairs
  are cached by quantized distance, as the diagonals of randomly drawn
  bases come back to the same lengths. Matching the points
  interpolated along two sets of pairs goes through a second ``HashGrid``.
- ``BruteForcePairs`` (plain 4PCS): all the pairwise distances and all
  the combinations of interpolated points are compared.

Pairs are ordered: when ``(i, j)`` is returned, so is ``(j, i)``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from typing import NamedTuple

import torch

from ..globals import int_dtype
from ..input_validation import typecheck
from ..neighborhoods import CellTree, HashGrid, pairwise_distances
from ..types import Float1dTensor, Int1dTensor, Number, Points3d

# Upper bound on the number of distances computed at once by the brute
# force extraction.
BRUTE_FORCE_CHUNK_SIZE = 2**22


class Pair(NamedTuple):
    """Two target indices and their distance."""

    first: int
    second: int
    distance: float


class PairSet(NamedTuple):
    """Aligned tensors describing a set of ordered pairs."""

    first: Int1dTensor
    second: Int1dTensor
    distances: Float1dTensor

    @property
    def n_pairs(self) -> int:
        return len(self.first)

    @classmethod
    def empty(cls, dtype: torch.dtype) -> PairSet:
        return cls(
            first=torch.zeros(0, dtype=int_dtype),
            second=torch.zeros(0, dtype=int_dtype),
            distances=torch.zeros(0, dtype=dtype),
        )

    def select(self, mask: torch.Tensor) -> PairSet:
        """Sub-set of the pairs given by a boolean mask or indices."""
        return PairSet(
            first=self.first[mask],
            second=self.second[mask],
            distances=self.distances[mask],
        )

    def within(self, low: Number, high: Number) -> PairSet:
        """Pairs whose distance lies in ``[low, high]``."""
        return self.select((self.distances >= low) & (self.distances <= high))

    def interpolate(self, points: Points3d, ratio: Number) -> Points3d:
        """Points at the fraction ``ratio`` of each pair segment."""
        start = points[self.first]
        return start + ratio * (points[self.second] - start)

    def iter_pairs(self) -> Iterator[Pair]:
        for first, second, distance in zip(
            self.first.tolist(),
            self.second.tolist(),
            self.distances.tolist(),
            strict=True,
        ):
            yield Pair(first, second, distance)


class PairCache:
    """Pairs extracted for quantized distances, shared between workers.

    An entry is never modified once inserted. Concurrent misses on the same
    key may both compute it; the first insertion wins and is returned to
    everyone.
    """

    def __init__(self) -> None:
        self._entries: dict[int, PairSet] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: int) -> bool:
        return key in self._entries

    def get_or_compute(
        self, key: int, compute: Callable[[], PairSet]
    ) -> PairSet:
        entry = self._entries.get(key)
        if entry is not None:
            self.hits += 1
            return entry

        self.misses += 1
        entry = compute()
        with self._lock:
            return self._entries.setdefault(key, entry)


class BasePairSource:
    """Base class of the pair extraction strategies.

    Parameters
    ----------
    points
        The (n, 3) target points.
    delta
        The distance tolerance.
    """

    @typecheck
    def __init__(self, points: Points3d, delta: Number) -> None:
        if delta <= 0:
            msg = f"delta must be positive, got {delta}"
            raise ValueError(msg)
        self._points = points
        self._delta = float(delta)

    @property
    def points(self) -> Points3d:
        return self._points

    @property
    def delta(self) -> float:
        return self._delta

    def pairs(self, distance: Number) -> PairSet:
        """All the ordered pairs at ``distance`` up to ``delta``."""
        raise NotImplementedError

    def iter_pairs(self, distance: Number) -> Iterator[Pair]:
        """Lazy version of ``pairs``."""
        yield from self.pairs(distance).iter_pairs()

    def match_interpolated(
        self,
        pairs1: PairSet,
        ratio1: Number,
        pairs2: PairSet,
        ratio2: Number,
        radius: Number,
    ) -> tuple[Int1dTensor, Int1dTensor]:
        """Combinations of pairs whose interpolated points are close.

        The point at ``ratio1`` along each pair of ``pairs1`` is compared to
        the point at ``ratio2`` along each pair of ``pairs2``.

        Returns
        -------
        tuple[Int1dTensor, Int1dTensor]
            Aligned indices into ``pairs1`` and ``pairs2`` of all the
            combinations whose points are closer than ``radius``.
        """
        raise NotImplementedError


class PairIndex(BasePairSource):
    """Output-sensitive pair extraction over nested grids.

    Parameters
    ----------
    points
        The (n, 3) target points.
    delta
        The distance tolerance, also the size of the finest cells.
    cache
        Cache of the extracted pairs. A new one is created if None; pass the
        same cache to share it between several indexes of the same points.
    """

    @typecheck
    def __init__(
        self,
        points: Points3d,
        delta: Number,
        *,
        cache: PairCache | None = None,
    ) -> None:
        super().__init__(points, delta)
        self._tree = CellTree(points, self._delta)
        self._cache = PairCache() if cache is None else cache
        self._quantum = self._delta / 2

    @property
    def tree(self) -> CellTree:
        return self._tree

    @property
    def cache(self) -> PairCache:
        return self._cache

    def _extract(self, low: float, high: float) -> PairSet:
        return PairSet(*self._tree.pairs(low, high))

    @typecheck
    def pairs(self, distance: Number) -> PairSet:
        """All the ordered pairs at ``distance`` up to ``delta``.

        The cache entry of the closest quantized distance holds the pairs of
        a window wide enough to contain ``[distance - delta, distance +
        delta]``; it is filtered exactly before being returned.
        """
        key = round(distance / self._quantum)
        center = key * self._quantum
        margin = self._delta + self._quantum

        superset = self._cache.get_or_compute(
            key, lambda: self._extract(center - margin, center + margin)
        )
        return superset.within(distance - self._delta, distance + self._delta)

    def match_interpolated(
        self,
        pairs1: PairSet,
        ratio1: Number,
        pairs2: PairSet,
        ratio2: Number,
        radius: Number,
    ) -> tuple[Int1dTensor, Int1dTensor]:
        empty = torch.zeros(0, dtype=int_dtype)
        if pairs1.n_pairs == 0 or pairs2.n_pairs == 0:
            return empty, empty

        points1 = pairs1.interpolate(self._points, ratio1)
        points2 = pairs2.interpolate(self._points, ratio2)

        grid = HashGrid(points1, cell_size=max(radius, self._delta))
        indices2, indices1, _ = grid.query_radius(points2, radius)
        return indices1, indices2


class BruteForcePairs(BasePairSource):
    """Quadratic pair extraction, as in the plain 4PCS algorithm."""

    @typecheck
    def pairs(self, distance: Number) -> PairSet:
        n_points = len(self._points)
        if n_points < 2:
            return PairSet.empty(self._points.dtype)

        indices = torch.arange(n_points, dtype=int_dtype)
        rows_per_chunk = max(1, BRUTE_FORCE_CHUNK_SIZE // n_points)

        chunks = []
        for start in range(0, n_points, rows_per_chunk):
            rows = indices[start : start + rows_per_chunk]
            first = rows.repeat_interleave(n_points)
            second = indices.repeat(len(rows))
            distinct = first != second
            first, second = first[distinct], second[distinct]
            distances = pairwise_distances(
                self._points, first, self._points, second
            )
            chunks.append(
                PairSet(first, second, distances).within(
                    distance - self._delta, distance + self._delta
                )
            )

        return PairSet(
            first=torch.cat([c.first for c in chunks]),
            second=torch.cat([c.second for c in chunks]),
            distances=torch.cat([c.distances for c in chunks]),
        )

    def match_interpolated(
        self,
        pairs1: PairSet,
        ratio1: Number,
        pairs2: PairSet,
        ratio2: Number,
        radius: Number,
    ) -> tuple[Int1dTensor, Int1dTensor]:
        empty = torch.zeros(0, dtype=int_dtype)
        if pairs1.n_pairs == 0 or pairs2.n_pairs == 0:
            return empty, empty

        points1 = pairs1.interpolate(self._points, ratio1)
        points2 = pairs2.interpolate(self._points, ratio2)

        rows_per_chunk = max(1, BRUTE_FORCE_CHUNK_SIZE // len(points2))
        matches1, matches2 = [], []
        for start in range(0, len(points1), rows_per_chunk):
            block = points1[start : start + rows_per_chunk]
            squared = ((block[:, None, :] - points2[None, :, :]) ** 2).sum(-1)
            rows, columns = torch.nonzero(
                squared.sqrt() <= radius, as_tuple=True
            )
            matches1.append(start + rows)
            matches2.append(columns)

        return torch.cat(matches1), torch.cat(matches2)
