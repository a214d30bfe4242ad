"""Hierarchy of nested grids for the extraction of pairs at a distance.

Level ``l`` of the hierarchy buckets the points in cubic cells of size
``finest_cell_size * 2 ** (depth - l)``: level 0 is a single cell holding
all the points, level ``depth`` the finest grid. Each cell of a level is
split into (at most) eight cells of the next one.

Pairs of points at a distance in ``[low, high]`` are found by descending
the hierarchy with pairs of cells: at each level, the children of the
surviving pairs are formed and the pairs whose distance bounds can not meet
the window are pruned. At the finest level, the points of the remaining
cell pairs are the candidates. As cells shrink with the levels, the pairs
kept at a level are those close to the shell of radius ``[low, high]``, so
that the work follows the number of pairs in the shell rather than the
square of the number of points.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import NamedTuple

import torch

from ..globals import int_dtype
from ..input_validation import typecheck
from ..types import CellOffsets, Int1dTensor, Number, Points3d
from .grid import CELL_SLACK, pairwise_distances

# Cell coordinates are packed in 64 bits integer keys, 20 bits per axis.
MAX_DEPTH = 20

# Upper bound on the number of children pairs formed at once.
EXPANSION_CHUNK_SIZE = 2**22


def _expand(
    counts_a: Int1dTensor, counts_b: Int1dTensor
) -> tuple[Int1dTensor, Int1dTensor, Int1dTensor]:
    """Enumerate the products of two lists of groups.

    For each ``p``, the ``counts_a[p] * counts_b[p]`` combinations of a rank
    in the first group and a rank in the second one are listed.

    Returns
    -------
    tuple[Int1dTensor, Int1dTensor, Int1dTensor]
        The index ``p`` of each combination and its two ranks.
    """
    sizes = counts_a * counts_b
    owners = torch.repeat_interleave(
        torch.arange(len(sizes), dtype=int_dtype), sizes
    )
    first_positions = torch.cumsum(sizes, dim=0) - sizes
    ranks = torch.arange(len(owners), dtype=int_dtype)
    ranks = ranks - first_positions[owners]
    width = counts_b[owners]
    return owners, ranks // width, ranks % width


class _Level(NamedTuple):
    """Occupied cells of a level, and how their content is laid out.

    ``members`` lists the items (children cells, or points at the finest
    level) sorted by cell; the items of cell ``c`` are
    ``members[starts[c] : starts[c] + counts[c]]``.
    """

    coords: CellOffsets
    members: Int1dTensor
    starts: Int1dTensor
    counts: Int1dTensor


def _group(owners: Int1dTensor, n_groups: int) -> tuple[Int1dTensor, ...]:
    members = torch.argsort(owners, stable=True)
    counts = torch.bincount(owners, minlength=n_groups)
    starts = torch.cumsum(counts, dim=0) - counts
    return members, starts, counts


class CellTree:
    """Nested grids over a point cloud.

    Parameters
    ----------
    points
        The (n, 3) points to index.
    finest_cell_size
        The cell size of the finest level. It is enlarged when the extent of
        the cloud would require more than ``MAX_DEPTH`` levels.
    """

    @typecheck
    def __init__(self, points: Points3d, finest_cell_size: Number) -> None:
        if finest_cell_size <= 0:
            msg = f"finest_cell_size must be positive, got {finest_cell_size}"
            raise ValueError(msg)

        self._points = points
        n_points = len(points)

        if n_points > 0:
            origin = points.min(dim=0).values
            extent = float((points.max(dim=0).values - origin).max())
        else:
            origin = torch.zeros(3, dtype=points.dtype)
            extent = 0.0

        cell_size = max(float(finest_cell_size), extent / (2**MAX_DEPTH - 1))
        fine_coords = torch.floor((points - origin) / cell_size).to(int_dtype)
        fine_coords = fine_coords.clamp(min=0, max=2**MAX_DEPTH - 1)

        max_coord = int(fine_coords.max()) if n_points > 0 else 0
        depth = max_coord.bit_length()
        self._finest_cell_size = cell_size
        self._depth = depth
        # Bound on the rounding of the cell assignment, in absolute terms
        scale = extent + (float(origin.abs().max()) if n_points > 0 else 0.0)
        self._rounding = 8 * torch.finfo(points.dtype).eps * scale

        # Cells of each level, from the root down to the finest grid
        cell_of_points = []
        coords = []
        for level in range(depth + 1):
            shifted = fine_coords >> (depth - level)
            x, y, z = shifted.unbind(dim=1)
            keys = (x << (2 * level)) | (y << level) | z
            unique_keys, inverse = torch.unique(keys, return_inverse=True)
            level_coords = torch.zeros(
                (len(unique_keys), 3), dtype=int_dtype
            )
            level_coords[inverse] = shifted
            cell_of_points.append(inverse)
            coords.append(level_coords)

        self._levels = []
        for level in range(depth + 1):
            n_cells = len(coords[level])
            if level < depth:
                # Parent of each cell of the next level
                parents = torch.zeros(len(coords[level + 1]), dtype=int_dtype)
                parents[cell_of_points[level + 1]] = cell_of_points[level]
                members, starts, counts = _group(parents, n_cells)
            else:
                members, starts, counts = _group(
                    cell_of_points[level], n_cells
                )
            self._levels.append(_Level(coords[level], members, starts, counts))

    @property
    def points(self) -> Points3d:
        return self._points

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def finest_cell_size(self) -> float:
        return self._finest_cell_size

    def cell_size(self, level: int) -> float:
        """Edge length of the cells of a level."""
        return self._finest_cell_size * 2 ** (self._depth - level)

    def _admissible(
        self, offsets: CellOffsets, level: int, low: float, high: float
    ) -> torch.Tensor:
        size = self.cell_size(level)
        magnitudes = offsets.abs().to(torch.float64)
        min_distances = torch.linalg.norm(
            (magnitudes - 1).clamp(min=0) * size, dim=1
        )
        max_distances = torch.linalg.norm((magnitudes + 1) * size, dim=1)
        slack = CELL_SLACK * size + self._rounding
        return (min_distances <= high + slack) & (
            max_distances >= low - slack
        )

    def _children(
        self, level: int, first: Int1dTensor, second: Int1dTensor
    ) -> tuple[Int1dTensor, Int1dTensor]:
        """Pairs of items of the cell pairs ``(first, second)`` of a level."""
        cells = self._levels[level]
        owners, rank_a, rank_b = _expand(
            cells.counts[first], cells.counts[second]
        )
        return (
            cells.members[cells.starts[first[owners]] + rank_a],
            cells.members[cells.starts[second[owners]] + rank_b],
        )

    def _chunks(
        self, level: int, first: Int1dTensor, second: Int1dTensor
    ) -> Iterator[slice]:
        """Slices of the cell pairs with a bounded number of children."""
        cells = self._levels[level]
        sizes = cells.counts[first] * cells.counts[second]
        ends = torch.cumsum(sizes, dim=0)
        start = 0
        while start < len(first):
            limit = int(ends[start] - sizes[start]) + EXPANSION_CHUNK_SIZE
            stop = int(
                torch.searchsorted(ends, torch.tensor([limit]), right=True)
            )
            stop = max(stop, start + 1)
            yield slice(start, stop)
            start = stop

    @typecheck
    def candidate_pairs(
        self, low: Number, high: Number
    ) -> tuple[Int1dTensor, Int1dTensor]:
        """Ordered pairs ``(i, j)``, ``i != j``, possibly in the window.

        Every pair of distinct points whose distance lies in ``[low, high]``
        is returned, along with pairs of the neighboring cells that the
        finest grid can not tell apart.

        Returns
        -------
        tuple[Int1dTensor, Int1dTensor]
            Aligned indices of the first and second points.
        """
        empty = torch.zeros(0, dtype=int_dtype)
        if len(self._points) < 2 or high < 0:
            return empty, empty

        first = torch.zeros(1, dtype=int_dtype)
        second = torch.zeros(1, dtype=int_dtype)
        for level in range(self._depth):
            coords = self._levels[level + 1].coords
            kept_first, kept_second = [], []
            for chunk in self._chunks(level, first, second):
                a, b = self._children(level, first[chunk], second[chunk])
                keep = self._admissible(
                    coords[b] - coords[a], level + 1, low, high
                )
                kept_first.append(a[keep])
                kept_second.append(b[keep])
            first = torch.cat(kept_first) if kept_first else empty
            second = torch.cat(kept_second) if kept_second else empty

        first, second = self._children(self._depth, first, second)
        distinct = first != second
        return first[distinct], second[distinct]

    @typecheck
    def pairs(
        self, low: Number, high: Number
    ) -> tuple[Int1dTensor, Int1dTensor, torch.Tensor]:
        """Ordered pairs of distinct points at a distance in ``[low, high]``.

        Returns
        -------
        tuple[Int1dTensor, Int1dTensor, torch.Tensor]
            First indices, second indices and distances.
        """
        first, second = self.candidate_pairs(low, high)
        distances = pairwise_distances(
            self._points, first, self._points, second
        )
        keep = (distances >= low) & (distances <= high)
        return first[keep], second[keep], distances[keep]
