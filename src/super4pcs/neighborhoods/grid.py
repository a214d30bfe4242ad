"""Uniform hash grid.

Points are bucketed in cubic cells of a fixed size. Cells are identified by
a linear key and the points are sorted by key, so that the content of any
cell is a contiguous slice of the sorted points, found by binary search.

Queries are expressed as sets of integer cell offsets: all the points lying
in the cells ``cell(query) + offset`` are returned as candidates. The
distance between two points of cells separated by an offset ``o`` is bounded
by the cell geometry, which lets ``shell_offsets`` select only the cells that
may contain points at a distance in a given window. The cost of a query is
the number of visited cells plus the number of returned candidates.
"""

from __future__ import annotations

import math

import torch

from ..globals import int_dtype
from ..input_validation import typecheck
from ..types import CellOffsets, Float1dTensor, Int1dTensor, Number, Points3d

# Upper bound on the number of (query, cell) lookups processed at once.
LOOKUP_CHUNK_SIZE = 2**20

# Floating point assignment of points to cells may be off by a rounding error
# at the cell borders: distance bounds are relaxed by this fraction of a cell.
CELL_SLACK = 1e-3


@typecheck
def shell_offsets(cell_size: Number, low: Number, high: Number) -> CellOffsets:
    """Cell offsets that may hold points at a distance in ``[low, high]``.

    Two points in cells separated by the integer offset ``o`` are, along each
    axis, at a distance between ``(|o_k| - 1) * cell_size`` and
    ``(|o_k| + 1) * cell_size``. An offset is kept when this interval,
    extended to 3D, intersects ``[low, high]``.

    Both bounds grow with ``|o_z|``, so for each ``(o_x, o_y)`` the admissible
    ``|o_z|`` form a range: only the offsets of the shell are enumerated,
    never the whole cube around it.

    Parameters
    ----------
    cell_size
        The size of the cells.
    low
        Lower bound of the distance window (may be negative).
    high
        Upper bound of the distance window.

    Returns
    -------
    CellOffsets
        A (k, 3) tensor of integer offsets.
    """
    if high < 0:
        return torch.zeros((0, 3), dtype=int_dtype)

    reach = math.floor(high / cell_size) + 2
    slack = CELL_SLACK * cell_size
    steps = torch.arange(-reach, reach + 1, dtype=int_dtype)
    planar = torch.cartesian_prod(steps, steps)

    magnitudes = planar.abs().to(torch.float64)
    min_planar = ((magnitudes - 1).clamp(min=0) * cell_size).pow(2).sum(dim=1)
    max_planar = ((magnitudes + 1) * cell_size).pow(2).sum(dim=1)

    # Largest |o_z| whose lower bound is below high
    room = (high + slack) ** 2 - min_planar
    k_max = torch.floor(room.clamp(min=0).sqrt() / cell_size) + 1
    k_max = torch.where(room >= 0, k_max.clamp(max=reach), -1)

    # Smallest |o_z| whose upper bound is above low
    k_min = torch.zeros_like(k_max)
    if low - slack > 0:
        missing = (low - slack) ** 2 - max_planar
        k_min = torch.where(
            missing > 0,
            (torch.ceil(missing.clamp(min=0).sqrt() / cell_size) - 1).clamp(
                min=0
            ),
            0,
        )

    k_min, k_max = k_min.to(int_dtype), k_max.to(int_dtype)
    lengths = (k_max - k_min + 1).clamp(min=0)
    owners = torch.repeat_interleave(
        torch.arange(len(planar), dtype=int_dtype), lengths
    )
    first_positions = torch.cumsum(lengths, dim=0) - lengths
    k = (
        k_min[owners]
        + torch.arange(len(owners), dtype=int_dtype)
        - first_positions[owners]
    )

    xy = planar[owners]
    mirrored = k > 0
    return torch.cat(
        [
            torch.cat([xy, k[:, None]], dim=1),
            torch.cat([xy[mirrored], -k[mirrored, None]], dim=1),
        ]
    )


class HashGrid:
    """Points bucketed in a uniform grid.

    Parameters
    ----------
    points
        The (n, 3) points to index.
    cell_size
        The edge length of the cubic cells.
    """

    @typecheck
    def __init__(self, points: Points3d, cell_size: Number) -> None:
        if cell_size <= 0:
            msg = f"cell_size must be positive, got {cell_size}"
            raise ValueError(msg)

        self._points = points
        self._cell_size = float(cell_size)

        if len(points) > 0:
            self._origin = points.min(dim=0).values
        else:
            self._origin = torch.zeros(3, dtype=points.dtype)

        cells = self.cell_of(points)
        if len(points) > 0:
            self._dims = cells.max(dim=0).values + 1
        else:
            self._dims = torch.ones(3, dtype=int_dtype)

        keys = self._linearize(cells)
        self._order = torch.argsort(keys)
        self._sorted_keys = keys[self._order].contiguous()

    @property
    def points(self) -> Points3d:
        return self._points

    @property
    def cell_size(self) -> float:
        return self._cell_size

    @property
    def n_points(self) -> int:
        return len(self._points)

    @property
    def n_occupied_cells(self) -> int:
        return len(torch.unique_consecutive(self._sorted_keys))

    def cell_of(self, points: Points3d) -> CellOffsets:
        """Integer cell coordinates of points, in the grid frame."""
        return torch.floor((points - self._origin) / self._cell_size).to(
            int_dtype
        )

    def _linearize(self, cells: CellOffsets) -> Int1dTensor:
        dims = self._dims
        return (cells[:, 0] * dims[1] + cells[:, 1]) * dims[2] + cells[:, 2]

    def _cell_ranges(
        self, cells: CellOffsets
    ) -> tuple[Int1dTensor, Int1dTensor]:
        """Slices of the sorted points held by each cell."""
        inside = ((cells >= 0) & (cells < self._dims)).all(dim=1)
        keys = self._linearize(cells)
        starts = torch.searchsorted(self._sorted_keys, keys, right=False)
        ends = torch.searchsorted(self._sorted_keys, keys, right=True)
        # Cells outside of the grid would alias other cells through the keys
        ends = torch.where(inside, ends, starts)
        return starts, ends

    @typecheck
    def query_offsets(
        self, queries: Points3d, offsets: CellOffsets
    ) -> tuple[Int1dTensor, Int1dTensor]:
        """Candidate neighbors of each query in the cells at given offsets.

        Parameters
        ----------
        queries
            The (m, 3) query points.
        offsets
            The (k, 3) cell offsets to visit around the cell of each query.

        Returns
        -------
        tuple[Int1dTensor, Int1dTensor]
            Aligned tensors of query indices and indexed point indices, one
            entry per candidate.
        """
        n_offsets = len(offsets)
        empty = torch.zeros(0, dtype=int_dtype)
        if len(queries) == 0 or n_offsets == 0 or self.n_points == 0:
            return empty, empty

        query_cells = self.cell_of(queries)
        chunk = max(1, LOOKUP_CHUNK_SIZE // n_offsets)

        query_indices, point_indices = [], []
        for first in range(0, len(queries), chunk):
            cells = query_cells[first : first + chunk]
            visited = (cells[:, None, :] + offsets[None, :, :]).reshape(-1, 3)
            starts, ends = self._cell_ranges(visited)
            counts = ends - starts

            lookups = torch.repeat_interleave(
                torch.arange(len(visited), dtype=int_dtype), counts
            )
            first_positions = torch.cumsum(counts, dim=0) - counts
            ranks = torch.arange(len(lookups), dtype=int_dtype) - (
                first_positions[lookups]
            )
            positions = starts[lookups] + ranks

            query_indices.append(first + lookups // n_offsets)
            point_indices.append(self._order[positions])

        return torch.cat(query_indices), torch.cat(point_indices)

    @typecheck
    def query_radius(
        self, queries: Points3d, radius: Number
    ) -> tuple[Int1dTensor, Int1dTensor, Float1dTensor]:
        """All (query, point) pairs closer than ``radius``.

        Returns
        -------
        tuple[Int1dTensor, Int1dTensor, Float1dTensor]
            Query indices, indexed point indices and distances.
        """
        offsets = shell_offsets(self._cell_size, 0, radius)
        query_indices, point_indices = self.query_offsets(queries, offsets)
        distances = pairwise_distances(
            queries, query_indices, self._points, point_indices
        )
        keep = distances <= radius
        return query_indices[keep], point_indices[keep], distances[keep]


def pairwise_distances(
    points_a: Points3d,
    indices_a: Int1dTensor,
    points_b: Points3d,
    indices_b: Int1dTensor,
) -> Float1dTensor:
    """Distances between the indexed rows of two point sets."""
    differences = points_a[indices_a] - points_b[indices_b]
    return (differences**2).sum(dim=-1).sqrt()
