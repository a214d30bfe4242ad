"""Nearest neighbors and range queries over a fixed point set."""

import numpy as np
import torch
from sklearn.neighbors import KDTree

from ..globals import int_dtype
from ..input_validation import typecheck
from ..types import Float1dTensor, Int1dTensor, Number, Points3d


class NeighborIndex:
    """A KD-tree over a point set.

    The tree is built once, in O(n log n), and is never modified afterwards:
    queries only read it and can be issued concurrently from several threads.
    Queries and results are torch tensors, indices refer to the rows of the
    indexed points.

    Parameters
    ----------
    points
        The (n, 3) indexed points.
    leaf_size
        Number of points in the leaves of the tree.
    """

    @typecheck
    def __init__(self, points: Points3d, *, leaf_size: int = 30) -> None:
        self._points = points
        self._tree = KDTree(
            points.detach().cpu().numpy().astype(np.float64),
            leaf_size=leaf_size,
        )

    @property
    def points(self) -> Points3d:
        return self._points

    @property
    def n_points(self) -> int:
        return len(self._points)

    def _as_numpy(self, queries: torch.Tensor) -> np.ndarray:
        return queries.detach().cpu().numpy().astype(np.float64).reshape(-1, 3)

    @typecheck
    def nearest(self, queries: Points3d) -> tuple[Float1dTensor, Int1dTensor]:
        """Nearest indexed point of each query.

        Returns
        -------
        tuple[Float1dTensor, Int1dTensor]
            The distances to the nearest neighbors and their indices.
        """
        if len(queries) == 0:
            return (
                torch.zeros(0, dtype=self._points.dtype),
                torch.zeros(0, dtype=int_dtype),
            )
        distances, indices = self._tree.query(
            self._as_numpy(queries), k=1, return_distance=True
        )
        return (
            torch.from_numpy(np.ascontiguousarray(distances[:, 0])).to(
                self._points.dtype
            ),
            torch.from_numpy(np.ascontiguousarray(indices[:, 0])).to(
                int_dtype
            ),
        )

    @typecheck
    def query_radius(
        self, queries: Points3d, radius: Number
    ) -> list[Int1dTensor]:
        """Indices of the indexed points within ``radius`` of each query."""
        if len(queries) == 0:
            return []
        neighbors = self._tree.query_radius(self._as_numpy(queries), r=radius)
        return [torch.from_numpy(n).to(int_dtype) for n in neighbors]

    @typecheck
    def count_within(self, queries: Points3d, radius: Number) -> Int1dTensor:
        """Number of indexed points within ``radius`` of each query."""
        if len(queries) == 0:
            return torch.zeros(0, dtype=int_dtype)
        counts = self._tree.query_radius(
            self._as_numpy(queries), r=radius, count_only=True
        )
        return torch.from_numpy(np.asarray(counts)).to(int_dtype)
