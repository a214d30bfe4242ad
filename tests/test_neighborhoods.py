"""Tests for the spatial indexing structures."""

import pytest
import torch
from hypothesis import given, settings
from hypothesis import strategies as st

import super4pcs as s4

from .utils import as_pair_set, exhaustive_pairs, random_points


def brute_force_radius(queries, points, radius) -> set:
    """(query, point) pairs closer than radius, by checking all of them."""
    query_indices, point_indices = torch.meshgrid(
        torch.arange(len(queries)), torch.arange(len(points)), indexing="ij"
    )
    query_indices = query_indices.reshape(-1)
    point_indices = point_indices.reshape(-1)
    distances = s4.pairwise_distances(
        queries, query_indices, points, point_indices
    )
    keep = distances <= radius
    return set(
        zip(
            query_indices[keep].tolist(),
            point_indices[keep].tolist(),
            strict=True,
        )
    )


@given(
    n_points=st.integers(min_value=1, max_value=80),
    n_queries=st.integers(min_value=0, max_value=30),
    radius=st.floats(min_value=0.01, max_value=0.6),
    cell_ratio=st.floats(min_value=0.2, max_value=3.0),
    seed=st.integers(min_value=0, max_value=1000),
)
@settings(deadline=None, max_examples=40)
def test_hash_grid_radius_queries(
    n_points, n_queries, radius, cell_ratio, seed
):
    """Radius queries on the grid find exactly the close points."""
    points = random_points(n_points, seed=seed)
    queries = random_points(n_queries, seed=seed + 1)

    grid = s4.HashGrid(points, cell_size=radius * cell_ratio)
    assert grid.n_points == n_points
    assert 1 <= grid.n_occupied_cells <= n_points

    query_indices, point_indices, distances = grid.query_radius(
        queries, radius
    )
    found = set(
        zip(query_indices.tolist(), point_indices.tolist(), strict=True)
    )
    assert len(found) == len(query_indices)
    assert found == brute_force_radius(queries, points, radius)
    assert bool((distances <= radius).all())


def test_shell_offsets():
    """Shells contain the offsets of the cells at the right distances."""
    offsets = s4.shell_offsets(1.0, -1.0, 0.5)
    # The neighboring cells of a cell
    assert len(offsets) == 27

    offsets = s4.shell_offsets(1.0, 5.0, 5.5)
    assert not bool((offsets.abs().max(dim=1).values == 0).any())
    assert int(offsets.abs().max()) <= 7

    assert len(s4.shell_offsets(1.0, -2.0, -1.0)) == 0


def test_neighbor_index():
    """Nearest neighbors and range queries over a KD-tree."""
    points = random_points(100)
    queries = random_points(20, seed=1)
    index = s4.NeighborIndex(points)
    assert index.n_points == 100

    distances, indices = index.nearest(queries)
    all_distances = torch.cdist(queries, points)
    expected_distances, expected_indices = all_distances.min(dim=1)
    assert torch.equal(indices, expected_indices)
    assert torch.allclose(distances, expected_distances, atol=1e-5)
    assert indices.dtype == s4.int_dtype
    assert distances.dtype == s4.float_dtype

    # Points are their own nearest neighbors
    distances, indices = index.nearest(points)
    assert torch.equal(indices, torch.arange(100))
    assert float(distances.max()) == 0

    neighbors = index.query_radius(queries, 0.3)
    counts = index.count_within(queries, 0.3)
    assert len(neighbors) == 20
    for k in range(20):
        expected = set(torch.nonzero(all_distances[k] <= 0.3)[:, 0].tolist())
        # Points at the boundary may be decided differently
        assert abs(len(set(neighbors[k].tolist()) ^ expected)) <= 1
        assert int(counts[k]) == len(neighbors[k])

    distances, indices = index.nearest(torch.zeros(0, 3))
    assert len(distances) == 0
    assert len(indices) == 0


def window_pairs(points, low, high) -> set:
    """Ordered pairs of distinct points at a distance in [low, high]."""
    n_points = len(points)
    first, second = torch.meshgrid(
        torch.arange(n_points), torch.arange(n_points), indexing="ij"
    )
    first, second = first.reshape(-1), second.reshape(-1)
    distances = s4.pairwise_distances(points, first, points, second)
    keep = (first != second) & (distances >= low) & (distances <= high)
    return set(zip(first[keep].tolist(), second[keep].tolist(), strict=True))


def cube_offsets(cell_size, low, high):
    """Offsets of the shell, by filtering the whole cube around it."""
    reach = int(high // cell_size) + 2
    steps = torch.arange(-reach, reach + 1)
    offsets = torch.cartesian_prod(steps, steps, steps)
    magnitudes = offsets.abs().double()
    slack = 1e-3 * cell_size
    min_distances = ((magnitudes - 1).clamp(min=0) * cell_size).norm(dim=1)
    max_distances = ((magnitudes + 1) * cell_size).norm(dim=1)
    keep = (min_distances <= high + slack) & (max_distances >= low - slack)
    return set(map(tuple, offsets[keep].tolist()))


@pytest.mark.parametrize(
    ("cell_size", "low", "high"),
    [(1.0, -1.0, 0.5), (1.0, 5.0, 5.5), (0.3, 2.0, 2.1), (0.05, 0.0, 0.4)],
)
def test_shell_offsets_enumerate_the_shell(cell_size, low, high):
    """Only the offsets of the shell are produced, each of them once."""
    offsets = s4.shell_offsets(cell_size, low, high)
    as_set = set(map(tuple, offsets.tolist()))
    assert len(as_set) == len(offsets)
    assert as_set == cube_offsets(cell_size, low, high)


@given(
    n_points=st.integers(min_value=0, max_value=60),
    low=st.floats(min_value=-0.2, max_value=1.5),
    width=st.floats(min_value=0.0, max_value=0.4),
    cell_size=st.floats(min_value=0.002, max_value=0.5),
    seed=st.integers(min_value=0, max_value=1000),
)
@settings(deadline=None, max_examples=40)
def test_cell_tree_pairs(n_points, low, width, cell_size, seed):
    """The cell tree finds exactly the pairs in a distance window."""
    points = random_points(n_points, seed=seed)
    high = low + width
    tree = s4.CellTree(points, cell_size)
    assert tree.finest_cell_size >= cell_size
    assert tree.cell_size(tree.depth) == tree.finest_cell_size

    first, second, distances = tree.pairs(low, high)
    found = set(zip(first.tolist(), second.tolist(), strict=True))
    assert len(found) == len(first)
    assert found == window_pairs(points, low, high)
    assert bool((distances >= low).all())
    assert bool((distances <= high).all())


def test_cell_tree_is_output_sensitive():
    """The candidate pairs are a small multiple of the pairs found."""
    points = random_points(3000)
    delta, distance = 0.002, 0.3
    tree = s4.CellTree(points, delta)

    first, _ = tree.candidate_pairs(distance - delta, distance + delta)
    found, _, _ = tree.pairs(distance - delta, distance + delta)
    assert len(found) > 0
    assert len(first) <= 8 * len(found)
    assert len(first) < 0.02 * len(points) ** 2

    index = s4.PairIndex(points, delta)
    assert index.tree.finest_cell_size == delta
    pairs = index.pairs(distance)
    expected = exhaustive_pairs(points, distance, delta)
    assert as_pair_set(pairs) == expected


def test_cell_tree_errors():
    """Cells must have a positive size."""
    with pytest.raises(ValueError, match="positive"):
        s4.CellTree(random_points(10), 0.0)

    tree = s4.CellTree(random_points(1), 0.1)
    first, second = tree.candidate_pairs(0.0, 1.0)
    assert len(first) == len(second) == 0
