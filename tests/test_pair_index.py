"""Tests for the extraction of pairs at a given distance."""

import threading

import pytest
import torch
from hypothesis import given, settings
from hypothesis import strategies as st

import super4pcs as s4

from .utils import as_pair_set, exhaustive_pairs, random_points


@given(
    n_points=st.integers(min_value=2, max_value=60),
    distance=st.floats(min_value=0.0, max_value=1.2),
    delta=st.floats(min_value=0.005, max_value=0.3),
    scale=st.sampled_from([0.1, 1.0, 20.0]),
    seed=st.integers(min_value=0, max_value=1000),
)
@settings(deadline=None, max_examples=40)
def test_pair_index_exactness(n_points, distance, delta, scale, seed):
    """The pair index returns exactly the pairs of the exhaustive search."""
    points = random_points(n_points, seed=seed, scale=scale)
    distance, delta = distance * scale, delta * scale

    expected = exhaustive_pairs(points, distance, delta)

    index = s4.PairIndex(points, delta)
    pairs = index.pairs(distance)
    assert as_pair_set(pairs) == expected
    # No duplicates
    assert pairs.n_pairs == len(expected)
    assert bool((pairs.distances >= distance - delta).all())
    assert bool((pairs.distances <= distance + delta).all())

    brute_force = s4.BruteForcePairs(points, delta)
    assert as_pair_set(brute_force.pairs(distance)) == expected


def test_pairs_are_ordered_both_ways():
    """Both (i, j) and (j, i) are returned."""
    points = random_points(40)
    pairs = as_pair_set(s4.PairIndex(points, 0.02).pairs(0.5))
    assert len(pairs) > 0
    assert all((j, i) in pairs for i, j in pairs)
    assert all(i != j for i, j in pairs)


def test_pair_cache():
    """Cached windows never change the answer."""
    points = random_points(80, seed=4)
    delta = 0.02
    cache = s4.PairCache()
    index = s4.PairIndex(points, delta, cache=cache)

    # Distances quantized to the same key share a cache entry
    distances = [0.400, 0.402, 0.404, 0.398, 0.700]
    for distance in distances:
        pairs = index.pairs(distance)
        assert as_pair_set(pairs) == exhaustive_pairs(points, distance, delta)

    assert len(cache) < len(distances)
    assert cache.hits > 0
    assert cache.misses == len(cache)

    # Sharing the cache between indexes of the same points
    other = s4.PairIndex(points, delta, cache=cache)
    assert other.cache is cache
    assert as_pair_set(other.pairs(0.401)) == exhaustive_pairs(
        points, 0.401, delta
    )


def test_pair_cache_concurrent_access():
    """Concurrent lookups all see the same entries."""
    points = random_points(100, seed=5)
    index = s4.PairIndex(points, 0.01)
    expected = exhaustive_pairs(points, 0.3, 0.01)
    results = []

    def lookup():
        results.append(as_pair_set(index.pairs(0.3)))

    threads = [threading.Thread(target=lookup) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 8
    assert all(result == expected for result in results)
    assert len(index.cache) == 1


def test_iter_pairs():
    """Lazy iteration over the pairs."""
    points = random_points(30)
    index = s4.PairIndex(points, 0.05)
    iterator = index.iter_pairs(0.5)
    pairs = list(iterator)
    assert {(p.first, p.second) for p in pairs} == exhaustive_pairs(
        points, 0.5, 0.05
    )
    assert all(abs(p.distance - 0.5) <= 0.05 + 1e-6 for p in pairs)


@given(
    n_points=st.integers(min_value=4, max_value=50),
    ratio1=st.floats(min_value=0.0, max_value=1.0),
    ratio2=st.floats(min_value=0.0, max_value=1.0),
    radius=st.floats(min_value=0.01, max_value=0.2),
    seed=st.integers(min_value=0, max_value=1000),
)
@settings(deadline=None, max_examples=40)
def test_match_interpolated(n_points, ratio1, ratio2, radius, seed):
    """Interpolated points are matched without misses."""
    points = random_points(n_points, seed=seed)
    delta = 0.05
    index = s4.PairIndex(points, delta)
    pairs1 = index.pairs(0.4)
    pairs2 = index.pairs(0.6)

    matches1, matches2 = index.match_interpolated(
        pairs1, ratio1, pairs2, ratio2, radius
    )
    found = set(zip(matches1.tolist(), matches2.tolist(), strict=True))
    assert len(found) == len(matches1)

    # Exhaustive comparison of all the combinations
    points1 = pairs1.interpolate(points, ratio1)
    points2 = pairs2.interpolate(points, ratio2)
    differences = points1.double()[:, None, :] - points2.double()[None, :, :]
    distances = (differences**2).sum(dim=-1).sqrt()
    certain = {
        tuple(match)
        for match in torch.nonzero(distances <= radius - 1e-5).tolist()
    }
    possible = {
        tuple(match)
        for match in torch.nonzero(distances <= radius + 1e-5).tolist()
    }
    assert certain <= found <= possible

    brute_force = s4.BruteForcePairs(points, delta)
    matches1, matches2 = brute_force.match_interpolated(
        pairs1, ratio1, pairs2, ratio2, radius
    )
    found = set(zip(matches1.tolist(), matches2.tolist(), strict=True))
    assert certain <= found <= possible


def test_pair_sources_errors():
    """Tolerances must be positive."""
    points = random_points(10)
    with pytest.raises(ValueError):
        s4.PairIndex(points, 0.0)
    with pytest.raises(ValueError):
        s4.BruteForcePairs(points, -1.0)

    # Too few points to make pairs
    pairs = s4.BruteForcePairs(points[:1], 0.1).pairs(0.5)
    assert pairs.n_pairs == 0
    pairs = s4.PairIndex(points[:1], 0.1).pairs(0.5)
    assert pairs.n_pairs == 0
