"""Utils for the tests."""

import math

import torch

import super4pcs as s4


def random_points(n_points: int, seed: int = 0, scale: float = 1.0):
    """Points drawn uniformly in the cube [0, scale]^3."""
    generator = torch.Generator().manual_seed(seed)
    return scale * torch.rand(
        n_points, 3, generator=generator, dtype=s4.float_dtype
    )


def rotation_z(angle_deg: float):
    """Rotation matrix of a given angle about the z axis."""
    angle = math.radians(angle_deg)
    c, s = math.cos(angle), math.sin(angle)
    return torch.tensor(
        [[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]], dtype=s4.float_dtype
    )


def rigid_motion(angle_deg: float, translation):
    """Rigid transform rotating about z then translating."""
    return s4.RigidTransform(
        rotation=rotation_z(angle_deg),
        translation=torch.tensor(translation, dtype=s4.float_dtype),
    )


def rotation_error(rotation_a, rotation_b) -> float:
    """Angle (radians) between two rotations, accurate for small angles."""
    difference = (rotation_a.double() - rotation_b.double()).norm()
    return float(difference) / math.sqrt(2)


def exhaustive_pairs(points, distance: float, delta: float) -> set:
    """Ordered pairs at distance up to delta, by checking all of them."""
    n_points = len(points)
    first, second = torch.meshgrid(
        torch.arange(n_points), torch.arange(n_points), indexing="ij"
    )
    first, second = first.reshape(-1), second.reshape(-1)
    distinct = first != second
    first, second = first[distinct], second[distinct]
    distances = s4.pairwise_distances(points, first, points, second)
    keep = (distances >= distance - delta) & (distances <= distance + delta)
    return set(zip(first[keep].tolist(), second[keep].tolist(), strict=True))


def as_pair_set(pairs) -> set:
    """Pairs of a PairSet as a set of tuples."""
    return set(
        zip(pairs.first.tolist(), pairs.second.tolist(), strict=True)
    )
