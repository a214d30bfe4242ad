"""Closest points between segments.

Used to read the intersection invariants of a 4-points base: for two
diagonals ``[p0, p1]`` and ``[q0, q1]``, the parameters ``s`` and ``t`` of the
closest points ``p0 + s (p1 - p0)`` and ``q0 + t (q1 - q0)`` are preserved by
rigid motions. For a planar base whose diagonals cross, they are the
intersection ratios and the distance between the closest points is zero.
"""

import torch

from ..types import TranslationVector

_EPSILON = 1e-12


def _clamp01(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def closest_points_on_segments(
    p0: TranslationVector,
    p1: TranslationVector,
    q0: TranslationVector,
    q1: TranslationVector,
) -> tuple[float, float, float]:
    """Parameters and distance of the closest points of two segments.

    Returns
    -------
    tuple[float, float, float]
        ``(s, t, distance)`` with ``s, t`` in [0, 1].
    """
    u = p1 - p0
    v = q1 - q0
    w = p0 - q0
    a = float(u @ u)
    b = float(u @ v)
    c = float(v @ v)
    d = float(u @ w)
    e = float(v @ w)
    denominator = a * c - b * b

    if a <= _EPSILON and c <= _EPSILON:
        s, t = 0.0, 0.0
    elif a <= _EPSILON:
        s, t = 0.0, _clamp01(e / c)
    elif c <= _EPSILON:
        s, t = _clamp01(-d / a), 0.0
    else:
        if denominator <= _EPSILON * a * c:
            # Parallel segments: any s works, pick the start of the first one
            s = 0.0
        else:
            s = _clamp01((b * e - c * d) / denominator)
        t = (b * s + e) / c
        # t out of range: clamp it and recompute s for the clamped value
        if t < 0.0:
            t = 0.0
            s = _clamp01(-d / a)
        elif t > 1.0:
            t = 1.0
            s = _clamp01((b - d) / a)

    distance = float(torch.linalg.norm(w + s * u - t * v))
    return s, t, distance
