"""Test the registration task."""

import pytest
import torch

import super4pcs as s4
from super4pcs.errors import (
    DegenerateInputError,
    InputStructureError,
    NotFittedError,
)

from .utils import random_points, rigid_motion, rotation_error

list_matchers = [s4.MatchSuper4PCS, s4.Match4PCS]

scenario_options = s4.MatchOptions(
    delta=0.01,
    overlap_estimate=0.2,
    overlap_threshold=0.9,
    sample_size=200,
    max_time_seconds=30,
)


@pytest.mark.parametrize("matcher_class", list_matchers)
def test_rigid_recovery(matcher_class):
    """A rotated and translated copy of a cloud is registered exactly.

    Unit cube sampled with 500 points, rotated by 30 degrees about z and
    translated by (1, 0, 0).
    """
    reference = random_points(500, seed=0)
    motion = rigid_motion(30, [1.0, 0.0, 0.0])
    target = motion.apply(reference)

    matcher = matcher_class(scenario_options)
    matcher.fit(reference=reference, target=target, seed=0)

    assert matcher.score_ >= 0.9
    assert rotation_error(matcher.transform_.rotation, motion.rotation) < 1e-3
    assert torch.allclose(
        matcher.transform_.translation, motion.translation, atol=1e-2
    )
    assert matcher.elapsed_time_ < 30 + 10
    assert matcher.n_iterations_ >= 1
    assert len(matcher.score_history_) <= matcher.n_iterations_

    aligned = matcher.transform(source=reference)
    assert torch.allclose(aligned, target, atol=1e-3)


def test_identity_recovery():
    """A cloud registered to itself gives the identity and a full score."""
    points = random_points(300, seed=1)
    reference = s4.PointCloud(points)

    result = s4.compute_transformation(
        reference, reference.copy(), scenario_options, seed=1
    )
    assert result.score == pytest.approx(1.0)
    assert rotation_error(result.transform.rotation, torch.eye(3)) < 1e-3
    assert torch.allclose(
        result.transform.translation, torch.zeros(3), atol=1e-3
    )


def test_registration_with_normals_and_colors():
    """Point clouds with attributes are registered and moved together."""
    points = random_points(400, seed=2)
    normals = torch.nn.functional.normalize(
        random_points(400, seed=3) + 0.1, dim=1
    )
    colors = random_points(400, seed=4)
    reference = s4.PointCloud(points, normals=normals, colors=colors)

    motion = rigid_motion(-50, [0.2, 0.3, -0.1])
    target = reference.transform(motion)

    options = scenario_options._replace(
        max_normal_angle_deg=20.0, max_color_distance=0.05
    )
    matcher = s4.MatchSuper4PCS(options)
    aligned = matcher.fit_transform(
        reference=reference, target=target, seed=2
    )

    assert isinstance(aligned, s4.PointCloud)
    assert matcher.score_ >= 0.9
    assert torch.allclose(aligned.points, target.points, atol=1e-3)
    assert torch.allclose(aligned.normals, target.normals, atol=1e-3)
    assert torch.equal(aligned.colors, colors)


def test_compute_transformation_variants():
    """The variant is selected by the options."""
    reference = random_points(200, seed=5)
    motion = rigid_motion(15, [0.0, 0.5, 0.0])
    target = motion.apply(reference)

    for use_super4pcs in [True, False]:
        options = scenario_options._replace(use_super4pcs=use_super4pcs)
        result = s4.compute_transformation(
            reference, target, options, seed=3
        )
        assert isinstance(result, s4.MatchResult)
        assert result.score >= 0.9
        assert rotation_error(result.transform.rotation, motion.rotation) < (
            1e-3
        )

    matcher = s4.Match4PCS(scenario_options)
    result = matcher.compute_transformation(reference, target, seed=3)
    assert result is matcher.result_
    assert result.transform is matcher.transform_


def test_monotonic_best_score():
    """The best score never decreases along the iterations."""
    reference = random_points(300, seed=6)
    # Partial overlap: only a part of the target matches the reference
    target = torch.cat(
        [
            rigid_motion(70, [0.3, 0.0, 0.0]).apply(reference[:150]),
            random_points(150, seed=7) + 3,
        ]
    )
    options = s4.MatchOptions(
        delta=0.02,
        overlap_estimate=0.5,
        sample_size=100,
        max_iterations=40,
    )
    matcher = s4.MatchSuper4PCS(options).fit(
        reference=reference, target=target, seed=4
    )

    history = matcher.score_history_
    assert len(history) > 0
    assert all(a <= b for a, b in zip(history[:-1], history[1:], strict=True))
    assert history[-1] == matcher.score_
    assert 0 <= matcher.score_ <= 1
    assert matcher.n_iterations_ <= 40


def test_termination_on_time():
    """The matching returns shortly after the time budget."""
    reference = random_points(2000, seed=8)
    target = random_points(2000, seed=9)
    options = s4.MatchOptions(
        delta=0.01,
        overlap_estimate=0.2,
        sample_size=500,
        max_time_seconds=0.5,
    )
    matcher = s4.MatchSuper4PCS(options)
    matcher.fit(reference=reference, target=target, seed=5)

    assert matcher.elapsed_time_ < 0.5 + 5
    assert 0 <= matcher.score_ < 0.9


def test_degenerate_input():
    """Clouds with less than 4 points are rejected."""
    matcher = s4.MatchSuper4PCS()
    with pytest.raises(DegenerateInputError):
        matcher.fit(reference=random_points(3), target=random_points(100))
    with pytest.raises(DegenerateInputError):
        matcher.fit(reference=random_points(100), target=random_points(2))

    # Invalid normals are removed before the check
    points = random_points(5)
    normals = torch.zeros(5, 3)
    normals[0, 0] = 1.0
    with pytest.warns(UserWarning), pytest.raises(DegenerateInputError):
        matcher.fit(
            reference=s4.PointCloud(points, normals=normals),
            target=random_points(100),
        )


def test_no_alignment_is_not_an_error():
    """Without any valid base, the identity is returned with a null score."""
    t = torch.linspace(0, 1, 100)[:, None]
    line = t * torch.tensor([[1.0, 1.0, 0.0]])
    options = s4.MatchOptions(overlap_estimate=0.5, max_base_attempts=5)

    matcher = s4.MatchSuper4PCS(options)
    matcher.fit(reference=line, target=random_points(100), seed=0)

    assert matcher.score_ == 0.0
    assert torch.equal(matcher.transform_.matrix, torch.eye(4))
    assert matcher.n_iterations_ == 5


@pytest.mark.parametrize("n_workers", [2, 4])
def test_several_workers(n_workers):
    """Workers share the best result."""
    reference = random_points(300, seed=10)
    motion = rigid_motion(-30, [0.0, 0.0, 1.0])
    target = motion.apply(reference)

    options = scenario_options._replace(n_workers=n_workers)
    matcher = s4.MatchSuper4PCS(options)
    matcher.fit(reference=reference, target=target, seed=6)

    assert matcher.score_ >= 0.9
    assert rotation_error(matcher.transform_.rotation, motion.rotation) < 1e-3
    history = matcher.score_history_
    assert all(a <= b for a, b in zip(history[:-1], history[1:], strict=True))


def test_reproducibility():
    """The same seed gives the same result, the generator is not consumed."""
    reference = random_points(200, seed=11)
    target = rigid_motion(10, [0.1, 0.1, 0.1]).apply(reference)
    options = scenario_options._replace(overlap_threshold=None)
    options = options._replace(max_iterations=20)

    first = s4.Match4PCS(options).fit(
        reference=reference, target=target, seed=7
    )
    second = s4.Match4PCS(options).fit(
        reference=reference, target=target, seed=7
    )
    assert first.score_ == second.score_
    assert torch.equal(first.transform_.matrix, second.transform_.matrix)

    generator = torch.Generator().manual_seed(7)
    state = generator.get_state()
    s4.Match4PCS(options).fit(
        reference=reference, target=target, generator=generator
    )
    assert torch.equal(generator.get_state(), state)


def test_errors():
    """Errors of the estimator interface."""
    matcher = s4.MatchSuper4PCS()
    with pytest.raises(NotFittedError):
        matcher.transform(source=random_points(10))

    with pytest.raises(InputStructureError):
        matcher.fit(
            reference=random_points(10),
            target=random_points(10),
            seed=0,
            generator=torch.Generator(),
        )

    with pytest.raises(s4.InputTypeError):
        matcher.fit(reference=torch.zeros(10, 2), target=random_points(10))
