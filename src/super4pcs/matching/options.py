"""Options of the 4-points congruent sets matchers."""

import math
from typing import NamedTuple

from beartype import beartype

from ..errors import ConfigurationError
from ..types import Number

# Probability of missing the right base that we accept when deriving the
# number of iterations from the overlap estimate.
SMALL_ERROR = 1e-5

# Minimum number of iterations of the matching loop.
MIN_NUMBER_OF_TRIALS = 4


@beartype
class MatchOptions(NamedTuple):
    """Parameters of the matching.

    Parameters
    ----------
    delta : float, default=0.01
        Distance tolerance, in the units of the point clouds. Two points are
        considered as matching when they are closer than ``delta``.
    overlap_estimate : float, default=0.2
        Expected fraction of the reference that overlaps the target, in
        (0, 1]. It bounds the size of the bases and the number of iterations.
    overlap_threshold : float or None, default=None
        The matching stops as soon as a transform with an overlap score
        greater than or equal to this value is found. None never stops early.
    sample_size : int, default=200
        Number of points sampled in each cloud before matching.
    max_normal_angle_deg : float, default=90.0
        Maximum angle (degrees) between the normals of matched points. Only
        used when both clouds have normals.
    max_color_distance : float, default=inf
        Maximum euclidean distance between the colors of matched points.
        Only used when both clouds have colors; inf disables the test.
    max_time_seconds : float, default=inf
        Time budget of the matching.
    use_super4pcs : bool, default=True
        Use the smart indexing of Super4PCS to extract congruent sets. If
        False, the quadratic 4PCS extraction is used.
    n_workers : int, default=1
        Number of threads running the matching loop concurrently.
    max_iterations : int or None, default=None
        Number of bases to try. None derives it from ``overlap_estimate``.
    max_base_attempts : int, default=20
        Number of consecutive failed base selections after which the
        matching stops.
    n_base_trials : int, default=1000
        Number of random triangles drawn to select a base.
    min_base_spread : float, default=0.3
        Points of a base must be further apart than this fraction of the
        maximum base diameter, in (0, 1).
    max_base_planarity_error : float or None, default=None
        Maximum distance between the diagonals of a base. None accepts the
        most planar base found.
    max_angle_deg : float or None, default=None
        Candidate transforms rotating by more than this angle are rejected.
    max_translation_distance : float or None, default=None
        Candidate transforms translating the reference centroid by more than
        this distance are rejected.
    min_correspondence_spread : float or None, default=None
        Correspondences whose base points lie within this distance of a
        line are rejected, as the rotation about the line is then poorly
        determined. None uses ``delta``.

    Fields of a wrong type raise ``InputTypeError`` when the options are
    built. Records derived with ``_replace`` skip this check and are
    checked by ``validate_options``.
    """

    delta: Number = 0.01
    overlap_estimate: Number = 0.2
    overlap_threshold: Number | None = None
    sample_size: int = 200
    max_normal_angle_deg: Number = 90.0
    max_color_distance: Number = math.inf
    max_time_seconds: Number = math.inf
    use_super4pcs: bool = True
    n_workers: int = 1
    max_iterations: int | None = None
    max_base_attempts: int = 20
    n_base_trials: int = 1000
    min_base_spread: Number = 0.3
    max_base_planarity_error: Number | None = None
    max_angle_deg: Number | None = None
    max_translation_distance: Number | None = None
    min_correspondence_spread: Number | None = None


def _check(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigurationError(message)


def _is_number(value) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def validate_options(options: MatchOptions) -> None:
    """Check the options before any work is done.

    Raises
    ------
    ConfigurationError
        If a field has an invalid type or value. Types are checked here
        for the records that did not go through the constructor, such as
        the results of ``MatchOptions._replace``.
    """
    if not isinstance(options, MatchOptions):
        msg = f"Expected MatchOptions, got {type(options).__name__}"
        raise ConfigurationError(msg)

    number_fields = [
        "delta",
        "overlap_estimate",
        "max_normal_angle_deg",
        "max_color_distance",
        "max_time_seconds",
        "min_base_spread",
    ]
    for name in number_fields:
        value = getattr(options, name)
        _check(_is_number(value), f"{name} must be a number, got {value!r}")
        _check(not math.isnan(value), f"{name} must not be NaN")

    optional_number_fields = [
        "overlap_threshold",
        "max_base_planarity_error",
        "max_angle_deg",
        "max_translation_distance",
        "min_correspondence_spread",
    ]
    for name in optional_number_fields:
        value = getattr(options, name)
        _check(
            value is None or (_is_number(value) and not math.isnan(value)),
            f"{name} must be a number or None, got {value!r}",
        )

    integer_fields = [
        "sample_size",
        "n_workers",
        "max_base_attempts",
        "n_base_trials",
    ]
    for name in integer_fields:
        value = getattr(options, name)
        _check(
            isinstance(value, int) and not isinstance(value, bool),
            f"{name} must be an integer, got {value!r}",
        )
        _check(value > 0, f"{name} must be positive, got {value}")

    _check(
        isinstance(options.use_super4pcs, bool),
        f"use_super4pcs must be a boolean, got {options.use_super4pcs!r}",
    )

    _check(
        0 < options.delta < math.inf,
        f"delta must be positive and finite, got {options.delta}",
    )
    _check(
        0 < options.overlap_estimate <= 1,
        f"overlap_estimate must be in (0, 1], got {options.overlap_estimate}",
    )
    if options.overlap_threshold is not None:
        _check(
            0 < options.overlap_threshold <= 1,
            "overlap_threshold must be in (0, 1] or None, got"
            + f" {options.overlap_threshold}",
        )
    _check(
        0 < options.max_normal_angle_deg <= 180,
        "max_normal_angle_deg must be in (0, 180], got"
        + f" {options.max_normal_angle_deg}",
    )
    _check(
        options.max_color_distance > 0,
        "max_color_distance must be positive, got"
        + f" {options.max_color_distance}",
    )
    _check(
        options.max_time_seconds > 0,
        f"max_time_seconds must be positive, got {options.max_time_seconds}",
    )
    _check(
        0 < options.min_base_spread < 1,
        f"min_base_spread must be in (0, 1), got {options.min_base_spread}",
    )
    if options.max_iterations is not None:
        _check(
            isinstance(options.max_iterations, int)
            and not isinstance(options.max_iterations, bool)
            and options.max_iterations > 0,
            "max_iterations must be a positive integer or None, got"
            + f" {options.max_iterations!r}",
        )
    if options.max_base_planarity_error is not None:
        _check(
            options.max_base_planarity_error >= 0,
            "max_base_planarity_error must be non-negative, got"
            + f" {options.max_base_planarity_error}",
        )
    if options.max_angle_deg is not None:
        _check(
            0 < options.max_angle_deg <= 180,
            f"max_angle_deg must be in (0, 180], got {options.max_angle_deg}",
        )
    if options.max_translation_distance is not None:
        _check(
            options.max_translation_distance > 0,
            "max_translation_distance must be positive, got"
            + f" {options.max_translation_distance}",
        )
    if options.min_correspondence_spread is not None:
        _check(
            options.min_correspondence_spread >= 0,
            "min_correspondence_spread must be non-negative, got"
            + f" {options.min_correspondence_spread}",
        )


def number_of_trials(options: MatchOptions) -> int:
    """Number of bases to try.

    Without an explicit ``max_iterations``, this is the RANSAC estimate of
    the number of draws needed to pick, with probability ``1 - SMALL_ERROR``,
    four reference points that all lie in the overlap.
    """
    if options.max_iterations is not None:
        return options.max_iterations

    inlier_probability = options.overlap_estimate**4
    if inlier_probability >= 1:
        return MIN_NUMBER_OF_TRIALS
    trials = math.log(SMALL_ERROR) / math.log(1 - inlier_probability)
    return max(MIN_NUMBER_OF_TRIALS, math.ceil(trials))
