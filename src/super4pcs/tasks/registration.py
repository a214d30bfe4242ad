"""Global rigid registration of two point clouds with 4-points congruent sets.

The matchers follow the usual ``fit`` / ``transform`` estimator interface:

```python
import super4pcs as s4

matcher = s4.MatchSuper4PCS(s4.MatchOptions(delta=0.01, overlap_threshold=0.9))
matcher.fit(reference=reference, target=target, seed=0)
aligned = matcher.transform(source=reference)
print(matcher.score_, matcher.transform_.matrix)
```

Each iteration of the matching draws a base in the sampled reference,
enumerates its congruent sets in the sampled target, and scores the rigid
transform of each of them. The best transform is kept. Iterations run in
``n_workers`` threads that share the indexes and the best result.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import NamedTuple

import torch

from ..data import PointCloud
from ..errors import (
    DegenerateBaseError,
    DegenerateInputError,
    NotFittedError,
    SingularCorrespondenceError,
)
from ..geometry import RigidTransform
from ..input_validation import convert_inputs, no_more_than_one, typecheck
from ..matching import (
    BaseSelector,
    BruteForceCongruentSetFinder,
    CongruentSetFinder,
    MatchOptions,
    PairCache,
    SmartCongruentSetFinder,
    TransformEstimator,
    Verifier,
    number_of_trials,
    validate_options,
)
from ..neighborhoods import NeighborIndex
from ..types import Points3d

logger = logging.getLogger(__name__)

# Minimum number of points of a cloud to be registered.
MIN_POINTS = 4


class MatchResult(NamedTuple):
    """Outcome of a matching.

    Parameters
    ----------
    transform
        The best transform found, mapping the reference onto the target. The
        identity if no candidate was ever scored.
    score
        Its LCP score, in [0, 1].
    elapsed_time
        Duration of the matching, in seconds.
    n_iterations
        Number of bases drawn.
    score_history
        Best score after each completed iteration, non-decreasing.
    """

    transform: RigidTransform
    score: float
    elapsed_time: float
    n_iterations: int
    score_history: list[float]


class BestResult:
    """Best transform found so far, shared between the workers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.transform: RigidTransform | None = None
        self.score = 0.0
        self.history: list[float] = []

    def offer(self, transform: RigidTransform, score: float) -> bool:
        """Keep the transform if its score is strictly greater than the best.

        Returns
        -------
        bool
            Whether the transform is the new best.
        """
        with self._lock:
            if score > self.score:
                self.transform = transform
                self.score = score
                return True
            return False

    def end_iteration(self) -> None:
        with self._lock:
            self.history.append(self.score)


class _LoopControl:
    """Iteration budget and termination flag, shared between the workers."""

    def __init__(self, max_iterations: int, max_base_attempts: int) -> None:
        self._lock = threading.Lock()
        self.max_iterations = max_iterations
        self.max_base_attempts = max_base_attempts
        self.n_iterations = 0
        self.n_failed_bases = 0
        self.stop_reason: str | None = None

    @property
    def stopped(self) -> bool:
        return self.stop_reason is not None

    def stop(self, reason: str) -> None:
        with self._lock:
            if self.stop_reason is None:
                self.stop_reason = reason

    def start_iteration(self) -> bool:
        with self._lock:
            if self.stop_reason is not None:
                return False
            if self.n_iterations >= self.max_iterations:
                self.stop_reason = "iteration budget exhausted"
                return False
            self.n_iterations += 1
            return True

    def base_failed(self) -> None:
        with self._lock:
            self.n_failed_bases += 1
            if (
                self.n_failed_bases >= self.max_base_attempts
                and self.stop_reason is None
            ):
                self.stop_reason = (
                    f"{self.n_failed_bases} consecutive degenerate bases"
                )

    def base_succeeded(self) -> None:
        with self._lock:
            self.n_failed_bases = 0


class Match4PCSBase:
    """Base class of the 4-points congruent sets matchers.

    Subclasses choose how congruent sets are extracted by implementing
    ``_make_finder``.
    """

    @typecheck
    def __init__(self, options: MatchOptions | None = None) -> None:
        """Initialize the matcher.

        Parameters
        ----------
        options
            The matching options. Defaults to ``MatchOptions()``.

        Raises
        ------
        ConfigurationError
            If the options are not valid.
        """
        if options is None:
            options = MatchOptions()
        validate_options(options)
        self.options = options

    def _make_finder(
        self,
        target: PointCloud,
        cache: PairCache,
    ) -> CongruentSetFinder:
        raise NotImplementedError

    @staticmethod
    def _prepare(cloud: PointCloud | torch.Tensor, name: str) -> PointCloud:
        if not isinstance(cloud, PointCloud):
            cloud = PointCloud(cloud)
        if cloud.n_points < MIN_POINTS:
            msg = (
                f"The {name} cloud must have at least {MIN_POINTS} points,"
                + f" got {cloud.n_points}"
            )
            raise DegenerateInputError(msg)
        if cloud.has_normals:
            cloud = cloud.clean_normals()
            if cloud.n_points < MIN_POINTS:
                msg = (
                    f"The {name} cloud has less than {MIN_POINTS} points with"
                    + " valid normals"
                )
                raise DegenerateInputError(msg)
        return cloud

    def _run_worker(
        self,
        *,
        generator: torch.Generator,
        reference: PointCloud,
        finder: CongruentSetFinder,
        estimator: TransformEstimator,
        verifier: Verifier,
        control: _LoopControl,
        best: BestResult,
        deadline: float,
    ) -> None:
        options = self.options
        selector = BaseSelector(reference.points, options, generator)

        while True:
            if time.perf_counter() >= deadline:
                control.stop("time budget exhausted")
            if not control.start_iteration():
                return

            try:
                base = selector.select()
            except DegenerateBaseError as error:
                logger.debug("Base selection failed: %s", error)
                control.base_failed()
                continue
            control.base_succeeded()

            n_candidates = 0
            for congruent_set in finder.find(
                base, reference.points, reference.normals
            ):
                if control.stopped or time.perf_counter() >= deadline:
                    break
                n_candidates += 1

                try:
                    transform = estimator.estimate(
                        reference.points[congruent_set.base_indices],
                        finder.points[congruent_set.target_indices],
                    )
                except SingularCorrespondenceError as error:
                    logger.debug("Candidate skipped: %s", error)
                    continue

                score = verifier.score(transform, terminate_below=best.score)
                if best.offer(transform, score):
                    logger.info("New best score %.4f", score)

                threshold = options.overlap_threshold
                if threshold is not None and best.score >= threshold:
                    control.stop(
                        f"score {best.score:.4f} reached the threshold"
                    )
                    break

            logger.debug("Scored %d candidates", n_candidates)
            best.end_iteration()

    def _match(
        self,
        reference: PointCloud,
        target: PointCloud,
        generator: torch.Generator,
    ) -> MatchResult:
        options = self.options
        start = time.perf_counter()
        deadline = start + options.max_time_seconds

        reference = self._prepare(reference, "reference")
        target = self._prepare(target, "target")

        sampled_reference = reference.subsample(
            n_points=options.sample_size, generator=generator
        )
        sampled_target = target.subsample(
            n_points=options.sample_size, generator=generator
        )
        logger.debug(
            "Matching %d reference points to %d target points",
            sampled_reference.n_points,
            sampled_target.n_points,
        )

        target_index = NeighborIndex(target.points)
        verifier = Verifier(sampled_reference, target_index, target, options)
        estimator = TransformEstimator(
            options, reference_centroid=sampled_reference.centroid
        )
        cache = PairCache()
        finder = self._make_finder(sampled_target, cache)

        control = _LoopControl(
            max_iterations=number_of_trials(options),
            max_base_attempts=options.max_base_attempts,
        )
        best = BestResult()

        seeds = torch.randint(
            0, 2**62, (options.n_workers,), generator=generator
        ).tolist()
        worker_generators = [torch.Generator().manual_seed(s) for s in seeds]

        def work(worker_generator: torch.Generator) -> None:
            self._run_worker(
                generator=worker_generator,
                reference=sampled_reference,
                finder=finder,
                estimator=estimator,
                verifier=verifier,
                control=control,
                best=best,
                deadline=deadline,
            )

        if options.n_workers == 1:
            work(worker_generators[0])
        else:
            with ThreadPoolExecutor(max_workers=options.n_workers) as pool:
                futures = [pool.submit(work, g) for g in worker_generators]
                for future in futures:
                    future.result()

        elapsed_time = time.perf_counter() - start
        logger.info(
            "Matching stopped after %d iterations (%s), best score %.4f in"
            + " %.2fs",
            control.n_iterations,
            control.stop_reason,
            best.score,
            elapsed_time,
        )

        transform = best.transform
        if transform is None:
            transform = RigidTransform.identity()
        return MatchResult(
            transform=transform,
            score=best.score,
            elapsed_time=elapsed_time,
            n_iterations=control.n_iterations,
            score_history=list(best.history),
        )

    @convert_inputs
    @typecheck
    @no_more_than_one(["generator", "seed"])
    def fit(
        self,
        *,
        reference: PointCloud | Points3d,
        target: PointCloud | Points3d,
        generator: torch.Generator | None = None,
        seed: int | None = None,
    ) -> Match4PCSBase:
        """Find the rigid transform aligning the reference onto the target.

        After calling this method, the transform can be accessed with the
        ``transform_`` attribute and its LCP score with ``score_``. The
        ``elapsed_time_``, ``n_iterations_`` and ``score_history_``
        attributes describe the run, ``result_`` gathers all of them.

        Parameters
        ----------
        reference
            The cloud to move, a PointCloud or a (n, 3) array of positions.
        target
            The cloud to align to.
        generator
            The random source. Not modified by the matching, which draws
            from a generator seeded from it.
        seed
            A seed for the random source, alternative to ``generator``.

        Raises
        ------
        DegenerateInputError
            If one of the clouds has less than 4 points.
        InputStructureError
            If both generator and seed are given.

        Returns
        -------
        Match4PCSBase
            self
        """
        random_source = torch.Generator()
        if generator is not None:
            random_source.set_state(generator.get_state())
        elif seed is not None:
            random_source.manual_seed(seed)
        else:
            random_source.seed()

        result = self._match(reference, target, random_source)

        self.result_ = result
        self.transform_ = result.transform
        self.score_ = result.score
        self.elapsed_time_ = result.elapsed_time
        self.n_iterations_ = result.n_iterations
        self.score_history_ = result.score_history
        return self

    @convert_inputs
    @typecheck
    def transform(
        self, *, source: PointCloud | Points3d
    ) -> PointCloud | Points3d:
        """Apply the fitted transform to a cloud.

        Parameters
        ----------
        source
            The cloud to move, a PointCloud or a (n, 3) array of positions.

        Raises
        ------
        NotFittedError
            If the matcher has not been fitted.

        Returns
        -------
        PointCloud | Points3d
            The moved copy, of the same kind as the source.
        """
        if not hasattr(self, "transform_"):
            msg = "The matcher must be fitted before calling transform"
            raise NotFittedError(msg)
        if isinstance(source, PointCloud):
            return source.transform(self.transform_)
        return self.transform_.apply(source)

    @convert_inputs
    @typecheck
    @no_more_than_one(["generator", "seed"])
    def fit_transform(
        self,
        *,
        reference: PointCloud | Points3d,
        target: PointCloud | Points3d,
        generator: torch.Generator | None = None,
        seed: int | None = None,
    ) -> PointCloud | Points3d:
        """Fit the matcher and return the aligned reference."""
        self.fit(
            reference=reference,
            target=target,
            generator=generator,
            seed=seed,
        )
        return self.transform(source=reference)

    @convert_inputs
    @typecheck
    @no_more_than_one(["generator", "seed"])
    def compute_transformation(
        self,
        reference: PointCloud | Points3d,
        target: PointCloud | Points3d,
        *,
        generator: torch.Generator | None = None,
        seed: int | None = None,
    ) -> MatchResult:
        """Fit the matcher and return the full result."""
        return self.fit(
            reference=reference,
            target=target,
            generator=generator,
            seed=seed,
        ).result_


class Match4PCS(Match4PCSBase):
    """4PCS matcher, with exhaustive extraction of the congruent sets.

    Quadratic in the number of sampled target points. It is mostly useful
    as a baseline for the Super4PCS matcher and for small clouds.
    """

    def _make_finder(
        self,
        target: PointCloud,
        cache: PairCache,
    ) -> CongruentSetFinder:
        return BruteForceCongruentSetFinder(
            target.points, self.options, target_normals=target.normals
        )


class MatchSuper4PCS(Match4PCSBase):
    """Super4PCS matcher.

    Pairs of target points are extracted through a hash grid, so that the
    cost of an iteration grows with the number of pairs at the distances of
    the base diagonals rather than with the square of the number of points.
    The extracted pairs are cached and shared between iterations.
    """

    def _make_finder(
        self,
        target: PointCloud,
        cache: PairCache,
    ) -> CongruentSetFinder:
        return SmartCongruentSetFinder(
            target.points,
            self.options,
            target_normals=target.normals,
            cache=cache,
        )


@convert_inputs
@typecheck
@no_more_than_one(["generator", "seed"])
def compute_transformation(
    reference: PointCloud | Points3d,
    target: PointCloud | Points3d,
    options: MatchOptions | None = None,
    *,
    generator: torch.Generator | None = None,
    seed: int | None = None,
) -> MatchResult:
    """Register two clouds with the variant selected by the options.

    Parameters
    ----------
    reference
        The cloud to move.
    target
        The cloud to align to.
    options
        The matching options. ``use_super4pcs`` selects ``MatchSuper4PCS``
        (default) or ``Match4PCS``.
    generator
        The random source.
    seed
        A seed for the random source, alternative to ``generator``.

    Returns
    -------
    MatchResult
        The best transform, its score and statistics of the run.
    """
    if options is None:
        options = MatchOptions()
    matcher_class = MatchSuper4PCS if options.use_super4pcs else Match4PCS
    return matcher_class(options).compute_transformation(
        reference, target, generator=generator, seed=seed
    )
