"""Robust consensus search over minimal correspondence samples."""

import hashlib
import itertools
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..errors import DegenerateGeometryError, InputValidationError
from ..math.camera import project
from ..models.entities import CorrespondenceSet
from ..models.warnings import WarningCode, WarningLog
from .pnp import MinimalSolver, PoseHypothesis


class SearchState(Enum):
    """States of the consensus search."""

    INIT = "init"
    SAMPLING = "sampling"
    SCORING = "scoring"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"


@dataclass
class ConsensusOptions:
    """Options for the consensus search."""

    threshold_px: float = 4.0
    target_prob: float = 0.999
    max_iters: int = 1000
    time_budget_s: float = 10.0
    seed: Optional[int] = None
    workers: int = 4
    batch_size: int = 16


@dataclass
class SampleScore:
    """Best hypothesis produced by one minimal sample."""

    sample_index: int
    degenerate: bool = False
    hypothesis: Optional[PoseHypothesis] = None
    inliers: Optional[np.ndarray] = None
    inlier_count: int = 0
    inlier_cost: float = np.inf

    @property
    def key(self) -> Tuple[int, float]:
        return self.inlier_count, -self.inlier_cost


@dataclass
class ConsensusResult:
    """Best-supported hypothesis and how the search ended."""

    hypothesis: PoseHypothesis
    inlier_mask: np.ndarray
    inlier_ids: List[str]
    residuals: np.ndarray
    state: SearchState
    iterations: int
    degenerate_samples: int
    warnings: WarningLog = field(default_factory=WarningLog)

    @property
    def inlier_count(self) -> int:
        return int(self.inlier_mask.sum())


def derive_seed(correspondences: CorrespondenceSet) -> int:
    """Deterministic sampling seed from the correspondence content."""
    digest = hashlib.sha256()
    for id_ in correspondences.ids:
        digest.update(id_.encode("utf-8"))
        digest.update(b"\0")
    digest.update(np.ascontiguousarray(correspondences.pixels, dtype=np.float64).tobytes())
    digest.update(np.ascontiguousarray(correspondences.world, dtype=np.float64).tobytes())
    digest.update(correspondences.enabled.tobytes())
    return int.from_bytes(digest.digest()[:8], "little")


def required_samples(inlier_fraction: float, sample_size: int, target_prob: float) -> float:
    """Samples needed to draw one all-inlier subset with probability target_prob."""
    if inlier_fraction <= 0:
        return math.inf
    p_good = inlier_fraction ** sample_size
    if p_good >= 1.0:
        return 0.0
    return math.log(1 - target_prob) / math.log(1 - p_good)


class ConsensusSearch:
    """RANSAC-style search for the pose hypothesis with the largest inlier set.

    Minimal samples are either enumerated exhaustively (when there are few
    enough subsets) or drawn from a seeded generator. Samples are scored in
    batches on a thread pool; results are reduced in sample order so the
    outcome does not depend on thread scheduling.
    """

    def __init__(self, solver: MinimalSolver, options: Optional[ConsensusOptions] = None):
        self.solver = solver
        self.options = options or ConsensusOptions()
        self.logger = logging.getLogger(__name__)
        self.state = SearchState.INIT

        self._world: Optional[np.ndarray] = None
        self._pixels: Optional[np.ndarray] = None
        self._enabled: Optional[np.ndarray] = None

    def run(
        self,
        correspondences: CorrespondenceSet,
        pixels: Optional[np.ndarray] = None
    ) -> ConsensusResult:
        """Search for the best hypothesis.

        Args:
            correspondences: Full correspondence set (disabled entries are
                scored but never sampled or counted as inliers)
            pixels: Undistorted observations to use in place of the raw pixels

        Returns:
            ConsensusResult for the best hypothesis

        Raises:
            InputValidationError: If there are fewer enabled correspondences
                than the minimal sample size
            DegenerateGeometryError: If no sample produced any hypothesis
        """
        self.state = SearchState.INIT
        k = self.solver.sample_size
        candidates = correspondences.enabled_indices()
        n = len(candidates)

        if n < k:
            raise InputValidationError(
                f"{self.solver.method} needs at least {k} enabled correspondences, got {n}"
            )

        self._world = correspondences.world
        self._pixels = correspondences.pixels if pixels is None else np.asarray(pixels, dtype=float)
        self._enabled = correspondences.enabled

        opts = self.options
        total_subsets = math.comb(n, k)
        exhaustive = total_subsets <= opts.max_iters
        seed = opts.seed if opts.seed is not None else derive_seed(correspondences)
        samples = self._sample_stream(candidates, k, exhaustive, seed)

        self.logger.info(
            f"Consensus search: {n} candidates, method={self.solver.method}, "
            f"{'exhaustive over ' + str(total_subsets) if exhaustive else 'random'} samples"
        )

        start = time.monotonic()
        best: Optional[SampleScore] = None
        iterations = 0
        degenerate = 0
        budget_hit = False
        batch: List[Tuple[int, np.ndarray]] = []

        executor = ThreadPoolExecutor(max_workers=opts.workers) if opts.workers > 1 else None
        try:
            self.state = SearchState.SAMPLING
            while self.state not in (SearchState.CONVERGED, SearchState.EXHAUSTED):
                if self.state == SearchState.SAMPLING:
                    limit = opts.max_iters if best is None else min(
                        opts.max_iters, self._adaptive_limit(best, n, k)
                    )
                    batch = list(itertools.islice(
                        samples, max(0, min(opts.batch_size, int(math.ceil(limit)) - iterations))
                    ))
                    if not batch:
                        if exhaustive or iterations < opts.max_iters:
                            self.state = SearchState.CONVERGED
                        else:
                            self.state = SearchState.EXHAUSTED
                    else:
                        self.state = SearchState.SCORING

                elif self.state == SearchState.SCORING:
                    if executor is not None:
                        scores = list(executor.map(self._score_sample, batch))
                    else:
                        scores = [self._score_sample(item) for item in batch]

                    for score in scores:
                        iterations += 1
                        if score.degenerate:
                            degenerate += 1
                        elif score.hypothesis is not None and (best is None or score.key > best.key):
                            best = score

                    self.logger.debug(
                        f"Scored {iterations} samples, best inliers: {best.inlier_count if best else 0}"
                    )

                    if time.monotonic() - start > opts.time_budget_s:
                        budget_hit = True
                        self.state = SearchState.EXHAUSTED
                    else:
                        self.state = SearchState.SAMPLING
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        if best is None:
            raise DegenerateGeometryError(
                f"No pose hypothesis from {iterations} minimal samples "
                f"({degenerate} degenerate)"
            )

        result = self._build_result(correspondences, best, iterations, degenerate, n, k, budget_hit)
        elapsed = time.monotonic() - start
        self.logger.info(
            f"Consensus {self.state.value} after {iterations} samples in {elapsed:.3f}s: "
            f"{result.inlier_count}/{n} inliers"
        )
        return result

    def _sample_stream(
        self,
        candidates: np.ndarray,
        k: int,
        exhaustive: bool,
        seed: int
    ) -> Iterator[Tuple[int, np.ndarray]]:
        """Yield (sample_index, correspondence indices) pairs."""
        if exhaustive:
            for i, combo in enumerate(itertools.combinations(candidates, k)):
                yield i, np.array(combo)
            return

        rng = np.random.default_rng(seed)
        for i in itertools.count():
            yield i, np.sort(rng.choice(candidates, size=k, replace=False))

    def _adaptive_limit(self, best: SampleScore, n: int, k: int) -> float:
        return required_samples(best.inlier_count / n, k, self.options.target_prob)

    def _score_sample(self, item: Tuple[int, np.ndarray]) -> SampleScore:
        """Solve one minimal sample and keep its best-supported root."""
        sample_index, indices = item
        world = self._world[indices]
        pixels = self._pixels[indices]

        if self.solver.is_degenerate(world, pixels):
            return SampleScore(sample_index, degenerate=True)

        best = SampleScore(sample_index)
        for hypothesis in self.solver.solve(world, pixels):
            residuals = self.hypothesis_residuals(hypothesis)
            inliers = self._enabled & (residuals < self.options.threshold_px)
            score = SampleScore(
                sample_index,
                hypothesis=hypothesis,
                inliers=inliers,
                inlier_count=int(inliers.sum()),
                inlier_cost=float(np.sum(residuals[inliers]**2)),
            )
            if best.hypothesis is None or score.key > best.key:
                best = score
        return best

    def hypothesis_residuals(self, hypothesis: PoseHypothesis) -> np.ndarray:
        """Pixel error of every correspondence under a hypothesis; inf if unprojectable."""
        uv, valid = project(
            self._world, hypothesis.R, hypothesis.C, hypothesis.focal_px, self.solver.principal_point
        )
        errors = np.linalg.norm(self._pixels - uv, axis=1)
        return np.where(valid, errors, np.inf)

    def _build_result(
        self,
        correspondences: CorrespondenceSet,
        best: SampleScore,
        iterations: int,
        degenerate: int,
        n: int,
        k: int,
        budget_hit: bool
    ) -> ConsensusResult:
        warnings = WarningLog()

        if self.state == SearchState.EXHAUSTED:
            reason = "time budget" if budget_hit else "iteration budget"
            warnings.add(
                WarningCode.CONSENSUS_EXHAUSTED,
                f"stopped by {reason} after {iterations} samples with inlier ratio "
                f"{best.inlier_count / n:.3f}; target confidence {self.options.target_prob} not reached",
            )
            if degenerate:
                warnings.add(
                    WarningCode.DEGENERATE_SAMPLES,
                    f"{degenerate} of {iterations} minimal samples were degenerate and skipped",
                )

        if best.inlier_count <= k:
            warnings.add(
                WarningCode.LOW_INLIER_SUPPORT,
                f"best hypothesis is supported by {best.inlier_count} correspondences, "
                f"no more than its {k}-point sample",
            )

        inlier_ids = [correspondences.ids[i] for i in np.flatnonzero(best.inliers)]
        return ConsensusResult(
            hypothesis=best.hypothesis,
            inlier_mask=best.inliers,
            inlier_ids=inlier_ids,
            residuals=self.hypothesis_residuals(best.hypothesis),
            state=self.state,
            iterations=iterations,
            degenerate_samples=degenerate,
            warnings=warnings,
        )
