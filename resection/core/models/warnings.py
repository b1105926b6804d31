"""Structured warnings accumulated by the solve stages."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, List


class WarningCode(str, Enum):
    """Conditions reported to the caller through diagnostics."""

    DEGENERATE_SAMPLES = "degenerate_samples"
    CONSENSUS_EXHAUSTED = "consensus_exhausted"
    LOW_INLIER_SUPPORT = "low_inlier_support"
    REFINEMENT_DIVERGED = "refinement_diverged"
    REFINEMENT_ITERATION_CAP = "refinement_iteration_cap"
    INLIERS_DROPPED = "inliers_dropped"
    UNPROJECTABLE_POINTS = "unprojectable_points"
    COVARIANCE_SINGULAR = "covariance_singular"
    COVARIANCE_UNIT_VARIANCE = "covariance_unit_variance"
    BOOTSTRAP_FAILURES = "bootstrap_failures"
    OUTSIDE_BOUNDS = "outside_bounds"
    OUTSIDE_IMAGE = "outside_image"


@dataclass(frozen=True)
class SolveWarning:
    """A single warning raised by one stage."""

    code: WarningCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


@dataclass
class WarningLog:
    """Ordered warning sequence; each stage appends, the pipeline merges."""

    entries: List[SolveWarning] = field(default_factory=list)

    def add(self, code: WarningCode, message: str) -> None:
        self.entries.append(SolveWarning(code, message))

    def extend(self, other: Iterable[SolveWarning]) -> None:
        self.entries.extend(other)

    def codes(self) -> List[WarningCode]:
        return [w.code for w in self.entries]

    def messages(self) -> List[str]:
        return [str(w) for w in self.entries]

    def __iter__(self) -> Iterator[SolveWarning]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)
