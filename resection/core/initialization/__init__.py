"""Initial pose estimation: minimal solvers and consensus search."""

from .pnp import MinimalSolver, PoseHypothesis, solve_p3p, solve_p4pf, solve_dlt
from .consensus import ConsensusSearch, ConsensusOptions, ConsensusResult, SearchState

__all__ = [
    "MinimalSolver",
    "PoseHypothesis",
    "solve_p3p",
    "solve_p4pf",
    "solve_dlt",
    "ConsensusSearch",
    "ConsensusOptions",
    "ConsensusResult",
    "SearchState",
]
