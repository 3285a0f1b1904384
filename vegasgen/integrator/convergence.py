# vegasgen/integrator/convergence.py
from dataclasses import dataclass
from enum import Enum

from vegasgen.integrator.stats import RunningEstimate


class RunState(Enum):
    WARMING_UP = "warming_up"
    REFINING = "refining"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (RunState.CONVERGED, RunState.EXHAUSTED, RunState.ABORTED)


@dataclass
class ConvergencePolicy:
    """
    Stop when relative error < precision AND chi2/dof < chi2max,
    checked only after min_iterations (warm-up). Budget -> EXHAUSTED.
    """
    precision: float
    chi2max: float
    min_iterations: int
    max_iterations: int

    @classmethod
    def from_config(cls, cfg) -> "ConvergencePolicy":
        return cls(cfg.precision, cfg.chi2max, cfg.iterations, cfg.max_iterations)

    def converged(self, est: RunningEstimate) -> bool:
        return est.relative_error < self.precision and est.chi2_per_dof < self.chi2max

    def decide(self, est: RunningEstimate) -> RunState:
        n = len(est)
        if n < self.min_iterations:
            return RunState.WARMING_UP
        if self.converged(est):
            return RunState.CONVERGED
        if n >= self.max_iterations:
            return RunState.EXHAUSTED
        return RunState.REFINING
