# vegasgen/integrator/stats.py
import math
from dataclasses import dataclass, field
from typing import List

import numpy as np

# zero-variance iterations are floored before inversion
VAR_FLOOR = 1e-300
_EPS = np.finfo(np.float64).eps


@dataclass
class WeightSum:
    """Running sums of f = w * jac for one batch of draws (rejected draws count with f = 0)."""
    n: int = 0
    n_valid: int = 0
    sum_w: float = 0.0
    sum_w2: float = 0.0
    max_w: float = 0.0

    def add(self, f: float, valid: bool = True):
        self.n += 1
        if valid:
            self.n_valid += 1
            self.sum_w += f
            self.sum_w2 += f * f
            if f > self.max_w:
                self.max_w = f

    def merge(self, other: "WeightSum") -> "WeightSum":
        self.n += other.n
        self.n_valid += other.n_valid
        self.sum_w += other.sum_w
        self.sum_w2 += other.sum_w2
        self.max_w = max(self.max_w, other.max_w)
        return self

    @property
    def mean(self) -> float:
        return self.sum_w / self.n if self.n > 0 else 0.0

    @property
    def variance(self) -> float:
        """Variance of the mean, (sumSq/N - mean^2) / (N-1)."""
        if self.n < 2:
            return math.inf
        mean = self.mean
        return max(0.0, (self.sum_w2 / self.n - mean * mean) / (self.n - 1))

    @property
    def efficiency(self) -> float:
        return self.n_valid / self.n if self.n > 0 else 0.0


@dataclass
class IterationResult:
    index: int
    mean: float
    variance: float
    n: int
    n_valid: int
    max_w: float

    @classmethod
    def from_sum(cls, index: int, ws: WeightSum) -> "IterationResult":
        return cls(index, ws.mean, ws.variance, ws.n, ws.n_valid, ws.max_w)

    @property
    def sigma(self) -> float:
        return math.sqrt(self.variance)

    @property
    def efficiency(self) -> float:
        return self.n_valid / self.n if self.n > 0 else 0.0


def _guarded_variance(means: np.ndarray, var: np.ndarray) -> np.ndarray:
    return np.maximum(var, np.maximum((_EPS * np.abs(means)) ** 2, VAR_FLOOR))


@dataclass
class RunningEstimate:
    """
    Inverse-variance weighted merge of iterations:
      I = sum(mean_i/var_i) / sum(1/var_i),  dI = 1/sqrt(sum(1/var_i))
      chi2 = sum((mean_i - I)^2 / var_i)
    """
    iterations: List[IterationResult] = field(default_factory=list)

    def add(self, it: IterationResult):
        self.iterations.append(it)

    def __len__(self):
        return len(self.iterations)

    def _weights(self):
        """
        Means and guarded variances of the iterations that enter the merge.
        Zero-variance iterations (e.g. every draw rejected) are left out as
        long as one iteration has a positive variance; otherwise all of them
        are merged with the floored variance.
        """
        means = np.array([it.mean for it in self.iterations], dtype=np.float64)
        var = np.array([it.variance for it in self.iterations], dtype=np.float64)
        live = var > 0.0
        if live.any():
            means, var = means[live], var[live]
        return means, _guarded_variance(means, var)

    @property
    def integral(self) -> float:
        if not self.iterations:
            return 0.0
        means, var = self._weights()
        inv = 1.0 / var
        if inv.sum() == 0.0:  # only single-draw iterations
            return float(means.mean())
        return float((means * inv).sum() / inv.sum())

    @property
    def error(self) -> float:
        if not self.iterations:
            return math.inf
        _, var = self._weights()
        s = (1.0 / var).sum()
        return float(1.0 / math.sqrt(s)) if s > 0.0 else math.inf

    @property
    def relative_error(self) -> float:
        I = self.integral
        if I == 0.0:
            return math.inf
        return abs(self.error / I)

    @property
    def chi2(self) -> float:
        means, var = self._weights()
        if means.size < 2:
            return 0.0
        return float((((means - self.integral) ** 2) / var).sum())

    @property
    def dof(self) -> int:
        if not self.iterations:
            return 0
        return max(0, self._weights()[0].size - 1)

    @property
    def chi2_per_dof(self) -> float:
        return self.chi2 / self.dof if self.dof > 0 else 0.0

    @property
    def n_calls(self) -> int:
        return sum(it.n for it in self.iterations)

    @property
    def n_valid(self) -> int:
        return sum(it.n_valid for it in self.iterations)

    @property
    def efficiency(self) -> float:
        n = self.n_calls
        return self.n_valid / n if n > 0 else 0.0

    @property
    def max_w(self) -> float:
        return max((it.max_w for it in self.iterations), default=0.0)
