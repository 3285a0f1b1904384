# vegasgen/integrator/grid.py
from pathlib import Path

import numpy as np

from vegasgen.integrator.errors import FatalConfigError


class AdaptiveGrid:
    """
    Independent per-dimension partition of [0,1) into bins.

      edges : shape (dim, bins+1), edges[d,0] = 0, edges[d,-1] = 1
      mass  : shape (dim, bins), importance accumulated since the last refine

    Importance is carried by the bin positions: after refine() every bin holds
    the same share of the mass, so bins are picked uniformly and the density
    inside bin k of dimension d is 1 / (bins * width[d,k]).
    """

    def __init__(self, dim: int, bins: int = 128):
        if int(dim) != dim or dim <= 0:
            raise FatalConfigError(f"Grid needs at least one dimension, got dim={dim}")
        if int(bins) != bins or bins <= 0 or bins % 2 != 0:
            raise FatalConfigError(f"BINS must be a positive even integer, got {bins}")

        self.dim = int(dim)
        self.bins = int(bins)
        self.edges = np.tile(np.linspace(0.0, 1.0, self.bins + 1), (self.dim, 1))
        self.mass = np.zeros((self.dim, self.bins), dtype=np.float64)
        self.frozen = False

    @property
    def widths(self) -> np.ndarray:
        return np.diff(self.edges, axis=1)

    # -------- sampling (read-only) --------
    def sample_bin(self, d: int, rng: np.random.Generator):
        """
        Pick a bin of dimension d and a uniform offset inside it.
        Returns (bin index, coordinate, bin width).
        """
        k = int(rng.integers(0, self.bins))
        u = rng.random()
        lo = self.edges[d, k]
        width = self.edges[d, k + 1] - lo
        return k, lo + u * width, width

    def sample(self, rng: np.random.Generator, n: int):
        """
        Vectorized sample_bin over all dimensions.
        Returns x (n,dim), bin widths (n,dim), bin indices (n,dim).
        """
        idx = rng.integers(0, self.bins, size=(n, self.dim))
        u = rng.random((n, self.dim))
        rows = np.arange(self.dim)
        lo = self.edges[rows, idx]
        width = self.edges[rows, idx + 1] - lo
        return lo + u * width, width, idx

    # -------- accumulation --------
    def accumulate_batch(self, idx: np.ndarray, weights: np.ndarray):
        """idx shape (n,dim), weights shape (n,): add weights to every dimension's bin."""
        if self.frozen:
            raise RuntimeError("Grid is frozen")
        for d in range(self.dim):
            np.add.at(self.mass[d], idx[:, d], weights)

    def reset_mass(self):
        self.mass[:] = 0.0

    # -------- refinement --------
    def refine(self, lam: float = 1.5):
        """
        Move the edges so every bin gets an equal share of the damped,
        smoothed importance mass. Bin count never changes.
        """
        if self.frozen:
            raise RuntimeError("Grid is frozen")
        if not (0.0 < lam <= 2.0):
            raise FatalConfigError(f"LAMBDA must be in (0, 2], got {lam}")

        for d in range(self.dim):
            m = _damped_importance(self.mass[d], lam)
            if m is None:
                continue
            self.edges[d] = _rebin(self.edges[d], m)

        self.reset_mass()

    def freeze(self) -> "AdaptiveGrid":
        self.frozen = True
        return self

    def copy(self) -> "AdaptiveGrid":
        g = AdaptiveGrid(self.dim, self.bins)
        g.edges = self.edges.copy()
        g.mass = self.mass.copy()
        g.frozen = self.frozen
        return g

    # -------- persistence --------
    def save(self, path):
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        np.savez(out, edges=self.edges, frozen=self.frozen)

    @classmethod
    def load(cls, path) -> "AdaptiveGrid":
        data = np.load(Path(path))
        edges = data["edges"]
        g = cls(edges.shape[0], edges.shape[1] - 1)
        g.edges = edges.astype(np.float64)
        g.frozen = bool(data["frozen"])
        return g

    def summary(self) -> str:
        w = self.widths
        lines = []
        for d in range(self.dim):
            lines.append(
                f"  dim {d:2d}: min width {w[d].min():.3e}  max width {w[d].max():.3e}"
            )
        return "\n".join(lines)


def _damped_importance(d: np.ndarray, lam: float):
    """
    Smoothed, normalized and damped bin importance:
      r_i = smooth(d)_i / sum, m_i = ((1 - r_i) / -ln r_i)^lam
    None for a flat (or empty) dimension.
    """
    if d.size < 2 or np.all(d == d[0]):
        return None

    # 3-point smoothing, 2-point at the ends
    s = np.empty_like(d)
    s[0] = 0.5 * (d[0] + d[1])
    s[-1] = 0.5 * (d[-2] + d[-1])
    s[1:-1] = (d[:-2] + d[1:-1] + d[2:]) / 3.0

    total = s.sum()
    if not np.isfinite(total) or total <= 0.0:
        return None
    r = s / total

    m = np.zeros_like(r)
    pos = r > 0.0
    one = pos & (r >= 1.0)
    mid = pos & ~one
    m[mid] = ((1.0 - r[mid]) / -np.log(r[mid])) ** lam
    m[one] = 1.0
    if m.sum() <= 0.0:
        return None
    return m


def _rebin(edges: np.ndarray, m: np.ndarray) -> np.ndarray:
    """New edges with sum(m)/bins of the mass in each bin, m spread flat inside old bins."""
    nbins = m.size
    avg = m.sum() / nbins

    new = np.empty_like(edges)
    new[0] = 0.0
    new[-1] = 1.0

    k = -1
    acc = 0.0
    xo = xn = 0.0
    for i in range(1, nbins):
        while acc < avg and k < nbins - 1:
            k += 1
            acc += m[k]
            xo = edges[k]
            xn = edges[k + 1]
        acc -= avg
        new[i] = xn - (xn - xo) * acc / m[k] if m[k] > 0.0 else xn

    # rounding must not break monotonicity
    np.clip(new, 0.0, 1.0, out=new)
    np.maximum.accumulate(new, out=new)
    return new
