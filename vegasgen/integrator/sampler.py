# vegasgen/integrator/sampler.py
import numpy as np

from vegasgen.integrator.grid import AdaptiveGrid

# largest double below 1, keeps points inside [0,1)
_ONE_MINUS = np.nextafter(1.0, 0.0)


class Sampler:
    """
    Draw points from the grid density.

    The Jacobian prod_d bins * width_d maps the non-uniform grid density back
    to the uniform measure, so E[f(x) * jac] = integral of f over [0,1)^D.
    Holds no state besides the grid (read-only while drawing).
    """

    def __init__(self, grid: AdaptiveGrid):
        self.grid = grid

    def draw(self, rng: np.random.Generator):
        """One point: returns (point (dim,), jacobian)."""
        g = self.grid
        point = np.empty(g.dim, dtype=np.float64)
        jac = 1.0
        for d in range(g.dim):
            _, x, width = g.sample_bin(d, rng)
            point[d] = x
            jac *= g.bins * width
        return np.minimum(point, _ONE_MINUS), jac

    def draw_batch(self, rng: np.random.Generator, n: int):
        """
        n points at once.
        Returns points (n,dim), jacobians (n,), bin indices (n,dim).
        """
        g = self.grid
        x, width, idx = g.sample(rng, n)
        jac = np.prod(g.bins * width, axis=1)
        return np.minimum(x, _ONE_MINUS), jac, idx
