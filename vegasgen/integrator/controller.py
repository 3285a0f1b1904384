# vegasgen/integrator/controller.py
import math
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from vegasgen.integrator.config import VegasConfig
from vegasgen.integrator.convergence import ConvergencePolicy, RunState
from vegasgen.integrator.dispatch import (
    STREAM_INTEGRATE,
    chunk_sizes,
    evaluate_checked,
    run_ordered,
    stream_rng,
)
from vegasgen.integrator.errors import FatalConfigError, IntegrandError
from vegasgen.integrator.grid import AdaptiveGrid
from vegasgen.integrator.sampler import Sampler
from vegasgen.integrator.stats import IterationResult, RunningEstimate, WeightSum
from vegasgen.integrator.validity import Integrand, ValidityRecord


@dataclass
class IntegrationResult:
    integral: float
    error: float
    chi2_per_dof: float
    iterations: int
    n_calls: int
    efficiency: float
    max_weight: float
    state: RunState
    history: List[IterationResult] = field(default_factory=list)

    @property
    def relative_error(self) -> float:
        if self.integral == 0.0:
            return math.inf
        return abs(self.error / self.integral)

    @property
    def converged(self) -> bool:
        return self.state is RunState.CONVERGED

    @property
    def degraded(self) -> bool:
        """Budget ran out before precision / chi2 targets were met."""
        return self.state is RunState.EXHAUSTED

    def __str__(self):
        tag = "" if self.converged else f"  [{self.state.value.upper()}]"
        return (
            f"I = {self.integral:.6e} ± {self.error:.2e}  chi2/dof = {self.chi2_per_dof:.2f}"
            f"  iters = {self.iterations}  eff = {self.efficiency:.3f}{tag}"
        )


class IterationController:
    """
    Adaptive (VEGAS) integration of an Integrand over [0,1)^dim.

    Each iteration spreads NCALL draws over fixed-size chunks, every chunk
    with its own random stream; chunks run on THREADS workers and are merged
    in chunk order, so results do not depend on the thread count. The grid is
    only refined here, between iterations, after all chunks joined.
    """

    def __init__(self, integrand: Integrand, config: Optional[VegasConfig] = None, dim: Optional[int] = None):
        self.config = (config if config is not None else VegasConfig()).validate()
        if dim is None:
            dim = getattr(integrand, "dim", None)
        if dim is None:
            raise FatalConfigError("Integrand dimension unknown: pass dim= or set integrand.dim")
        if getattr(integrand, "dim", dim) != dim:
            raise IntegrandError(f"dim={dim} does not match integrand.dim={integrand.dim}")

        self.integrand = integrand
        self.grid = AdaptiveGrid(dim, self.config.bins)
        self.sampler = Sampler(self.grid)
        self.policy = ConvergencePolicy.from_config(self.config)
        self.estimate = RunningEstimate()
        self.state = RunState.WARMING_UP
        self.max_weight = 0.0

    @property
    def dim(self) -> int:
        return self.grid.dim

    # -----------------------
    # one chunk (worker side)
    # -----------------------
    def _run_chunk(self, task):
        iteration, k, n = task
        rng = stream_rng(self.config.seed, STREAM_INTEGRATE, iteration, k)

        x, jac, idx = self.sampler.draw_batch(rng, n)

        ws = WeightSum()
        raw = np.zeros(n, dtype=np.float64)
        for i in range(n):
            aux = ValidityRecord(vegasweight=float(jac[i]), rng=rng)
            w = evaluate_checked(self.integrand, x[i], aux)
            # rejected draws still count toward N, with f = 0
            raw[i] = w * jac[i]
            ws.add(raw[i], aux.valid())
        return ws, idx, raw

    # -----------------------
    # iteration (controller side)
    # -----------------------
    def iterate(self) -> IterationResult:
        if self.state.terminal:
            raise RuntimeError(f"Integration already finished ({self.state.value}); use extend()")

        cfg = self.config
        index = len(self.estimate)
        tasks = [(index, k, n) for k, n in enumerate(chunk_sizes(cfg.ncall, cfg.chunk))]

        try:
            parts = run_ordered(self._run_chunk, tasks, cfg.threads)
        except Exception:
            self.state = RunState.ABORTED
            raise

        total = WeightSum()
        for ws, idx, raw in parts:
            total.merge(ws)
            self.grid.accumulate_batch(idx, raw)

        it = IterationResult.from_sum(index, total)
        self.estimate.add(it)
        self.max_weight = max(self.max_weight, it.max_w)
        self.state = self.policy.decide(self.estimate)

        self._report(it)

        # the last iteration's grid is the one that gets frozen
        if not self.state.terminal:
            self.grid.refine(cfg.lam)
        return it

    def run(self) -> IntegrationResult:
        while not self.state.terminal:
            self.iterate()
        return self.result()

    def extend(self, n_iterations: int) -> "IterationController":
        """Raise the iteration budget of an exhausted run; call run() again afterwards."""
        if n_iterations < 1:
            raise FatalConfigError(f"extend() needs >= 1 iteration, got {n_iterations}")
        if self.state is RunState.ABORTED:
            raise FatalConfigError("Cannot extend an aborted run")
        if self.grid.frozen:
            raise FatalConfigError("Grid is frozen; cannot extend the integration")

        self.policy.max_iterations += n_iterations
        if self.state is RunState.EXHAUSTED:
            self.grid.refine(self.config.lam)
            self.state = RunState.REFINING
        return self

    def freeze(self) -> AdaptiveGrid:
        """Freeze the grid for event generation."""
        if self.state is RunState.ABORTED:
            raise FatalConfigError("Integration aborted; no usable grid")
        if not self.state.terminal:
            raise FatalConfigError(f"Integration still running ({self.state.value})")
        return self.grid.freeze()

    def result(self) -> IntegrationResult:
        est = self.estimate
        return IntegrationResult(
            integral=est.integral,
            error=est.error,
            chi2_per_dof=est.chi2_per_dof,
            iterations=len(est),
            n_calls=est.n_calls,
            efficiency=est.efficiency,
            max_weight=self.max_weight,
            state=self.state,
            history=list(est.iterations),
        )

    def status(self) -> dict:
        """Progress snapshot, usable at any point of the run."""
        est = self.estimate
        return {
            "state": self.state.value,
            "iterations": len(est),
            "max_iterations": self.policy.max_iterations,
            "n_calls": est.n_calls,
            "n_valid": est.n_valid,
            "efficiency": est.efficiency,
            "integral": est.integral,
            "error": est.error,
            "chi2_per_dof": est.chi2_per_dof,
            "max_weight": self.max_weight,
        }

    def _report(self, it: IterationResult):
        if self.config.debug < 1:
            return
        est = self.estimate
        print(
            f"[vegas] iter {it.index + 1:3d}  I = {est.integral:.6e} ± {est.error:.2e}"
            f"  (iter {it.mean:.6e} ± {it.sigma:.2e})  chi2/dof {est.chi2_per_dof:.2f}"
            f"  eff {it.efficiency:.3f}  [{self.state.value}]"
        )
        if self.config.debug >= 2:
            print("[vegas] grid:")
            print(self.grid.summary())


def integrate(integrand: Integrand, config: Optional[VegasConfig] = None, dim: Optional[int] = None):
    """Run to convergence (or budget). Returns (result, controller)."""
    ctl = IterationController(integrand, config, dim=dim)
    return ctl.run(), ctl
