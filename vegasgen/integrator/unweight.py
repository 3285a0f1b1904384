# vegasgen/integrator/unweight.py
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import numpy as np

from vegasgen.integrator.config import VegasConfig
from vegasgen.integrator.convergence import RunState
from vegasgen.integrator.dispatch import (
    STREAM_PRESAMPLE,
    STREAM_UNWEIGHT,
    chunk_sizes,
    evaluate_checked,
    run_ordered,
    stream_rng,
)
from vegasgen.integrator.errors import FatalConfigError, TrialBudgetExceeded
from vegasgen.integrator.grid import AdaptiveGrid
from vegasgen.integrator.sampler import Sampler
from vegasgen.integrator.validity import Integrand, ValidityRecord


@dataclass
class Event:
    """Accepted sample. weight is exactly 1 for unweighted events."""
    index: int
    trial: int
    point: np.ndarray
    payload: Any
    raw_weight: float  # integrand * jacobian at this point
    weight: float = 1.0


@dataclass
class EnvelopeRevision:
    accepted: int  # events accepted before the revision (biased low)
    trial: int
    old: float
    new: float


class Envelope:
    """Running maximum weight; raise_to is a compare-and-swap under a lock."""

    def __init__(self, value: float = 0.0):
        self._value = float(value)
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        return self._value

    def raise_to(self, w: float) -> Optional[float]:
        """Set envelope = w if w is larger. Returns the previous value, or None if unchanged."""
        with self._lock:
            if w > self._value:
                old = self._value
                self._value = float(w)
                return old
            return None


@dataclass
class UnweightingResult:
    events: List[Event]
    requested: int
    accepted: int
    trials: int
    n_valid: int
    sum_weight: float
    initial_envelope: float
    envelope: float
    revisions: List[EnvelopeRevision] = field(default_factory=list)
    weighted: bool = False

    @property
    def efficiency(self) -> float:
        """Accepted / trials."""
        return self.accepted / self.trials if self.trials > 0 else 0.0

    @property
    def valid_fraction(self) -> float:
        return self.n_valid / self.trials if self.trials > 0 else 0.0

    @property
    def mean_weight(self) -> float:
        """<w> over all trials (rejected ones count as 0); estimates the integral."""
        return self.sum_weight / self.trials if self.trials > 0 else 0.0

    @property
    def envelope_revised(self) -> bool:
        return len(self.revisions) > 0


@dataclass
class _Batch:
    x: np.ndarray
    u: np.ndarray
    f: np.ndarray
    valid: np.ndarray
    payloads: list


class UnweightingEngine:
    """
    Accept/reject on a frozen grid.

    A trial with weight w = integrand * jacobian is accepted with probability
    w / envelope. Batches are evaluated on THREADS workers; acceptance is
    decided here, batch by batch in order, so the event sequence only
    depends on the seed. A weight above the envelope raises it and is
    recorded as a revision: events accepted before were drawn with a too low
    envelope (approximate unweighting).
    """

    def __init__(
        self,
        integrand: Integrand,
        grid: AdaptiveGrid,
        config: Optional[VegasConfig] = None,
        envelope: float = 0.0,
    ):
        if not grid.frozen:
            raise FatalConfigError("Unweighting needs a frozen grid (finish the integration first)")
        if getattr(integrand, "dim", grid.dim) != grid.dim:
            raise FatalConfigError(f"Integrand dim {integrand.dim} != grid dim {grid.dim}")

        self.config = (config if config is not None else VegasConfig()).validate()
        self.integrand = integrand
        self.grid = grid
        self.sampler = Sampler(grid)

        if self.config.envelope == "presample":
            envelope = self.presample_envelope(self.config.presample) * self.config.safety
        self.envelope = Envelope(envelope)

    @classmethod
    def from_controller(cls, controller, allow_degraded: bool = False) -> "UnweightingEngine":
        """
        Freeze the controller's grid and seed the envelope with the integration maximum.
        An EXHAUSTED run needs allow_degraded=True.
        """
        if controller.state is RunState.EXHAUSTED and not allow_degraded:
            raise FatalConfigError(
                "Integration did not converge (EXHAUSTED); pass allow_degraded=True to unweight anyway"
            )
        grid = controller.freeze()
        return cls(controller.integrand, grid, controller.config, envelope=controller.max_weight)

    # -----------------------
    # worker side
    # -----------------------
    def _evaluate_batch(self, rng, n) -> _Batch:
        x, jac, _ = self.sampler.draw_batch(rng, n)
        u = rng.random(n)

        f = np.zeros(n, dtype=np.float64)
        valid = np.zeros(n, dtype=bool)
        payloads = [None] * n
        for i in range(n):
            aux = ValidityRecord(vegasweight=float(jac[i]), rng=rng)
            w = evaluate_checked(self.integrand, x[i], aux)
            valid[i] = aux.valid()
            if valid[i]:
                f[i] = w * jac[i]
                payloads[i] = aux.payload
        return _Batch(x, u, f, valid, payloads)

    def _run_batch(self, b: int) -> _Batch:
        rng = stream_rng(self.config.seed, STREAM_UNWEIGHT, b)
        return self._evaluate_batch(rng, self.config.chunk)

    def _run_presample(self, task) -> float:
        k, n = task
        rng = stream_rng(self.config.seed, STREAM_PRESAMPLE, k)
        batch = self._evaluate_batch(rng, n)
        return float(batch.f.max()) if n > 0 else 0.0

    def presample_envelope(self, n: int) -> float:
        """First pass: maximum weight over n draws on the frozen grid."""
        tasks = list(enumerate(chunk_sizes(n, self.config.chunk)))
        maxima = run_ordered(self._run_presample, tasks, self.config.threads)
        return max(maxima, default=0.0)

    # -----------------------
    # event loop
    # -----------------------
    def generate(self, n_events: int, sink: Optional[Callable[[Event], None]] = None) -> UnweightingResult:
        """Unit-weight events. sink(event), when given, receives events instead of the result list."""
        return self._loop(n_events, weighted=False, sink=sink)

    def generate_weighted(self, n_events: int, sink: Optional[Callable[[Event], None]] = None) -> UnweightingResult:
        """Every valid trial becomes an event carrying its weight w."""
        return self._loop(n_events, weighted=True, sink=sink)

    def _loop(self, n_events, weighted, sink) -> UnweightingResult:
        if n_events < 0:
            raise FatalConfigError(f"Requested a negative number of events: {n_events}")

        cfg = self.config
        env = self.envelope
        res = UnweightingResult(
            events=[],
            requested=n_events,
            accepted=0,
            trials=0,
            n_valid=0,
            sum_weight=0.0,
            initial_envelope=env.value,
            envelope=env.value,
            weighted=weighted,
        )

        next_batch = 0
        while res.accepted < n_events:
            ids = range(next_batch, next_batch + cfg.threads)
            next_batch += cfg.threads
            # in-flight batches past the target are simply dropped
            for batch in run_ordered(self._run_batch, ids, cfg.threads):
                self._consume(batch, res, weighted, sink)
                if res.accepted >= n_events:
                    break

        res.envelope = env.value
        if cfg.debug >= 1:
            kind = "weighted" if weighted else "unweighted"
            print(
                f"[unweight] {res.accepted} {kind} events  trials {res.trials}"
                f"  eff {res.efficiency:.4f}  valid {res.valid_fraction:.3f}"
                f"  envelope {res.initial_envelope:.4e} -> {res.envelope:.4e}"
                f"  revisions {len(res.revisions)}"
            )
        return res

    def _consume(self, batch: _Batch, res: UnweightingResult, weighted: bool, sink):
        max_trials = self.config.max_trials
        env = self.envelope

        for i in range(batch.f.size):
            if res.trials >= max_trials:
                raise TrialBudgetExceeded(res.trials, res.accepted, res.requested)
            res.trials += 1
            if not batch.valid[i]:
                continue

            w = float(batch.f[i])
            res.n_valid += 1
            res.sum_weight += w

            if weighted:
                self._emit(res, i, batch, w, w, sink)
            else:
                old = env.raise_to(w)
                if old is not None:
                    rev = EnvelopeRevision(res.accepted, res.trials, old, w)
                    res.revisions.append(rev)
                    if self.config.debug >= 2:
                        print(
                            f"[unweight] envelope revised {old:.4e} -> {w:.4e}"
                            f" after {rev.accepted} accepted events"
                        )
                if batch.u[i] * env.value < w:
                    self._emit(res, i, batch, w, 1.0, sink)

            if res.accepted >= res.requested:
                return

    @staticmethod
    def _emit(res, i, batch, w, weight, sink):
        ev = Event(
            index=res.accepted,
            trial=res.trials - 1,
            point=batch.x[i].copy(),
            payload=batch.payloads[i],
            raw_weight=w,
            weight=weight,
        )
        res.accepted += 1
        if sink is None:
            res.events.append(ev)
        else:
            sink(ev)


def generate_events(controller, n_events: int, allow_degraded: bool = False) -> UnweightingResult:
    """Freeze the controller's grid and produce n_events unit-weight events."""
    return UnweightingEngine.from_controller(controller, allow_degraded).generate(n_events)
