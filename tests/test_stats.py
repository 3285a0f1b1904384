import math

import numpy as np
import pytest

from vegasgen.integrator.config import VegasConfig
from vegasgen.integrator.controller import integrate
from vegasgen.integrator.convergence import ConvergencePolicy, RunState
from vegasgen.integrator.stats import IterationResult, RunningEstimate, WeightSum
from vegasgen.integrator.validity import Integrand


def test_weight_sum_mean_and_variance():
    ws = WeightSum()
    data = [1.0, 2.0, 3.0, 4.0]
    for f in data:
        ws.add(f)
    ws.add(0.0, valid=False)
    n = 5
    mean = sum(data) / n
    var = (sum(f * f for f in data) / n - mean**2) / (n - 1)
    assert ws.n == 5 and ws.n_valid == 4
    assert ws.mean == pytest.approx(mean)
    assert ws.variance == pytest.approx(var)
    assert ws.max_w == 4.0
    assert ws.efficiency == pytest.approx(0.8)


def test_weight_sum_single_draw_has_infinite_variance():
    ws = WeightSum()
    ws.add(2.0)
    assert ws.variance == math.inf


def test_merge_is_order_independent_in_totals():
    a, b = WeightSum(), WeightSum()
    for f in [1.0, 5.0]:
        a.add(f)
    for f in [2.0, 0.5, 7.0]:
        b.add(f)
    ab = WeightSum().merge(a).merge(b)
    ba = WeightSum().merge(b).merge(a)
    assert ab.n == ba.n == 5
    assert ab.sum_w == pytest.approx(ba.sum_w)
    assert ab.sum_w2 == pytest.approx(ba.sum_w2)
    assert ab.max_w == ba.max_w == 7.0


def test_inverse_variance_merge():
    est = RunningEstimate()
    est.add(IterationResult(0, 1.0, 0.04, 100, 100, 0.0))
    est.add(IterationResult(1, 2.0, 0.01, 100, 100, 0.0))
    w1, w2 = 1 / 0.04, 1 / 0.01
    I = (1.0 * w1 + 2.0 * w2) / (w1 + w2)
    assert est.integral == pytest.approx(I)
    assert est.error == pytest.approx(1 / math.sqrt(w1 + w2))
    chi2 = (1.0 - I) ** 2 * w1 + (2.0 - I) ** 2 * w2
    assert est.chi2 == pytest.approx(chi2)
    assert est.dof == 1
    assert est.chi2_per_dof == pytest.approx(chi2)


def test_zero_variance_iteration_does_not_corrupt_merge():
    est = RunningEstimate()
    est.add(IterationResult(0, 0.5, 0.0, 10, 10, 0.0))
    est.add(IterationResult(1, 0.5, 0.0, 10, 10, 0.0))
    assert est.integral == pytest.approx(0.5)
    assert np.isfinite(est.error)
    assert est.chi2 == 0.0


def test_all_zero_estimate_has_infinite_relative_error():
    est = RunningEstimate()
    for i in range(3):
        est.add(IterationResult(i, 0.0, 0.0, 10, 0, 0.0))
    assert est.integral == 0.0
    assert est.relative_error == math.inf


def test_policy_states():
    policy = ConvergencePolicy(precision=0.01, chi2max=2.0, min_iterations=2, max_iterations=4)
    est = RunningEstimate()

    est.add(IterationResult(0, 1.0, 1e-8, 1000, 1000, 0.0))
    assert policy.decide(est) is RunState.WARMING_UP

    est.add(IterationResult(1, 1.0, 1e-8, 1000, 1000, 0.0))
    assert policy.decide(est) is RunState.CONVERGED


def test_policy_inconsistent_iterations_exhaust():
    policy = ConvergencePolicy(precision=0.5, chi2max=2.0, min_iterations=1, max_iterations=3)
    est = RunningEstimate()
    est.add(IterationResult(0, 1.0, 1e-6, 1000, 1000, 0.0))
    assert policy.decide(est) is RunState.CONVERGED

    est = RunningEstimate()
    est.add(IterationResult(0, 1.0, 1e-6, 1000, 1000, 0.0))
    est.add(IterationResult(1, 2.0, 1e-6, 1000, 1000, 0.0))
    # precise but mutually inconsistent -> chi2 too large
    assert policy.decide(est) is RunState.REFINING
    est.add(IterationResult(2, 3.0, 1e-6, 1000, 1000, 0.0))
    assert policy.decide(est) is RunState.EXHAUSTED
    assert RunState.EXHAUSTED.terminal and not RunState.REFINING.terminal


def test_rejected_iteration_does_not_pin_the_merge():
    est = RunningEstimate()
    # every draw of the first iteration rejected
    est.add(IterationResult(0, 0.0, 0.0, 200, 0, 0.0))
    for i, m in enumerate([0.52, 0.49, 0.505, 0.497], start=1):
        est.add(IterationResult(i, m, 1e-4, 200, 200, 1.0))
    assert est.integral == pytest.approx(0.503, abs=1e-3)
    assert est.error == pytest.approx(0.005)
    assert est.dof == 3
    assert est.chi2_per_dof < 3.0
    assert est.n_calls == 1000


def test_controller_recovers_from_an_all_rejected_first_iteration():
    class LateStart(Integrand):
        dim = 1

        def __init__(self):
            self.calls = 0

        def evaluate(self, point, validity):
            self.calls += 1
            if self.calls <= 200:
                validity.kinematics_ok = False
                return 0.0
            return float(point[0])

    cfg = VegasConfig(bins=8, ncall=200, iterations=2, max_iterations=8, precision=1e-9, chi2max=1e9, seed=6)
    res, _ = integrate(LateStart(), cfg)
    assert res.history[0].mean == 0.0
    assert abs(res.integral - 0.5) < 0.1
    assert abs(res.integral - 0.5) < 5.0 * res.error
