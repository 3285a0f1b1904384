import numpy as np
import pytest

from vegasgen.integrator.config import VegasConfig
from vegasgen.integrator.controller import IterationController
from vegasgen.integrator.convergence import RunState
from vegasgen.integrator.errors import FatalConfigError, IntegrandError, TrialBudgetExceeded
from vegasgen.integrator.grid import AdaptiveGrid
from vegasgen.integrator.unweight import Envelope, UnweightingEngine, generate_events
from vegasgen.integrator.validity import FunctionIntegrand, PhysicsIntegrand


def ramp():
    # f = 2x on [0,1): integral 1, max 2
    return FunctionIntegrand(lambda x: 2.0 * x[0], dim=1)


def frozen_grid(dim=1, bins=8):
    return AdaptiveGrid(dim=dim, bins=bins).freeze()


def test_envelope_raise_is_monotone():
    env = Envelope(1.0)
    assert env.raise_to(0.5) is None
    assert env.value == 1.0
    assert env.raise_to(3.0) == 1.0
    assert env.value == 3.0
    assert env.raise_to(3.0) is None


def test_acceptance_rate_matches_mean_over_envelope():
    cfg = VegasConfig(envelope="presample", presample=5000, safety=1.5, chunk=500, seed=21)
    engine = UnweightingEngine(ramp(), frozen_grid(), cfg)
    assert 2.7 < engine.envelope.value <= 3.0

    res = engine.generate(2000)
    assert res.accepted == 2000
    assert len(res.events) == 2000
    assert not res.envelope_revised
    assert res.envelope == res.initial_envelope
    # P(accept) = <w> / envelope
    p = 1.0 / res.envelope
    sigma = np.sqrt(p * (1.0 - p) / res.trials)
    assert abs(res.efficiency - p) < 5.0 * sigma
    assert abs(res.mean_weight - 1.0) < 0.05


def test_unit_weight_events_follow_the_integrand():
    cfg = VegasConfig(envelope="presample", presample=2000, safety=1.2, chunk=500, seed=22)
    res = UnweightingEngine(ramp(), frozen_grid(), cfg).generate(2000)
    x = np.array([ev.point[0] for ev in res.events])
    # density 2x -> <x> = 2/3
    assert abs(x.mean() - 2.0 / 3.0) < 0.03
    assert all(ev.weight == 1.0 for ev in res.events)
    assert all(ev.raw_weight <= res.envelope for ev in res.events)
    assert [ev.index for ev in res.events] == list(range(2000))
    trials = [ev.trial for ev in res.events]
    assert trials == sorted(trials)


@pytest.mark.parametrize("threads", [2, 3])
def test_events_identical_regardless_of_threads(threads):
    grid = frozen_grid(bins=4)
    base = dict(chunk=50, seed=7)
    r1 = UnweightingEngine(ramp(), grid, VegasConfig(threads=1, **base), envelope=1.0).generate(300)
    rN = UnweightingEngine(ramp(), grid, VegasConfig(threads=threads, **base), envelope=1.0).generate(300)

    assert r1.trials == rN.trials
    assert r1.envelope == rN.envelope
    assert len(r1.revisions) == len(rN.revisions)
    assert [ev.trial for ev in r1.events] == [ev.trial for ev in rN.events]
    assert np.array_equal(
        np.array([ev.point for ev in r1.events]),
        np.array([ev.point for ev in rN.events]),
    )


def test_low_envelope_is_revised_and_recorded():
    cfg = VegasConfig(chunk=200, seed=3)
    res = UnweightingEngine(ramp(), frozen_grid(), cfg, envelope=0.1).generate(500)
    assert res.envelope_revised
    assert res.initial_envelope == 0.1
    assert 0.1 < res.envelope <= 2.0
    olds = [r.old for r in res.revisions]
    news = [r.new for r in res.revisions]
    assert olds[0] == 0.1
    assert all(o < n for o, n in zip(olds, news))
    assert news == sorted(news)
    assert news[-1] == res.envelope
    counts = [r.accepted for r in res.revisions]
    assert counts == sorted(counts)


def test_trial_budget_exhausted_raises():
    zero = FunctionIntegrand(lambda x: 0.0, dim=1)
    cfg = VegasConfig(chunk=100, max_trials=450)
    engine = UnweightingEngine(zero, frozen_grid(), cfg)
    with pytest.raises(TrialBudgetExceeded) as info:
        engine.generate(10)
    assert info.value.trials == 450
    assert info.value.accepted == 0
    assert info.value.requested == 10
    assert isinstance(info.value, FatalConfigError)


def test_unfrozen_grid_is_fatal():
    with pytest.raises(FatalConfigError):
        UnweightingEngine(ramp(), AdaptiveGrid(dim=1, bins=4))
    with pytest.raises(FatalConfigError):
        UnweightingEngine(ramp(), frozen_grid(dim=2))


def test_negative_event_count_is_fatal():
    engine = UnweightingEngine(ramp(), frozen_grid(), envelope=2.0)
    with pytest.raises(FatalConfigError):
        engine.generate(-1)


def test_zero_events_is_a_no_op():
    res = UnweightingEngine(ramp(), frozen_grid(), envelope=2.0).generate(0)
    assert res.accepted == 0
    assert res.trials == 0
    assert res.events == []
    assert res.efficiency == 0.0


def test_negative_weight_propagates():
    bad = FunctionIntegrand(lambda x: -1.0, dim=1)
    engine = UnweightingEngine(bad, frozen_grid(), VegasConfig(chunk=10), envelope=1.0)
    with pytest.raises(IntegrandError):
        engine.generate(5)


def test_weighted_mode_keeps_every_valid_trial():
    half = FunctionIntegrand(lambda x: float("nan") if x[0] < 0.5 else 1.0, dim=1)
    cfg = VegasConfig(chunk=64, seed=9)
    res = UnweightingEngine(half, frozen_grid(), cfg).generate_weighted(100)
    assert res.weighted
    assert res.accepted == 100
    assert res.n_valid == 100
    assert res.trials > 100
    assert all(ev.weight == ev.raw_weight for ev in res.events)
    assert np.allclose([ev.raw_weight for ev in res.events], 1.0)
    assert all(ev.point[0] >= 0.5 for ev in res.events)


def test_sink_receives_events():
    seen = []
    res = UnweightingEngine(ramp(), frozen_grid(), VegasConfig(chunk=100), envelope=2.0).generate(50, sink=seen.append)
    assert res.events == []
    assert len(seen) == 50
    assert res.accepted == 50


def test_from_controller_needs_consent_for_exhausted_runs():
    cfg = VegasConfig(bins=8, ncall=500, iterations=1, max_iterations=2, precision=1e-9, chi2max=1e9, chunk=100)
    ctl = IterationController(ramp(), cfg)
    ctl.run()
    assert ctl.state is RunState.EXHAUSTED
    with pytest.raises(FatalConfigError):
        UnweightingEngine.from_controller(ctl)
    assert not ctl.grid.frozen

    engine = UnweightingEngine.from_controller(ctl, allow_degraded=True)
    assert ctl.grid.frozen
    assert engine.envelope.value == ctl.max_weight
    res = engine.generate(100)
    assert res.accepted == 100


def test_generate_events_from_converged_run():
    cfg = VegasConfig(bins=8, ncall=2000, iterations=2, precision=0.05, chunk=500, seed=4)
    ctl = IterationController(ramp(), cfg)
    res = ctl.run()
    assert res.state is RunState.CONVERGED
    uw = generate_events(ctl, 200)
    assert uw.accepted == 200
    assert uw.initial_envelope == ctl.max_weight
    assert uw.efficiency > 0.1


def test_payload_travels_with_the_event():
    integrand = PhysicsIntegrand(
        dim=1,
        builder=lambda u: (True, {"x": float(u[0])}),
        amplitude=lambda payload: 1.0,
    )
    res = UnweightingEngine(integrand, frozen_grid(), VegasConfig(chunk=20), envelope=1.0).generate(10)
    for ev in res.events:
        assert ev.payload["x"] == ev.point[0]


def test_debug_output(capsys):
    cfg = VegasConfig(chunk=100, debug=2)
    UnweightingEngine(ramp(), frozen_grid(), cfg, envelope=0.5).generate(20)
    out = capsys.readouterr().out
    assert "[unweight] 20 unweighted events" in out
    assert "envelope revised" in out


def test_acceptance_rate_on_an_adapted_grid():
    cfg = VegasConfig(bins=8, ncall=2000, iterations=3, precision=0.05, chunk=500, seed=12,
                      envelope="presample", presample=5000, safety=1.5)
    ctl = IterationController(ramp(), cfg)
    ctl.run()
    engine = UnweightingEngine(ramp(), ctl.grid.freeze(), cfg)
    assert engine.grid is ctl.grid and engine.grid.frozen
    assert not np.allclose(engine.grid.widths, 1.0 / cfg.bins)

    res = engine.generate(2000)
    assert not res.envelope_revised
    # P(accept) = <w> / envelope, with <w> measured over the same trials
    p = res.mean_weight / res.envelope
    sigma = np.sqrt(p * (1.0 - p) / res.trials)
    assert abs(res.efficiency - p) < 5.0 * sigma
    assert abs(res.mean_weight - 1.0) < 0.05
