import json

import matplotlib

matplotlib.use("Agg")

import numpy as np

from vegasgen.integrator.config import VegasConfig
from vegasgen.integrator.controller import IterationController
from vegasgen.integrator.unweight import UnweightingEngine
from vegasgen.physics.zg_integrate import ZGIntegrand
from vegasgen.plots.plot_all import (
    plot_event_observables,
    plot_grid_density,
    plot_iteration_history,
    plot_weight_distribution,
)
from vegasgen.scripts.zg_pipeline_vegas import main


def small_zg_run(allow_degraded=True):
    cfg = VegasConfig(bins=8, ncall=400, iterations=2, max_iterations=2, precision=1e-9, chi2max=1e9, chunk=200)
    ctl = IterationController(ZGIntegrand(1000.0), cfg)
    res = ctl.run()
    uw = UnweightingEngine.from_controller(ctl, allow_degraded=allow_degraded).generate(30)
    return res, ctl, uw


def test_plots_are_written(tmp_path, capsys):
    res, ctl, uw = small_zg_run()
    out = tmp_path / "plots"

    grids = plot_grid_density(ctl.grid, out)
    assert [p.name for p in grids] == ["grid_density_0.png", "grid_density_1.png"]
    assert plot_iteration_history(res, out).name == "iteration_history.png"
    weights = np.array([ev.raw_weight for ev in uw.events])
    assert plot_weight_distribution(weights, uw.envelope, out).exists()
    obs = plot_event_observables(uw.events, out)
    assert [p.name for p in obs] == ["pT_g.png", "eta_g.png"]

    for p in grids + obs:
        assert p.exists() and p.stat().st_size > 0
    assert "[plot_all] Saved:" in capsys.readouterr().out


def test_pipeline_end_to_end(tmp_path):
    card = tmp_path / "card.json"
    card.write_text(json.dumps({"VEGAS": {"BINS": 8, "NCALL": 500, "ITER": 2, "MAXITER": 2,
                                          "PRECISION": 1e-6, "CHUNK": 250, "SEED": 5}}))
    out = tmp_path / "results"

    rc = main(["--config", str(card), "--events", "20", "--n_eval", "500",
               "--allow_degraded", "--out", str(out)])
    assert rc == 0

    record = json.loads((out / "zg_vegas_comparison.json").read_text())
    assert record["unweighting"]["accepted"] == 20
    assert record["vegas"]["state"] == "exhausted"
    assert record["meta"]["config"]["bins"] == 8
    assert (out / "zg_grid.npz").exists()
    assert (out / "plots" / "iteration_history.png").exists()


def test_pipeline_refuses_degraded_run_without_consent(tmp_path, capsys):
    card = tmp_path / "card.json"
    card.write_text(json.dumps({"BINS": 4, "NCALL": 200, "ITER": 1, "MAXITER": 1, "PRECISION": 1e-9}))
    rc = main(["--config", str(card), "--events", "5", "--n_eval", "100",
               "--no_plots", "--out", str(tmp_path / "r")])
    assert rc == 1
    assert "allow_degraded" in capsys.readouterr().out
