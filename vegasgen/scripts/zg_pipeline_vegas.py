# vegasgen/scripts/zg_pipeline_vegas.py
import argparse
import json
import time
from pathlib import Path

import numpy as np

from vegasgen.integrator.config import VegasConfig
from vegasgen.integrator.errors import FatalConfigError
from vegasgen.integrator.unweight import UnweightingEngine
from vegasgen.physics.zg_integrate import ZGIntegrand, integrate_zg_uniform, integrate_zg_vegas
from vegasgen.physics.zg_me import AmplitudeContext
from vegasgen.physics.zg_phase_space import MZ_DEFAULT
from vegasgen.plots.plot_all import (
    plot_event_observables,
    plot_grid_density,
    plot_iteration_history,
    plot_weight_distribution,
)

# Project root: .../package (robust to os.chdir in zg_me.py)
PROJECT_ROOT = Path(__file__).resolve().parents[2]


# -----------------------
# SAVE RESULTS
# -----------------------
def save_comparison(out_path: Path, baseline: dict, vegas: dict, events: dict, meta: dict):
    dIb = float(baseline["dI"])
    dIv = float(vegas["dI"])
    vr = (dIb / dIv) ** 2 if dIv > 0 else float("inf")

    record = {
        "baseline": baseline,
        "vegas": vegas,
        "unweighting": events,
        "variance_reduction": vr,
        "meta": meta,
    }

    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "w") as f:
        json.dump(record, f, indent=2)

    print(f"[saved] comparison → {out_path.resolve()}")


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="q qbar -> Z g: flat vs VEGAS integration + unweighting")
    ap.add_argument("--config", type=str, default=None, help="JSON card with a VEGAS block")
    ap.add_argument("--Ecm", type=float, default=1000.0)
    ap.add_argument("--events", type=int, default=2000)
    ap.add_argument("--n_eval", type=int, default=20000, help="draws for the flat baseline")
    ap.add_argument("--mg5", action="store_true", help="use the MadGraph library (ZG_MG5_LIB)")
    ap.add_argument("--allow_degraded", action="store_true")
    ap.add_argument("--out", type=str, default=str(PROJECT_ROOT / "results"))
    ap.add_argument("--no_plots", action="store_true")
    return ap.parse_args(argv)


# -----------------------
# MAIN PIPELINE
# -----------------------
def main(argv=None):
    args = parse_args(argv)
    mZ = MZ_DEFAULT

    cfg = VegasConfig.from_json(args.config) if args.config else VegasConfig(debug=1)
    out_dir = Path(args.out)
    plot_dir = out_dir / "plots"

    amplitude = AmplitudeContext() if args.mg5 else None
    integrand = ZGIntegrand(args.Ecm, mZ=mZ, amplitude=amplitude)

    # 1) Flat baseline vs VEGAS (with timing)
    t0 = time.time()
    Ib, dIb, sb, dsb, acc = integrate_zg_uniform(integrand, n=args.n_eval, seed=cfg.seed)
    t1 = time.time()
    res, ctl, sv, dsv = integrate_zg_vegas(integrand, cfg)
    t2 = time.time()

    print("\n=== Results ===")
    print(f"[baseline] I = {Ib:.6e} ± {dIb:.2e} | sigma_hat = {sb:.6e} ± {dsb:.2e} | acceptance {acc:.3f}")
    print(f"[vegas]    {res}")
    print(f"[vegas]    sigma_hat = {sv:.6e} ± {dsv:.2e}")
    if res.degraded:
        print("[vegas]    WARNING: precision / chi2 targets not met, result is degraded")

    # 2) Unweighting
    try:
        engine = UnweightingEngine.from_controller(ctl, allow_degraded=args.allow_degraded)
    except FatalConfigError as e:
        print(f"[pipeline] {e}")
        return 1

    t3 = time.time()
    uw = engine.generate(args.events)
    t4 = time.time()
    print(f"[unweight] {uw.accepted} events, efficiency {uw.efficiency:.4f}, "
          f"envelope revisions {len(uw.revisions)}")

    ctl.grid.save(out_dir / "zg_grid.npz")

    save_comparison(
        out_dir / "zg_vegas_comparison.json",
        baseline={
            "I": float(Ib),
            "dI": float(dIb),
            "sigma_hat": float(sb),
            "dsigma_hat": float(dsb),
            "N": int(args.n_eval),
            "acceptance": float(acc),
            "time_sec": float(t1 - t0),
        },
        vegas={
            "I": float(res.integral),
            "dI": float(res.error),
            "sigma_hat": float(sv),
            "dsigma_hat": float(dsv),
            "chi2_per_dof": float(res.chi2_per_dof),
            "iterations": int(res.iterations),
            "N": int(res.n_calls),
            "state": res.state.value,
            "time_sec": float(t2 - t1),
        },
        events={
            "requested": int(args.events),
            "accepted": int(uw.accepted),
            "trials": int(uw.trials),
            "efficiency": float(uw.efficiency),
            "envelope": float(uw.envelope),
            "envelope_revisions": len(uw.revisions),
            "time_sec": float(t4 - t3),
        },
        meta={
            "Ecm": float(args.Ecm),
            "mZ": float(mZ),
            "amplitude": "mg5" if args.mg5 else "analytic_lo",
            "config": cfg.to_dict(),
        },
    )

    # 3) Plots
    if not args.no_plots:
        plot_iteration_history(res, plot_dir)
        plot_grid_density(ctl.grid, plot_dir)
        plot_weight_distribution(np.array([ev.raw_weight for ev in uw.events]), uw.envelope, plot_dir)
        plot_event_observables(uw.events, plot_dir)
        print(f"\n[done] plots saved to: {plot_dir.resolve()}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
