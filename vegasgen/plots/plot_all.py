from pathlib import Path

import numpy as np
import matplotlib.pyplot as plt

from vegasgen.physics.cuts import pT, eta


# ============================================================
# Ensure output directory exists
# ============================================================

def ensure_plot_dir(out_dir="plots") -> Path:
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    return out


# ============================================================
# 1. Grid: sampling density per dimension
# ============================================================

def plot_grid_density(grid, out_dir="plots", dims=None):
    """
    Sampling density 1 / (bins * width) of each bin, one figure per dimension.
    A flat line at 1 is the uniform grid.
    """
    out = ensure_plot_dir(out_dir)
    dims = range(grid.dim) if dims is None else dims

    saved = []
    for d in dims:
        edges = grid.edges[d]
        widths = np.diff(edges)
        density = 1.0 / (grid.bins * np.maximum(widths, 1e-300))

        plt.figure(figsize=(6, 4))
        plt.stairs(density, edges)
        plt.yscale("log")
        plt.xlabel(f"x[{d}]")
        plt.ylabel("sampling density")
        plt.title(f"Adapted grid, dimension {d}")
        plt.grid(True)
        plt.tight_layout()

        fname = out / f"grid_density_{d}.png"
        plt.savefig(fname, dpi=150)
        plt.close()
        saved.append(fname)
        print(f"[plot_all] Saved: {fname}")
    return saved


# ============================================================
# 2. Iteration history
# ============================================================

def plot_iteration_history(result, out_dir="plots"):
    """Per-iteration estimates with 1 sigma bars, cumulative estimate as a band."""
    out = ensure_plot_dir(out_dir)

    it = np.arange(1, len(result.history) + 1)
    means = np.array([h.mean for h in result.history])
    sig = np.array([h.sigma for h in result.history])
    sig = np.where(np.isfinite(sig), sig, 0.0)

    plt.figure(figsize=(6, 4))
    plt.errorbar(it, means, yerr=sig, fmt="o", label="iteration")
    plt.axhline(result.integral, color="k", linewidth=1.0, label="combined")
    plt.axhspan(
        result.integral - result.error,
        result.integral + result.error,
        color="k",
        alpha=0.15,
    )
    plt.xlabel("iteration")
    plt.ylabel("estimate")
    plt.title(f"VEGAS iterations ({result.state.value})")
    plt.legend()
    plt.tight_layout()

    fname = out / "iteration_history.png"
    plt.savefig(fname, dpi=150)
    plt.close()
    print(f"[plot_all] Saved: {fname}")
    return fname


# ============================================================
# 3. Event weights vs envelope
# ============================================================

def plot_weight_distribution(weights, envelope, out_dir="plots"):
    """Histogram of w / envelope; everything right of 1 would revise the envelope."""
    out = ensure_plot_dir(out_dir)

    w = np.asarray(weights, dtype=np.float64)
    w = w[w > 0]
    ratio = w / envelope if envelope > 0 else w

    plt.figure(figsize=(6, 4))
    plt.hist(ratio, bins=50, histtype="step", linewidth=1.8)
    plt.axvline(1.0, color="r", linestyle="--", label="envelope")
    plt.yscale("log")
    plt.xlabel("w / envelope")
    plt.ylabel("events")
    plt.title("Weight distribution")
    plt.legend()
    plt.tight_layout()

    fname = out / "weight_distribution.png"
    plt.savefig(fname, dpi=150)
    plt.close()
    print(f"[plot_all] Saved: {fname}")
    return fname


# ============================================================
# 4. Observables of unweighted events
# ============================================================

def plot_event_observables(events, out_dir="plots", particle=3, label="g"):
    """
    pT and eta of one final-state row of the event payload (p_all).
    Default row 3 = gluon of the Z g process.
    """
    out = ensure_plot_dir(out_dir)
    p = np.array([ev.payload[particle] for ev in events if ev.payload is not None])

    def hist_plot(data, xlabel, fname):
        plt.figure(figsize=(6,4))
        plt.hist(data, bins=50, density=True, alpha=0.7, label=xlabel)
        plt.xlabel(xlabel)
        plt.ylabel("Density")
        plt.tight_layout()
        plt.savefig(out / fname, dpi=150)
        plt.close()
        print(f"[plot_all] Saved: {out / fname}")
        return out / fname

    return [
        hist_plot([pT(q) for q in p], f"pT({label})", f"pT_{label}.png"),
        hist_plot([eta(q) for q in p], f"eta({label})", f"eta_{label}.png"),
    ]
