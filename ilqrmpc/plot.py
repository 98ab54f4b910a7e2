#!/usr/bin/env python3
"""Plots for benchmark summaries and solved trajectories.

    python -m ilqrmpc.plot --outdir results     # reads results/summary_all.csv
"""

import argparse
import logging
import os

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)

SOLVER_LABELS = {
    "sequential": "iLQR (sequential)",
    "threads": "iLQR (threads)",
    "mpc": "MPC (closed loop)",
}

# (column, file name, y label, title, log scale)
SUMMARY_PLOTS = (
    ("cost_ratio_best", "box_cost_ratio_best.png", "J / best", "Cost ratio vs best-achieved", False),
    ("time_ratio_base", "box_runtime_ratio.png", "time / sequential", "Runtime ratio vs sequential", True),
    ("n_iter", "box_iterations.png", "iterations", "iLQR iterations", False),
)


def _save(fig, path):
    fig.tight_layout()
    fig.savefig(path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    logger.info("saved %s", path)
    return path


def plot_summary(df, outdir, solvers=("sequential", "threads", "mpc")):
    """One row of per-case box plots for every summary metric; returns the written paths.

    Only successful trials are drawn. A metric with no finite values (e.g. the
    runtime ratio when the sequential baseline was not run) is skipped.
    """
    missing = sorted({"case", "solver", "J_star", "total_time"} - set(df.columns))
    if missing:
        raise ValueError(f"summary missing columns: {missing}")
    if "cost_ratio_best" not in df.columns:
        from .run_suite import add_ratios
        df = add_ratios(df)
    if "success" in df.columns:
        df = df[df["success"].astype(bool)]

    present = set(df["solver"].astype(str))
    order = [s for s in solvers if s in present] + sorted(present - set(solvers))
    cases = sorted(df["case"].unique().tolist())
    os.makedirs(outdir, exist_ok=True)

    paths = []
    for column, fname, ylabel, title, ylog in SUMMARY_PLOTS:
        if column not in df.columns:
            continue
        values = pd.to_numeric(df[column], errors="coerce")
        if not np.isfinite(values).any():
            logger.warning("skipping %s: no finite values", fname)
            continue

        fig, axes = plt.subplots(1, len(cases), figsize=(4.0 * len(cases), 3.4), sharey=True, squeeze=False)
        for ax, case in zip(axes[0], cases):
            groups = []
            for s in order:
                v = values[(df["case"] == case) & (df["solver"] == s)]
                groups.append(v[np.isfinite(v)].values)
            ax.boxplot(groups, tick_labels=[SOLVER_LABELS.get(s, s) for s in order], showfliers=False, widths=0.6)
            ax.set_title(str(case).replace("_", " "))
            ax.grid(True, axis="y", alpha=0.25)
            ax.tick_params(axis="x", rotation=20)
            if ylog:
                ax.set_yscale("log")
        axes[0][0].set_ylabel(ylabel)
        fig.suptitle(f"{title} (success only)", y=1.03)
        paths.append(_save(fig, os.path.join(outdir, fname)))
    return paths


def plot_trajectory(trajectory, dt, path, title=None, state_labels=None, control_labels=None):
    """States and controls of one trajectory over time."""
    X, U = trajectory.states, trajectory.controls

    fig, (ax_x, ax_u) = plt.subplots(2, 1, figsize=(7.0, 5.0), sharex=True)
    for i in range(X.shape[1]):
        ax_x.plot(dt * np.arange(X.shape[0]), X[:, i], label=state_labels[i] if state_labels else f"x{i}")
    for j in range(U.shape[1]):
        ax_u.step(dt * np.arange(U.shape[0]), U[:, j], where="post",
                  label=control_labels[j] if control_labels else f"u{j}")

    ax_x.set_ylabel("state")
    ax_u.set_ylabel("control")
    ax_u.set_xlabel("time [s]")
    for ax in (ax_x, ax_u):
        ax.grid(True, alpha=0.25)
        ax.legend(loc="best", fontsize=8, ncol=2)
    if title:
        ax_x.set_title(str(title).replace("_", " "))
    return _save(fig, path)


def main(argv=None):
    ap = argparse.ArgumentParser(description="Box plots from a benchmark summary_all.csv")
    ap.add_argument("--outdir", default=".", help="run directory; plots go to <outdir>/plots/")
    ap.add_argument("--csv", default=None, help="summary CSV (default: <outdir>/summary_all.csv)")
    ap.add_argument("--cases", default="", help="comma-separated subset of cases")
    ap.add_argument("--solvers", default="sequential,threads,mpc", help="comma-separated solver order")
    ap.add_argument("--log-level", default="INFO")
    args = ap.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO),
                        format="%(levelname)s %(name)s: %(message)s")

    csv_path = os.path.abspath(args.csv or os.path.join(args.outdir, "summary_all.csv"))
    if not os.path.exists(csv_path):
        raise FileNotFoundError(f"Cannot find CSV: {csv_path}")
    df = pd.read_csv(csv_path)

    cases = [c.strip() for c in args.cases.split(",") if c.strip()]
    if cases:
        df = df[df["case"].isin(cases)]

    solvers = tuple(s.strip() for s in args.solvers.split(",") if s.strip())
    paths = plot_summary(df, os.path.join(os.path.abspath(args.outdir), "plots"), solvers)
    print("Saved:", *paths, sep="\n  ")
    return paths


if __name__ == "__main__":
    main()
