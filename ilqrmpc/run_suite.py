# -*- coding: utf-8 -*-
"""Benchmark runner (per-case summaries + tqdm progress).

Runs a fixed number of randomized trials per case with three solvers:
  - sequential  (iLQR, linearization and rollouts on the calling thread)
  - threads     (iLQR, same inputs on a thread pool)
  - mpc         (closed-loop receding-horizon control of the same plant)

Outputs:
  <outdir>/
    summary_all.csv          # all cases concatenated
    summary_agg.csv          # aggregated per (case, solver)
    <CaseName>/summary_all.csv
    <CaseName>/summary_agg.csv
    <CaseName>/trajectory.png   (with --plot)

Usage:
  ilqrmpc-suite
  ilqrmpc-suite --trials 5 --max-iter 20 --cases DoubleIntegrator --outdir ilqr_results_test
"""

from __future__ import annotations

import argparse
import logging
import os
import time
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from tqdm import tqdm

from .forward import trajectory_cost
from .mpc import MPCSettings, RecedingHorizonController, run_closed_loop
from .settings import SolveSettings, SolveStatus
from .solver import ILQRSolver
from .systems import make_problem
from .utils import wrap_error

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Trial sampling
# -----------------------------------------------------------------------------

def _rng(seed: int) -> np.random.Generator:
    return np.random.default_rng(int(seed))


def sample_x(base: np.ndarray, sigma: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    base = np.asarray(base, dtype=float).reshape(-1)
    sigma = np.asarray(sigma, dtype=float).reshape(-1)
    if sigma.size == 1:
        sigma = np.full_like(base, float(sigma))
    return base + sigma * rng.standard_normal(base.shape)


# -----------------------------------------------------------------------------
# Case registry
# -----------------------------------------------------------------------------

CASES: List[Tuple[str, str, np.ndarray]] = [
    ("DoubleIntegrator", "double_integrator", np.array([0.2, 0.2])),
    ("Cartpole_SwingUp", "cartpole_swingup", np.zeros(4)),
    ("Quadrotor", "quadrotor", np.array([0.4, 0.4, 0.4] + [0.0] * 9)),
    ("PointMass_Navigation", "pointmass_navigation", np.array([0.1, 0.1, 0.0, 0.0])),
    ("Segway_Balance", "segway_balance", np.array([0.02, 0.02, 0.02, 0.02])),
]

SOLVERS = ("sequential", "threads", "mpc")


# -----------------------------------------------------------------------------
# Single runs
# -----------------------------------------------------------------------------

def _terminal_error(problem, X: np.ndarray) -> float:
    e = wrap_error(X[-1] - problem.cost.x_ref[-1], problem.cost.wrap_idx)
    return float(np.linalg.norm(np.asarray(e, dtype=float).reshape(-1)))


def run_ilqr(problem, x0, settings: SolveSettings, horizon: int) -> Dict[str, object]:
    with ILQRSolver(problem.system, problem.cost, settings) as solver:
        res = solver.solve(x0, problem.initial_guess(horizon))
    return dict(
        status=res.status.value,
        n_iter=res.iterations,
        J_star=res.cost,
        total_time=float(sum(res.timers.values())),
        final_err=_terminal_error(problem, res.trajectory.states),
        solver_error=res.error,
        trajectory=res.trajectory,
    )


def run_mpc(problem, x0, settings: SolveSettings, horizon: int, mpc_horizon: int) -> Dict[str, object]:
    mpc_settings = MPCSettings(horizon=min(mpc_horizon, horizon), dt=problem.dt, mode="receding")
    with ILQRSolver(problem.system, problem.cost, settings) as solver:
        controller = RecedingHorizonController(
            solver, mpc_settings, initial_guess=problem.initial_guess(mpc_settings.horizon)
        )
        traj, results = run_closed_loop(controller, problem.system, x0, horizon)

    diverged = [r for r in results if r.status is SolveStatus.DIVERGED]
    return dict(
        status=SolveStatus.DIVERGED.value if diverged else "closed_loop",
        n_iter=int(sum(r.iterations for r in results)),
        J_star=trajectory_cost(problem.cost, traj),
        total_time=float(sum(sum(r.timers.values()) for r in results)),
        final_err=_terminal_error(problem, traj.states),
        solver_error=diverged[0].error if diverged else None,
        trajectory=traj,
    )


# -----------------------------------------------------------------------------
# Main runner
# -----------------------------------------------------------------------------

def run_case(
    case_name: str,
    system_name: str,
    sigma_x0: np.ndarray,
    *,
    outdir: str,
    trials: int,
    seed: int,
    solvers: List[str],
    max_iter: int,
    workers: int,
    horizon: Optional[int],
    mpc_horizon: int,
    success_tol: float,
    plot: bool = False,
) -> pd.DataFrame:
    problem = make_problem(system_name)
    N = int(horizon) if horizon else problem.horizon

    case_dir = os.path.join(outdir, case_name)
    os.makedirs(case_dir, exist_ok=True)

    rng = _rng(seed + sum(map(ord, case_name)) % 10_000)
    settings = {
        "sequential": SolveSettings(max_iterations=max_iter, num_workers=1),
        "threads": SolveSettings(max_iterations=max_iter, num_workers=workers),
        "mpc": SolveSettings(max_iterations=max(3, max_iter // 4), num_workers=1),
    }

    rows = []
    first_trajectory = None

    p = tqdm(range(int(trials)), desc=f"[{case_name}] trials", leave=False)
    for trial in p:
        x0 = problem.x0.copy() if trial == 0 else sample_x(problem.x0, sigma_x0, rng)

        for solver_name in solvers:
            t0 = time.perf_counter()
            try:
                if solver_name == "mpc":
                    out = run_mpc(problem, x0, settings["mpc"], N, mpc_horizon)
                else:
                    out = run_ilqr(problem, x0, settings[solver_name], N)
            except ValueError as e:
                logger.error("[%s] trial %d, %s: %s", case_name, trial, solver_name, e)
                rows.append({
                    "case": case_name,
                    "trial": int(trial),
                    "solver": solver_name,
                    "status": "crash",
                    "n_iter": 0,
                    "J_star": float("nan"),
                    "total_time": float(time.perf_counter() - t0),
                    "final_err": float("nan"),
                    "success": False,
                    "solver_error": repr(e),
                })
                p.set_postfix(solver=solver_name, ok=0, J="nan")
                continue

            if trial == 0 and solver_name == "sequential":
                first_trajectory = out["trajectory"]

            J_star = float(out["J_star"])
            final_err = float(out["final_err"])
            success = bool(
                out["status"] != SolveStatus.DIVERGED.value
                and np.isfinite(J_star)
                and np.isfinite(final_err)
                and final_err <= float(success_tol)
            )
            rows.append({
                "case": case_name,
                "trial": int(trial),
                "solver": solver_name,
                "status": out["status"],
                "n_iter": int(out["n_iter"]),
                "J_star": J_star,
                "total_time": float(out["total_time"]),
                "final_err": final_err,
                "success": success,
                "solver_error": out["solver_error"],
            })
            p.set_postfix(solver=solver_name, ok=int(success), J=f"{J_star:.3g}")

    df = add_ratios(pd.DataFrame(rows))
    df.to_csv(os.path.join(case_dir, "summary_all.csv"), index=False)
    aggregate(df).to_csv(os.path.join(case_dir, "summary_agg.csv"), index=False)

    if plot and first_trajectory is not None:
        from .plot import plot_trajectory

        plot_trajectory(first_trajectory, problem.dt, os.path.join(case_dir, "trajectory.png"), title=case_name)

    return df


def add_ratios(df: pd.DataFrame) -> pd.DataFrame:
    """best_J / cost_ratio_best per (case, trial) and runtime relative to the sequential solver."""
    df = df.copy()
    df["best_J"] = df.groupby(["case", "trial"])["J_star"].transform("min")
    df["cost_ratio_best"] = df["J_star"] / df["best_J"]

    if "sequential" in set(df["solver"]):
        base_time = (
            df[df["solver"] == "sequential"][["case", "trial", "total_time"]]
            .rename(columns={"total_time": "time_base"})
        )
        df = df.merge(base_time, on=["case", "trial"], how="left")
        df["time_ratio_base"] = df["total_time"] / df["time_base"]
    else:
        df["time_base"] = np.nan
        df["time_ratio_base"] = np.nan
    return df


def aggregate(df: pd.DataFrame) -> pd.DataFrame:
    return (
        df.groupby(["case", "solver"])
          .agg(
              n=("trial", "count"),
              success_rate=("success", "mean"),
              iter_median=("n_iter", "median"),
              J_median=("J_star", "median"),
              time_median=("total_time", "median"),
              ratio_cost_median=("cost_ratio_best", "median"),
              ratio_time_median=("time_ratio_base", "median"),
          )
          .reset_index()
    )


def main(argv=None):
    ap = argparse.ArgumentParser(description="iLQR / MPC benchmark suite")
    ap.add_argument("--outdir", type=str, default="ilqr_results", help="output directory")
    ap.add_argument("--trials", type=int, default=10, help="trials per case (same for all cases)")
    ap.add_argument("--seed", type=int, default=0, help="random seed")
    ap.add_argument("--max-iter", type=int, default=50, help="max iLQR iterations per solve")
    ap.add_argument("--workers", type=int, default=4, help="worker threads for the 'threads' solver")
    ap.add_argument("--horizon", type=int, default=0, help="override the case horizon (0: case default)")
    ap.add_argument("--mpc-horizon", type=int, default=40, help="receding horizon length for the 'mpc' solver")
    ap.add_argument("--success-tol", type=float, default=0.5, help="terminal error norm threshold for success")
    ap.add_argument("--solvers", type=str, default=",".join(SOLVERS), help="comma-separated subset")
    ap.add_argument("--cases", type=str, default="", help="comma-separated case names (default: all)")
    ap.add_argument("--plot", action="store_true", help="save the trial-0 trajectory of every case")
    ap.add_argument("--log-level", type=str, default="WARNING", help="logging level (DEBUG, INFO, ...)")

    args = ap.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    outdir = args.outdir
    os.makedirs(outdir, exist_ok=True)

    solvers = [s.strip() for s in args.solvers.split(",") if s.strip()]
    for s in solvers:
        if s not in SOLVERS:
            raise ValueError(f"Unknown solver: {s}. Options: {list(SOLVERS)}")

    if args.cases.strip():
        wanted = set([c.strip() for c in args.cases.split(",") if c.strip()])
        cases = [c for c in CASES if c[0] in wanted]
        if not cases:
            raise ValueError(f"No matching cases in {wanted}. Available: {[c[0] for c in CASES]}")
    else:
        cases = CASES

    all_rows = []
    outer = tqdm(cases, desc="Cases")
    for case_name, system_name, sigma_x0 in outer:
        df_case = run_case(
            case_name, system_name, sigma_x0,
            outdir=outdir,
            trials=args.trials,
            seed=args.seed,
            solvers=solvers,
            max_iter=args.max_iter,
            workers=args.workers,
            horizon=args.horizon or None,
            mpc_horizon=args.mpc_horizon,
            success_tol=args.success_tol,
            plot=args.plot,
        )
        all_rows.append(df_case)

    df_all = pd.concat(all_rows, ignore_index=True)
    df_all.to_csv(os.path.join(outdir, "summary_all.csv"), index=False)
    aggregate(df_all).to_csv(os.path.join(outdir, "summary_agg.csv"), index=False)

    print("\nSaved:")
    print(" ", os.path.join(outdir, "summary_all.csv"))
    print(" ", os.path.join(outdir, "summary_agg.csv"))
    for case_name, _, _ in cases:
        print(" ", os.path.join(outdir, case_name, "summary_all.csv"))
    return df_all


if __name__ == "__main__":
    main()
