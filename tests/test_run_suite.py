import os

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from ilqrmpc import run_suite
from ilqrmpc.plot import main as plot_main, plot_summary, plot_trajectory
from ilqrmpc.trajectory import Trajectory


def test_suite_writes_summaries(tmp_path, capsys):
    df = run_suite.main([
        "--outdir", str(tmp_path),
        "--trials", "2",
        "--cases", "DoubleIntegrator",
        "--horizon", "20",
        "--mpc-horizon", "10",
        "--workers", "2",
        "--max-iter", "10",
        "--plot",
    ])

    assert (tmp_path / "summary_all.csv").exists()
    assert (tmp_path / "summary_agg.csv").exists()
    assert (tmp_path / "DoubleIntegrator" / "summary_all.csv").exists()
    assert (tmp_path / "DoubleIntegrator" / "trajectory.png").exists()
    assert "Saved:" in capsys.readouterr().out

    assert set(df["solver"]) == {"sequential", "threads", "mpc"}
    assert len(df) == 6
    seq = df[df["solver"] == "sequential"].sort_values("trial")
    par = df[df["solver"] == "threads"].sort_values("trial")
    assert seq["success"].all()
    assert (seq["status"] == "converged").all()
    np.testing.assert_allclose(par["J_star"].values, seq["J_star"].values, rtol=1e-12)
    np.testing.assert_allclose(seq["time_ratio_base"].values, 1.0)

    agg = pd.read_csv(tmp_path / "summary_agg.csv")
    assert set(agg.columns) >= {"case", "solver", "success_rate", "J_median", "ratio_time_median"}


def test_unknown_solver_rejected(tmp_path):
    with pytest.raises(ValueError):
        run_suite.main(["--outdir", str(tmp_path), "--solvers", "newton"])


def test_unknown_case_rejected(tmp_path):
    with pytest.raises(ValueError):
        run_suite.main(["--outdir", str(tmp_path), "--cases", "Unicycle"])


def test_plot_cli_from_summary(tmp_path):
    rows = []
    for case in ("CaseA", "CaseB"):
        for trial in range(3):
            for i, solver in enumerate(("sequential", "threads", "mpc")):
                rows.append(dict(
                    case=case, trial=trial, solver=solver,
                    J_star=1.0 + 0.1 * i + 0.01 * trial,
                    total_time=0.5 + 0.1 * i,
                    n_iter=3 + i,
                    success=True,
                ))
    pd.DataFrame(rows).to_csv(tmp_path / "summary_all.csv", index=False)

    paths = plot_main(["--outdir", str(tmp_path)])

    names = {os.path.basename(p) for p in paths}
    assert names == {"box_cost_ratio_best.png", "box_runtime_ratio.png", "box_iterations.png"}
    for name in names:
        assert (tmp_path / "plots" / name).exists()


def test_runtime_plot_skipped_without_sequential_baseline(tmp_path):
    rows = [
        dict(case="CaseA", trial=t, solver=s, J_star=1.0 + t, total_time=0.2, n_iter=2, success=True)
        for t in range(2) for s in ("threads", "mpc")
    ]
    paths = plot_summary(pd.DataFrame(rows), str(tmp_path), solvers=("threads", "mpc"))
    assert {os.path.basename(p) for p in paths} == {"box_cost_ratio_best.png", "box_iterations.png"}


def test_plot_cli_requires_summary(tmp_path):
    with pytest.raises(FileNotFoundError):
        plot_main(["--outdir", str(tmp_path)])


def test_plot_trajectory(tmp_path):
    X = np.cumsum(np.ones((11, 2)), axis=0)
    traj = Trajectory(X, np.ones((10, 1)))
    out = plot_trajectory(traj, 0.1, str(tmp_path / "traj.png"), title="Double_Integrator")
    assert (tmp_path / "traj.png").exists()
    assert out.endswith("traj.png")
