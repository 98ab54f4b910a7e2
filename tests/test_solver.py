import logging

import numpy as np
import pytest

from ilqrmpc.costs import QuadraticCost
from ilqrmpc.dynamics import DiscreteSystem, LinearSystem
from ilqrmpc.lqr import finite_horizon_lqr
from ilqrmpc.settings import SolverPhase, SolveSettings, SolveStatus
from ilqrmpc.solver import ILQRSolver
from ilqrmpc.systems import make_double_integrator, make_pointmass_navigation, make_segway_balance
from ilqrmpc.trajectory import Trajectory


def _lqr_optimum(prob, N):
    K, P = finite_horizon_lqr(prob.system.A, prob.system.B, prob.cost.Q, prob.cost.R, prob.cost.Qf, N)
    return K, 0.5 * prob.x0 @ P[0] @ prob.x0


def test_double_integrator_reaches_lqr_optimum():
    prob = make_double_integrator(N=50)
    np.testing.assert_allclose(prob.x0, [1.0, 0.0])
    K, J_opt = _lqr_optimum(prob, 50)

    with ILQRSolver(prob.system, prob.cost) as solver:
        res = solver.solve(prob.x0, horizon=50)

    assert res.status is SolveStatus.CONVERGED
    assert res.converged
    assert res.iterations <= 10
    assert abs(res.cost - J_opt) <= 0.01 * J_opt
    assert solver.phase is SolverPhase.CONVERGED


def test_lq_problem_converges_in_one_update_to_riccati_gains():
    prob = make_double_integrator(N=30)
    K, J_opt = _lqr_optimum(prob, 30)

    with ILQRSolver(prob.system, prob.cost) as solver:
        res = solver.solve(prob.x0, np.zeros((30, 1)))

    assert res.status is SolveStatus.CONVERGED
    assert res.iterations == 1
    assert res.cost == pytest.approx(J_opt, rel=1e-9)
    for k in range(30):
        np.testing.assert_allclose(res.policy.gains[k], -K[k], rtol=1e-7, atol=1e-9)
    # the returned policy reproduces the optimal trajectory from x0
    np.testing.assert_allclose(res.policy.control(0, prob.x0), res.trajectory.controls[0])
    np.testing.assert_allclose(res.policy.control(0, prob.x0), -K[0] @ prob.x0, rtol=1e-7)


def test_horizon_one():
    prob = make_double_integrator()
    K, J_opt = _lqr_optimum(prob, 1)
    with ILQRSolver(prob.system, prob.cost) as solver:
        res = solver.solve(prob.x0, horizon=1)
    assert res.status is SolveStatus.CONVERGED
    assert res.trajectory.horizon == 1
    np.testing.assert_allclose(res.trajectory.controls[0], -K[0] @ prob.x0, rtol=1e-7)


@pytest.mark.parametrize(
    "guess, kwargs",
    [
        (None, dict(horizon=0)),
        (np.zeros((0, 1)), {}),
        (None, {}),
        (np.zeros((5, 3)), {}),
        (np.zeros((5, 1)), dict(horizon=6)),
    ],
)
def test_malformed_input_raises(guess, kwargs):
    prob = make_double_integrator()
    with ILQRSolver(prob.system, prob.cost) as solver:
        with pytest.raises(ValueError):
            solver.solve(prob.x0, guess, **kwargs)


def test_bad_initial_state_raises():
    prob = make_double_integrator()
    with ILQRSolver(prob.system, prob.cost) as solver:
        with pytest.raises(ValueError):
            solver.solve([1.0, 0.0, 0.0], horizon=5)


def test_resolve_from_solution_is_idempotent():
    prob = make_double_integrator(N=40)
    with ILQRSolver(prob.system, prob.cost) as solver:
        first = solver.solve(prob.x0, horizon=40)
        second = solver.solve(prob.x0, first.trajectory)

    assert second.status is SolveStatus.CONVERGED
    assert second.iterations == 0
    np.testing.assert_allclose(second.trajectory.states, first.trajectory.states, atol=1e-10)
    np.testing.assert_allclose(second.trajectory.controls, first.trajectory.controls, atol=1e-10)


def test_nonlinear_resolve_is_stable():
    prob = make_segway_balance(N=20)
    with ILQRSolver(prob.system, prob.cost) as solver:
        first = solver.solve(prob.x0, horizon=20)
        second = solver.solve(prob.x0, first.trajectory)

    assert first.status is SolveStatus.CONVERGED
    assert second.status is SolveStatus.CONVERGED
    assert second.cost <= first.cost + 1e-12
    assert second.cost == pytest.approx(first.cost, rel=1e-6)
    np.testing.assert_allclose(second.trajectory.states, first.trajectory.states, atol=1e-3)


def test_accepted_costs_are_monotone():
    prob = make_pointmass_navigation(N=60)
    settings = SolveSettings(max_iterations=40)
    with ILQRSolver(prob.system, prob.cost, settings) as solver:
        res = solver.solve(prob.x0, horizon=60)

    assert res.status is not SolveStatus.DIVERGED
    hist = np.asarray(res.cost_history)
    assert len(hist) == res.iterations + 1
    assert np.all(np.diff(hist) <= 0.0)
    assert res.cost == hist[-1]
    assert res.cost < hist[0]


def test_sequential_and_threaded_solves_agree():
    prob = make_pointmass_navigation(N=50)
    results = []
    for workers in (1, 4):
        settings = SolveSettings(max_iterations=15, num_workers=workers)
        with ILQRSolver(prob.system, prob.cost, settings) as solver:
            results.append(solver.solve(prob.x0, horizon=50))

    seq, par = results
    assert seq.status is par.status
    assert seq.iterations == par.iterations
    np.testing.assert_allclose(par.cost_history, seq.cost_history, rtol=1e-12)
    np.testing.assert_allclose(par.trajectory.controls, seq.trajectory.controls, rtol=1e-10, atol=1e-12)


def test_per_call_settings_resize_pool():
    prob = make_double_integrator(N=10)
    with ILQRSolver(prob.system, prob.cost) as solver:
        assert solver.backend.num_workers == 1
        res = solver.solve(prob.x0, horizon=10, settings=SolveSettings(num_workers=2))
        assert solver.backend.num_workers == 2
        pool = solver.backend
        solver.solve(prob.x0, horizon=10, settings=SolveSettings(num_workers=2))
        assert solver.backend is pool
    assert res.converged


def test_timers_and_time_offset():
    prob = make_double_integrator(N=10)
    with ILQRSolver(prob.system, prob.cost) as solver:
        res = solver.solve(prob.x0, horizon=10, time_offset=25)
    assert set(res.timers) == {"linearize", "backward", "forward"}
    assert all(t >= 0.0 for t in res.timers.values())
    assert res.converged


def _guarded_integrator(limit=10.0):
    def F(x, u):
        if abs(x[0]) > limit:
            return np.full(2, np.nan)
        return np.array([x[0] + 0.1 * x[1], x[1] + 0.1 * u[0]])

    cost = QuadraticCost(np.eye(2), 0.1, 10.0, np.zeros(2))
    return F, cost


@pytest.mark.parametrize("workers", [1, 3])
def test_model_error_in_initial_rollout_diverges(workers):
    F, cost = _guarded_integrator()
    sys = DiscreteSystem(F, 2, 1)
    with ILQRSolver(sys, cost, SolveSettings(num_workers=workers)) as solver:
        res = solver.solve([1.0, 0.0], np.full((30, 1), 100.0))
    assert res.status is SolveStatus.DIVERGED
    assert not res.converged
    assert "k=" in res.error
    assert res.iterations == 0


@pytest.mark.parametrize("workers", [1, 3])
def test_model_error_in_linearization_diverges(workers):
    F, cost = _guarded_integrator()

    def bad_jacobians(x, u):
        return np.full((2, 2), np.nan), np.zeros((2, 1))

    sys = DiscreteSystem(F, 2, 1, jacobians=bad_jacobians)
    with ILQRSolver(sys, cost, SolveSettings(num_workers=workers)) as solver:
        res = solver.solve([1.0, 0.0], horizon=8)
    assert res.status is SolveStatus.DIVERGED
    assert "timesteps" in res.error
    assert res.trajectory.horizon == 8
    assert solver.phase is SolverPhase.DIVERGED


def test_repeated_line_search_failures_diverge():
    # any non-zero control leaves the model domain, so every step is rejected
    def F(x, u):
        if np.any(u != 0.0):
            return np.full(2, np.nan)
        return x.copy()

    sys = DiscreteSystem(F, 2, 1, jacobians=lambda x, u: (np.eye(2), np.ones((2, 1))))
    cost = QuadraticCost(np.eye(2), 1.0, np.eye(2), np.zeros(2))
    settings = SolveSettings(max_line_search_failures=4)
    with ILQRSolver(sys, cost, settings) as solver:
        res = solver.solve([1.0, 1.0], horizon=5)

    assert res.status is SolveStatus.DIVERGED
    assert res.line_search_failures == 4
    assert res.iterations == 0
    assert res.cost == pytest.approx(res.cost_history[0])
    assert res.regularization > 0.0


def test_iteration_budget_returns_best_trajectory():
    prob = make_pointmass_navigation(N=60)
    settings = SolveSettings(max_iterations=2)
    with ILQRSolver(prob.system, prob.cost, settings) as solver:
        res = solver.solve(prob.x0, horizon=60)
    assert res.status is SolveStatus.MAX_ITERATIONS
    assert not res.converged
    assert res.cost == min(res.cost_history)


def test_warm_start_policy_starts_from_closed_loop_rollout():
    prob = make_double_integrator(N=20)
    with ILQRSolver(prob.system, prob.cost) as solver:
        first = solver.solve(prob.x0, horizon=20)
        x_perturbed = prob.x0 + np.array([0.05, -0.02])
        warm = solver.solve(x_perturbed, first.trajectory, policy=first.policy)
        cold = solver.solve(x_perturbed, horizon=20)

    assert warm.converged and cold.converged
    # LQ: the optimal affine policy is exact for any initial state
    assert warm.iterations == 0
    assert warm.cost == pytest.approx(cold.cost, rel=1e-9)


def test_guess_trajectory_is_rolled_out_from_true_state():
    prob = make_double_integrator(N=10)
    guess = Trajectory.zeros([5.0, 5.0], 10, 1)
    with ILQRSolver(prob.system, prob.cost) as solver:
        res = solver.solve(prob.x0, guess)
    np.testing.assert_allclose(res.trajectory.states[0], prob.x0)


def test_damping_cap_diverges_and_counts_every_warning(caplog):
    sys = LinearSystem([[1.0]], [[1.0]])
    cost = QuadraticCost([1.0], [-5.0], [1.0], [0.0])
    settings = SolveSettings(regularization_max_growth=1e2)
    with caplog.at_level(logging.WARNING, logger="ilqrmpc.backward"):
        with ILQRSolver(sys, cost, settings) as solver:
            res = solver.solve([1.0], horizon=5)

    damping_logs = [r for r in caplog.records if r.name == "ilqrmpc.backward"]
    assert res.status is SolveStatus.DIVERGED
    assert res.iterations == 0
    assert "damping" in res.error
    assert len(damping_logs) >= 2
    assert res.curvature_warnings == len(damping_logs)
