import math

import numpy as np
import pytest

from ilqrmpc.errors import ModelEvaluationError
from ilqrmpc.forward import rollout, trajectory_cost
from ilqrmpc.systems import SYSTEMS, make_problem, make_quadrotor


@pytest.mark.parametrize("name", sorted(SYSTEMS))
def test_problem_is_consistent(name):
    prob = make_problem(name)
    n, m = prob.system.state_dim, prob.system.control_dim
    assert prob.x0.shape == (n,)
    assert prob.cost.state_dim == n
    assert prob.cost.control_dim == m
    assert prob.dt > 0.0

    guess = prob.initial_guess(5)
    assert guess.shape == (5, m)
    traj = rollout(prob.system, prob.x0, guess)
    assert np.all(np.isfinite(traj.states))
    assert np.isfinite(trajectory_cost(prob.cost, traj))

    A, B = prob.system.linearize(prob.x0, guess[0], 0)
    assert A.shape == (n, n)
    assert B.shape == (n, m)


def test_unknown_system():
    with pytest.raises(ValueError):
        make_problem("unicycle")


def test_quadrotor_hovers_at_reference_thrust():
    prob = make_quadrotor()
    x1 = prob.system.propagate(prob.x0, prob.u_guess, 0)
    np.testing.assert_allclose(x1, prob.x0, atol=1e-12)


def test_quadrotor_singularity_is_a_model_error():
    prob = make_quadrotor()
    x = np.zeros(12)
    x[7] = 0.5 * math.pi
    with pytest.raises(ModelEvaluationError):
        prob.system.propagate(x, prob.u_guess, 4)


def test_cartpole_goal_is_upright_equilibrium():
    prob = make_problem("cartpole_swingup")
    xg = prob.cost.x_ref[0]
    np.testing.assert_allclose(prob.system.propagate(xg, [0.0]), xg, atol=1e-12)
    # theta = pi and theta = -pi are the same configuration for the cost
    x_wrapped = xg.copy()
    x_wrapped[2] -= 2.0 * math.pi
    assert prob.cost.terminal_cost(x_wrapped, 0) == pytest.approx(0.0, abs=1e-20)
