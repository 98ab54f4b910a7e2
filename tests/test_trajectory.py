import numpy as np
import pytest

from ilqrmpc.dynamics import LinearSystem
from ilqrmpc.forward import rollout
from ilqrmpc.trajectory import FeedbackPolicy, Trajectory


def _double_integrator(dt=0.1):
    return LinearSystem([[1.0, dt], [0.0, 1.0]], [[0.0], [dt]])


def test_trajectory_length_invariant():
    with pytest.raises(ValueError):
        Trajectory(np.zeros((3, 2)), np.zeros((3, 1)))


def test_zeros_shapes():
    traj = Trajectory.zeros([1.0, 2.0], 5, 1)
    assert traj.horizon == 5
    assert traj.state_dim == 2
    assert traj.control_dim == 1
    assert traj.states.shape == (6, 2)
    np.testing.assert_allclose(traj.states[-1], [1.0, 2.0])


def test_controls_1d_are_promoted():
    traj = Trajectory(np.zeros((4, 2)), np.zeros(3))
    assert traj.controls.shape == (3, 1)


def test_shift_refills_tail_with_model():
    sys = _double_integrator()
    U = np.linspace(-1.0, 1.0, 6).reshape(-1, 1)
    traj = rollout(sys, [1.0, 0.0], U)

    shifted = traj.shift(2, sys, time_index=2)

    assert shifted.horizon == traj.horizon
    np.testing.assert_allclose(shifted.controls[:4], U[2:])
    np.testing.assert_allclose(shifted.controls[4:], np.tile(U[-1], (2, 1)))
    np.testing.assert_allclose(shifted.states[:5], traj.states[2:])
    x_expected = sys.propagate(traj.states[-1], U[-1])
    np.testing.assert_allclose(shifted.states[5], x_expected)


def test_shift_can_shrink_horizon():
    sys = _double_integrator()
    traj = rollout(sys, [1.0, 0.0], np.ones((6, 1)))
    shifted = traj.shift(2, sys, horizon=4)
    assert shifted.horizon == 4
    np.testing.assert_allclose(shifted.states, traj.states[2:])


def test_shift_without_model_repeats_last_state():
    traj = Trajectory(np.arange(8.0).reshape(4, 2), np.ones((3, 1)))
    shifted = traj.shift(1)
    np.testing.assert_allclose(shifted.states[-1], traj.states[-1])
    np.testing.assert_allclose(shifted.states[-2], traj.states[-1])


def test_policy_shape_validation():
    with pytest.raises(ValueError):
        FeedbackPolicy(np.zeros((3, 1)), np.zeros((3, 1, 2)), np.zeros((3, 2)))
    with pytest.raises(ValueError):
        FeedbackPolicy(np.zeros((3, 1)), np.zeros((3, 2, 2)), np.zeros((4, 2)))


def test_policy_control_law():
    ff = np.array([[1.0], [2.0]])
    K = np.array([[[-1.0, 0.0]], [[0.0, -2.0]]])
    X = np.array([[0.0, 0.0], [1.0, 1.0], [2.0, 2.0]])
    pol = FeedbackPolicy(ff, K, X)

    np.testing.assert_allclose(pol.control(0, [1.0, 5.0]), [0.0])
    np.testing.assert_allclose(pol.control(1, [1.0, 2.0]), [0.0])
    # steps past the end reuse the last law
    np.testing.assert_allclose(pol.control(7, [1.0, 1.0]), pol.control(1, [1.0, 1.0]))


def test_interpolate_linear_and_nearest():
    ff = np.array([[0.0], [1.0], [3.0]])
    K = np.zeros((3, 1, 1))
    K[1] = -2.0
    X = np.array([[0.0], [1.0], [2.0], [3.0]])
    pol = FeedbackPolicy(ff, K, X)

    u, Kt = pol.interpolate(0.5, [0.5])
    np.testing.assert_allclose(u, [0.5])
    np.testing.assert_allclose(Kt, [[-1.0]])

    u, Kt = pol.interpolate(1.4, [1.0], mode="nearest")
    np.testing.assert_allclose(u, pol.control(1, [1.0]))
    np.testing.assert_allclose(Kt, K[1])

    with pytest.raises(ValueError):
        pol.interpolate(0.5, [0.0], mode="cubic")


def test_policy_shift_and_truncate():
    ff = np.arange(4.0).reshape(4, 1)
    K = np.zeros((4, 1, 1))
    X = np.arange(5.0).reshape(5, 1)
    pol = FeedbackPolicy(ff, K, X)

    shifted = pol.shift(1)
    np.testing.assert_allclose(shifted.feedforward.ravel(), [1.0, 2.0, 3.0, 3.0])
    np.testing.assert_allclose(shifted.nominal_states.ravel(), [1.0, 2.0, 3.0, 4.0, 4.0])

    short = pol.truncate(2)
    assert short.horizon == 2
    np.testing.assert_allclose(short.nominal_states.ravel(), [0.0, 1.0, 2.0])


def test_open_loop_policy_has_zero_gains():
    traj = Trajectory(np.zeros((3, 2)), np.ones((2, 1)))
    pol = FeedbackPolicy.open_loop(traj)
    assert pol.gains.shape == (2, 1, 2)
    assert not np.any(pol.gains)
    np.testing.assert_allclose(pol.control(0, [5.0, 5.0]), [1.0])
