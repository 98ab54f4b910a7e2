# -*- coding: utf-8 -*-
"""Benchmark problems (model + quadratic tracking cost + initial state).

Notes:
- All dynamics are discrete time (explicit Euler) and carry their step `dt`.
- Angles are not wrapped inside the dynamics, which keeps the maps smooth for
  finite differences; costs and rollouts wrap angle deviations instead.
- The quadrotor returns NaNs near the Euler-angle singularity or when the
  state blows up. `DiscreteSystem` turns that into a `ModelEvaluationError`,
  so line-search candidates entering that region are rejected.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import numpy as np

from .costs import QuadraticCost
from .dynamics import ContinuousSystem, DiscreteSystem, LinearSystem


@dataclass
class Problem:
    name: str
    system: object
    cost: QuadraticCost
    x0: np.ndarray
    horizon: int
    dt: float
    u_guess: Optional[np.ndarray] = None
    extra: Dict[str, object] = field(default_factory=dict)

    def initial_guess(self, horizon: Optional[int] = None) -> np.ndarray:
        """Constant control guess (zeros or u_guess) of shape (N, m)."""
        N = self.horizon if horizon is None else int(horizon)
        m = self.system.control_dim
        u = np.zeros(m) if self.u_guess is None else np.asarray(self.u_guess, dtype=float).reshape(m)
        return np.tile(u, (N, 1))


# =============================================================================
# 1) Linear system: 1D double integrator
# =============================================================================

def make_double_integrator(dt: float = 0.05, N: int = 120) -> Problem:
    """x=[pos, vel], u=[acc], regulated to the origin."""
    A = np.array([[1.0, dt], [0.0, 1.0]], dtype=float)
    B = np.array([[0.0], [dt]], dtype=float)
    system = LinearSystem(A, B, dt=dt)

    x0 = np.array([1.0, 0.0], dtype=float)
    xg = np.array([0.0, 0.0], dtype=float)

    Q = np.diag([1.0, 0.1]).astype(float)
    R = np.array([[1e-2]], dtype=float)
    Qf = 50.0

    cost = QuadraticCost(Q, R, Qf, xg)
    return Problem("double_integrator", system, cost, x0, N, dt)


# =============================================================================
# 2) Cart-pole swing-up
# =============================================================================

def make_cartpole_swingup(dt: float = 0.02, N: int = 200) -> Problem:
    """Cart-pole swing-up.

    State: [cart_pos, cart_vel, theta, theta_dot]
      - theta=0 is *down*, theta=pi is *upright*.
    Control: [force]
    """
    g = 9.81
    m_cart = 1.0
    m_pole = 0.1
    length = 0.5  # half-length

    total_mass = m_cart + m_pole
    polemass_length = m_pole * length

    def F(x, u):
        x_pos, x_dot, th, th_dot = x
        force = float(u[0])

        # theta=0 upright in the standard form
        th_u = th - math.pi
        costh = math.cos(th_u)
        sinth = math.sin(th_u)

        temp = (force + polemass_length * th_dot * th_dot * sinth) / total_mass
        denom = length * (4.0 / 3.0 - m_pole * costh * costh / total_mass)

        th_acc = (g * sinth - costh * temp) / denom
        x_acc = temp - polemass_length * th_acc * costh / total_mass

        return np.array([
            x_pos + dt * x_dot,
            x_dot + dt * x_acc,
            th + dt * th_dot,
            th_dot + dt * th_acc,
        ], dtype=float)

    system = DiscreteSystem(F, 4, 1, wrap_idx=[2], dt=dt)

    x0 = np.array([0.0, 0.0, 0.0, 0.0], dtype=float)
    xg = np.array([0.0, 0.0, math.pi, 0.0], dtype=float)

    Q = np.diag([0.01, 0.2, 0.0, 0.2]).astype(float)
    R = np.array([[0.02]], dtype=float)
    Qf = np.diag([5.0, 5.0, 800.0, 40.0]).astype(float)

    cost = QuadraticCost(Q, R, Qf, xg, wrap_idx=[2])
    return Problem("cartpole_swingup", system, cost, x0, N, dt)


# =============================================================================
# 3) Quadrotor (12D Euler-angle model)
# =============================================================================

def make_quadrotor(dt: float = 0.05, N: int = 80) -> Problem:
    """Simple 12D quadrotor with Euler angles.

    State:
      x = [pos(3), vel(3), euler(3), omega(3)]
    Control:
      u = [thrust, tau_x, tau_y, tau_z]
    """
    m, g = 1.0, 9.81
    Ix, Iy, Iz = 0.02, 0.02, 0.04
    kv, kw = 0.05, 0.01

    I = np.diag([Ix, Iy, Iz]).astype(float)
    I_inv = np.diag([1.0 / Ix, 1.0 / Iy, 1.0 / Iz]).astype(float)

    def rotm(phi, th, psi):
        s, c = np.sin, np.cos
        Rz = np.array([[c(psi), -s(psi), 0.0],
                       [s(psi),  c(psi), 0.0],
                       [0.0,     0.0,    1.0]], dtype=float)
        Ry = np.array([[c(th), 0.0, s(th)],
                       [0.0,   1.0, 0.0],
                       [-s(th), 0.0, c(th)]], dtype=float)
        Rx = np.array([[1.0, 0.0,     0.0],
                       [0.0, c(phi), -s(phi)],
                       [0.0, s(phi),  c(phi)]], dtype=float)
        return Rz @ Ry @ Rx

    def Tmat(phi, th):
        s, c, t = np.sin, np.cos, np.tan
        sec = 1.0 / np.cos(th)
        return np.array([[1.0, s(phi) * t(th), c(phi) * t(th)],
                         [0.0, c(phi),         -s(phi)],
                         [0.0, s(phi) * sec,    c(phi) * sec]], dtype=float)

    cos_pitch_min = 1e-3
    omg_abs_max = 1e3

    def F(x, u):
        vel = x[3:6]
        phi, th, psi = x[6:9]
        omg = x[9:12]

        if abs(float(np.cos(th))) < cos_pitch_min or np.any(np.abs(omg) > omg_abs_max):
            return np.full(12, np.nan, dtype=float)

        thrust = float(u[0])
        tau = np.asarray(u[1:4], dtype=float)

        e3 = np.array([0.0, 0.0, 1.0], dtype=float)
        acc = (rotm(phi, th, psi) @ (e3 * thrust)) / m - np.array([0.0, 0.0, g]) - kv * vel
        eulerdot = Tmat(phi, th) @ omg
        omgdot = I_inv @ (tau - np.cross(omg, I @ omg)) - kw * omg

        xdot = np.concatenate([vel, acc, eulerdot, omgdot])
        return x + dt * xdot

    system = DiscreteSystem(F, 12, 4, wrap_idx=[6, 7, 8], dt=dt)

    x0 = np.zeros(12, dtype=float)
    x0[0:3] = [2.0, 2.0, 2.0]
    xg = np.zeros(12, dtype=float)

    # hover thrust
    u_ref = np.array([m * g, 0.0, 0.0, 0.0], dtype=float)

    Q = np.diag([5, 5, 5, 1, 1, 1, 20, 20, 10, 1, 1, 1]).astype(float)
    R = np.diag([1e-3, 1e-2, 1e-2, 1e-2]).astype(float)
    Qf = 300.0

    cost = QuadraticCost(Q, R, Qf, xg, u_ref, wrap_idx=[6, 7, 8])
    return Problem("quadrotor", system, cost, x0, N, dt, u_guess=u_ref)


# =============================================================================
# 4) 2D point-mass navigation with obstacle costs
# =============================================================================

def make_pointmass_navigation(dt: float = 0.05, N: int = 120) -> Problem:
    """2D double-integrator navigation with soft Gaussian obstacle penalties."""
    A = np.eye(4)
    A[0, 2] = A[1, 3] = dt
    B = np.zeros((4, 2))
    B[2, 0] = B[3, 1] = dt
    system = LinearSystem(A, B, dt=dt)

    x0 = np.array([-2.0, -2.0, 0.0, 0.0], dtype=float)
    xg = np.array([2.0, 2.0, 0.0, 0.0], dtype=float)

    Q = np.diag([0.0, 0.0, 0.15, 0.15]).astype(float)
    R = np.diag([0.05, 0.05]).astype(float)
    Qf = np.diag([250.0, 250.0, 30.0, 30.0]).astype(float)

    obstacles = [
        dict(center=np.array([-1.0, -0.5]), radius=0.65, weight=6.0),
        dict(center=np.array([0.0, 0.2]), radius=0.70, weight=6.0),
        dict(center=np.array([1.0, 1.0]), radius=0.65, weight=6.0),
    ]

    def extra_stage_cost(x, u):
        p = np.asarray(x[:2], dtype=float)
        c = 0.0
        cx = np.zeros(4, dtype=float)
        cxx = np.zeros((4, 4), dtype=float)

        for obs in obstacles:
            o = obs["center"]
            r = float(obs["radius"])
            d = p - o
            ci = float(obs["weight"]) * math.exp(-float(d @ d) / (2.0 * r * r))

            c += ci
            cx[:2] += -(ci / (r * r)) * d
            cxx[:2, :2] += ci * (np.outer(d, d) / (r ** 4) - np.eye(2) / (r * r))

        return c, cx, cxx

    cost = QuadraticCost(Q, R, Qf, xg, extra_stage_cost=extra_stage_cost)
    return Problem("pointmass_navigation", system, cost, x0, N, dt, extra=dict(obstacles=obstacles))


# =============================================================================
# 5) Segway balance
# =============================================================================

def make_segway_balance(dt: float = 0.02, N: int = 120) -> Problem:
    """Segway (inverted pendulum on a wheel), continuous-time model."""
    g = 9.81
    r = 0.15
    M = 1.0
    m = 2.0
    l = 0.5
    I = (1.0 / 3.0) * m * l * l
    a1 = M + m
    a2 = m * l
    a3 = I + m * l * l
    Den = a1 * a3 - a2 * a2

    A_tau = a3 / (r * Den) - a2 / Den
    A_th = -(a2 * m * g * l) / Den
    B_tau = -a2 / (r * Den) + a1 / Den
    B_th = (a1 * m * g * l) / Den

    def f(x, u):
        _, x_dot, th, th_dot = x
        tau = float(u[0])
        return np.array([
            x_dot,
            A_tau * tau + A_th * math.sin(th),
            th_dot,
            B_tau * tau + B_th * math.sin(th),
        ], dtype=float)

    system = ContinuousSystem(f, 4, 1, dt)

    x0 = np.array([0.05, 0.0, 0.08, 0.0], dtype=float)
    xg = np.array([0.0, 0.0, 0.0, 0.0], dtype=float)

    Q = np.diag([1.0, 0.1, 25.0, 1.0]).astype(float)
    R = np.array([[0.25]], dtype=float)
    Qf = np.diag([20.0, 2.0, 250.0, 10.0]).astype(float)

    cost = QuadraticCost(Q, R, Qf, xg, wrap_idx=[2])
    return Problem("segway_balance", system, cost, x0, N, dt)


SYSTEMS: Dict[str, Callable[..., Problem]] = {
    "double_integrator": make_double_integrator,
    "cartpole_swingup": make_cartpole_swingup,
    "quadrotor": make_quadrotor,
    "pointmass_navigation": make_pointmass_navigation,
    "segway_balance": make_segway_balance,
}


def make_problem(name: str, **kwargs) -> Problem:
    try:
        factory = SYSTEMS[name]
    except KeyError:
        raise ValueError(f"unknown system {name!r}; choose from {sorted(SYSTEMS)}") from None
    return factory(**kwargs)
