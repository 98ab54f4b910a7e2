# -*- coding: utf-8 -*-
"""Trajectory and feedback-policy containers.

Shapes (N = horizon):
  states       (N+1, n)
  controls     (N,   m)
  feedforward  (N,   m)
  gains        (N, m, n)

A feedback law at step k reads  u = u_ff[k] + K[k] (x - x_nom[k]).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .errors import ModelEvaluationError


def _as_2d(a, name: str) -> np.ndarray:
    A = np.asarray(a, dtype=float)
    if A.ndim == 1:
        A = A.reshape(-1, 1)
    if A.ndim != 2:
        raise ValueError(f"{name} must be 2-D, got shape {A.shape}")
    return A


@dataclass
class Trajectory:
    states: np.ndarray
    controls: np.ndarray

    def __post_init__(self):
        self.controls = _as_2d(self.controls, "controls")
        self.states = np.asarray(self.states, dtype=float)
        if self.states.ndim == 1 and self.controls.shape[0] == 0:
            self.states = self.states.reshape(1, -1)
        self.states = _as_2d(self.states, "states")
        if self.states.shape[0] != self.controls.shape[0] + 1:
            raise ValueError(
                f"trajectory needs len(states) == len(controls) + 1, "
                f"got {self.states.shape[0]} states and {self.controls.shape[0]} controls"
            )

    @classmethod
    def zeros(cls, x0, horizon: int, control_dim: int) -> "Trajectory":
        """All-zero controls; states hold x0 until the first rollout."""
        x0 = np.asarray(x0, dtype=float).reshape(-1)
        horizon = int(horizon)
        return cls(np.tile(x0, (horizon + 1, 1)), np.zeros((horizon, int(control_dim))))

    @property
    def horizon(self) -> int:
        return int(self.controls.shape[0])

    @property
    def state_dim(self) -> int:
        return int(self.states.shape[1])

    @property
    def control_dim(self) -> int:
        return int(self.controls.shape[1])

    def copy(self) -> "Trajectory":
        return Trajectory(self.states.copy(), self.controls.copy())

    def truncate(self, horizon: int) -> "Trajectory":
        horizon = min(int(horizon), self.horizon)
        return Trajectory(self.states[: horizon + 1].copy(), self.controls[:horizon].copy())

    def shift(self, steps: int, system=None, time_index: int = 0, horizon: Optional[int] = None) -> "Trajectory":
        """Drop the first `steps` nodes and refill the tail up to `horizon`.

        The tail repeats the last control; its states are propagated through
        `system` when given (absolute time index `time_index` for the first
        new node), otherwise the last state is repeated.
        """
        steps = max(int(steps), 0)
        horizon = self.horizon if horizon is None else int(horizon)
        keep = max(self.horizon - steps, 0)
        X = list(self.states[min(steps, self.horizon):])
        U = list(self.controls[steps:]) if steps < self.horizon else []
        u_last = self.controls[-1].copy()

        k = int(time_index) + keep
        while len(U) < horizon:
            x_last = X[-1]
            x_next = x_last.copy()
            if system is not None:
                try:
                    x_next = system.propagate(x_last, u_last, k)
                except ModelEvaluationError:
                    x_next = x_last.copy()
            U.append(u_last.copy())
            X.append(x_next)
            k += 1

        return Trajectory(np.asarray(X[: horizon + 1]), np.asarray(U[:horizon]).reshape(horizon, -1))


@dataclass
class FeedbackPolicy:
    feedforward: np.ndarray
    gains: np.ndarray
    nominal_states: np.ndarray

    def __post_init__(self):
        self.feedforward = _as_2d(self.feedforward, "feedforward")
        self.gains = np.asarray(self.gains, dtype=float)
        self.nominal_states = _as_2d(self.nominal_states, "nominal_states")
        N, m = self.feedforward.shape
        n = self.nominal_states.shape[1]
        if self.gains.shape != (N, m, n):
            raise ValueError(f"gains have shape {self.gains.shape}, expected {(N, m, n)}")
        if self.nominal_states.shape[0] != N + 1:
            raise ValueError(
                f"policy needs {N + 1} nominal states, got {self.nominal_states.shape[0]}"
            )

    @classmethod
    def open_loop(cls, trajectory: Trajectory) -> "FeedbackPolicy":
        N, m, n = trajectory.horizon, trajectory.control_dim, trajectory.state_dim
        return cls(trajectory.controls.copy(), np.zeros((N, m, n)), trajectory.states.copy())

    @property
    def horizon(self) -> int:
        return int(self.feedforward.shape[0])

    def law(self, k: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(u_ff, K, x_nom) at step k; steps past the end reuse the last law."""
        k = min(max(int(k), 0), self.horizon - 1)
        return self.feedforward[k], self.gains[k], self.nominal_states[k]

    def control(self, k: int, x) -> np.ndarray:
        u_ff, K, x_nom = self.law(k)
        return u_ff + K @ (np.asarray(x, dtype=float).reshape(-1) - x_nom)

    def interpolate(self, t: float, x, mode: str = "linear") -> Tuple[np.ndarray, np.ndarray]:
        """Evaluate the policy at fractional step time `t` (in steps).

        Returns (u, K) with u the full feedback command at state x.
        """
        t = max(float(t), 0.0)
        if mode == "nearest":
            k = int(np.floor(t + 0.5))
            u_ff, K, x_nom = self.law(k)
        elif mode == "linear":
            k0 = int(np.floor(t))
            s = t - k0
            u0, K0, x0 = self.law(k0)
            u1, K1, _ = self.law(k0 + 1)
            # nominal state is interpolated on the state grid, which has one more node
            xa = self.nominal_states[min(k0, self.horizon)]
            xb = self.nominal_states[min(k0 + 1, self.horizon)]
            u_ff = (1.0 - s) * u0 + s * u1
            K = (1.0 - s) * K0 + s * K1
            x_nom = (1.0 - s) * xa + s * xb if k0 < self.horizon else x0
        else:
            raise ValueError(f"unknown interpolation mode: {mode!r}")
        u = u_ff + K @ (np.asarray(x, dtype=float).reshape(-1) - x_nom)
        return u, K.copy()

    def shift(self, steps: int, horizon: Optional[int] = None, nominal_states: Optional[np.ndarray] = None) -> "FeedbackPolicy":
        """Drop the first `steps` laws and repeat the last one up to `horizon`."""
        steps = max(int(steps), 0)
        horizon = self.horizon if horizon is None else int(horizon)
        idx = [min(steps + i, self.horizon - 1) for i in range(horizon)]
        if nominal_states is None:
            xs = [self.nominal_states[min(steps + i, self.horizon)] for i in range(horizon + 1)]
            nominal_states = np.asarray(xs)
        return FeedbackPolicy(self.feedforward[idx].copy(), self.gains[idx].copy(), nominal_states)

    def truncate(self, horizon: int) -> "FeedbackPolicy":
        horizon = min(int(horizon), self.horizon)
        return FeedbackPolicy(
            self.feedforward[:horizon].copy(),
            self.gains[:horizon].copy(),
            self.nominal_states[: horizon + 1].copy(),
        )
