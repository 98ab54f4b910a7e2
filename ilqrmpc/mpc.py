# -*- coding: utf-8 -*-
"""Receding-horizon (MPC) wrapper around `ILQRSolver`.

Each `tick(state, elapsed_time)`:

  1. accumulates the time since the last solve,
  2. once that time covers one or more whole steps, shifts the stored
     trajectory and policy by those steps and re-solves warm-started from
     them, carrying the leftover fraction of a step forward,
  3. evaluates the policy at the fractional step time when a fraction is left,
  4. returns (command, gain) with the command evaluated at `state`.

Horizon modes:
  receding   fixed length; the tail is refilled after every shift
  shrinking  the horizon end stays put until `min_horizon` is left, then the
             horizon recedes at that length
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .settings import SolveResult, SolveSettings, SolveStatus
from .trajectory import FeedbackPolicy, Trajectory
from .utils import as_vector, is_grid_aligned

logger = logging.getLogger(__name__)

MODES = ("receding", "shrinking")
INTERPOLATIONS = ("linear", "nearest")


@dataclass(frozen=True)
class MPCSettings:
    horizon: int
    dt: float
    mode: str = "receding"
    min_horizon: int = 1
    interpolation: str = "linear"
    solve_settings: Optional[SolveSettings] = None

    def __post_init__(self):
        if int(self.horizon) < 1:
            raise ValueError(f"horizon must be >= 1, got {self.horizon}")
        if not self.dt > 0.0:
            raise ValueError(f"dt must be positive, got {self.dt}")
        if self.mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}, got {self.mode!r}")
        if not (1 <= int(self.min_horizon) <= int(self.horizon)):
            raise ValueError(f"min_horizon must lie in [1, horizon], got {self.min_horizon}")
        if self.interpolation not in INTERPOLATIONS:
            raise ValueError(f"interpolation must be one of {INTERPOLATIONS}, got {self.interpolation!r}")
        if self.solve_settings is not None and not isinstance(self.solve_settings, SolveSettings):
            raise ValueError("solve_settings must be SolveSettings or None")


class RecedingHorizonController:
    """Stateful MPC loop; one instance per controlled plant.

    Ticks are serialized with an internal lock. Warm-start state lives in
    memory only and is dropped by `reset()`.
    """

    def __init__(self, solver, settings: MPCSettings, initial_guess=None):
        self.solver = solver
        self.settings = settings
        self.initial_guess = initial_guess
        self._lock = threading.Lock()
        self.reset()

    def reset(self):
        self.trajectory: Optional[Trajectory] = None
        self.policy: Optional[FeedbackPolicy] = None
        self.last_result: Optional[SolveResult] = None
        self.time_index = 0
        self.solves = 0
        self._since_solve = 0.0

    @property
    def time(self) -> float:
        """Controller time in seconds since the first tick."""
        return self.time_index * self.settings.dt + self._since_solve

    def _next_horizon(self, steps: int) -> int:
        if self.settings.mode == "receding":
            return int(self.settings.horizon)
        return max(self.trajectory.horizon - steps, int(self.settings.min_horizon))

    def _solve(self, x, guess, warm: Optional[FeedbackPolicy], horizon: Optional[int] = None) -> SolveResult:
        result = self.solver.solve(
            x,
            guess,
            self.settings.solve_settings,
            horizon=horizon,
            policy=warm,
            time_offset=self.time_index,
        )
        self.solves += 1
        self.last_result = result
        if result.status is SolveStatus.DIVERGED and warm is not None:
            logger.warning("MPC solve at step %d diverged (%s); keeping the shifted policy", self.time_index, result.error)
            self.trajectory, self.policy = guess, warm
        else:
            self.trajectory, self.policy = result.trajectory, result.policy
        logger.debug(
            "MPC step %d: %s in %d iteration(s), J=%.6g, horizon=%d",
            self.time_index, result.status.value, result.iterations, result.cost, self.policy.horizon,
        )
        return result

    def tick(self, state, elapsed_time: float = 0.0) -> Tuple[np.ndarray, np.ndarray]:
        """Command and feedback gain for `state`, `elapsed_time` seconds after the previous tick."""
        with self._lock:
            elapsed_time = float(elapsed_time)
            if not elapsed_time >= 0.0:
                raise ValueError(f"elapsed_time must be >= 0, got {elapsed_time}")
            x = as_vector(state, self.solver.system.state_dim, "state")

            if self.policy is None:
                guess = self.initial_guess
                horizon = None if guess is not None else int(self.settings.horizon)
                self._solve(x, guess, None, horizon)
                return self.policy.control(0, x), self.policy.gains[0].copy()

            self._since_solve += elapsed_time
            dt = self.settings.dt
            steps = int(np.floor(self._since_solve / dt))
            if is_grid_aligned(self._since_solve, dt):
                steps = int(round(self._since_solve / dt))

            if steps >= 1:
                horizon = self._next_horizon(steps)
                start = self.time_index + steps
                guess = self.trajectory.shift(steps, self.solver.system, time_index=start, horizon=horizon)
                warm = self.policy.shift(steps, horizon=horizon, nominal_states=guess.states)
                self.time_index = start
                # the fraction of a step left over carries into the next tick
                self._since_solve = max(self._since_solve - steps * dt, 0.0)
                if is_grid_aligned(self._since_solve, dt):
                    self._since_solve = 0.0
                self._solve(x, guess, warm)

            if self._since_solve > 0.0:
                return self.policy.interpolate(self._since_solve / dt, x, self.settings.interpolation)
            return self.policy.control(0, x), self.policy.gains[0].copy()


def run_closed_loop(controller: RecedingHorizonController, plant, x0, n_ticks: int) -> Tuple[Trajectory, list]:
    """Simulate `plant` for `n_ticks` controller steps of length `controller.settings.dt`.

    Returns the closed-loop trajectory and the SolveResult of every tick that
    triggered a solve.
    """
    n_ticks = int(n_ticks)
    if n_ticks < 1:
        raise ValueError(f"n_ticks must be >= 1, got {n_ticks}")
    x = as_vector(x0, plant.state_dim, "x0")
    dt = controller.settings.dt
    states = np.zeros((n_ticks + 1, plant.state_dim))
    controls = np.zeros((n_ticks, plant.control_dim))
    states[0] = x
    results = []

    for k in range(n_ticks):
        solves = controller.solves
        u, _ = controller.tick(x, 0.0 if k == 0 else dt)
        if controller.solves != solves:
            results.append(controller.last_result)
        controls[k] = u
        x = plant.propagate(x, u, k)
        states[k + 1] = x

    return Trajectory(states, controls), results
