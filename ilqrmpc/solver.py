# -*- coding: utf-8 -*-
"""Iterative LQ solver (iteration controller).

One outer iteration is

    linearize (backend)  ->  backward pass (sequential)  ->  line search (backend)
                         ->  convergence check

Phases:
    INITIALIZING -> LINEARIZING -> BACKWARD_SOLVING -> FORWARD_SEARCHING
                 -> CONVERGENCE_CHECK -> {LINEARIZING | CONVERGED | DIVERGED}
and MAX_ITERATIONS when the iteration budget runs out.

A failed line search raises the damping and re-runs the backward pass on the
same LQ approximation; too many consecutive failures end the solve as
DIVERGED. A successful step lowers the damping again. Expected numerical
difficulty never raises: every call returns a `SolveResult` whose `status`
the caller must check. Only malformed input raises (ValueError) at entry.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import numpy as np

from .backend import make_backend
from .backward import BackwardPassResult, backward_pass
from .errors import CurvatureSingularity, LineSearchExhausted, ModelEvaluationError
from .forward import closed_loop_rollout, line_search, rollout, trajectory_cost
from .linearization import approximate
from .settings import SolverPhase, SolveResult, SolveSettings, SolveStatus
from .trajectory import FeedbackPolicy, Trajectory
from .utils import as_vector

logger = logging.getLogger(__name__)


def _policy_from_step(nominal: Trajectory, bp: BackwardPassResult) -> FeedbackPolicy:
    """Full-step law around the current nominal: u = u_bar + k_ff + K (x - x_bar)."""
    return FeedbackPolicy(nominal.controls + bp.feedforward, bp.gains.copy(), nominal.states.copy())


class ILQRSolver:
    """iLQR with Levenberg-Marquardt damping and a backtracking line search.

    The solver owns its execution backend: a worker pool is created once here
    (when `settings.num_workers > 1`) and reused by every `solve` call until
    `close()`. Pass `backend=` to share an existing one instead.

    The system and cost models are only read; they must be safe to call from
    several threads when a worker pool is used.
    """

    def __init__(self, system, cost, settings: Optional[SolveSettings] = None, backend=None):
        self.system = system
        self.cost = cost
        self.settings = settings if settings is not None else SolveSettings()
        if not isinstance(self.settings, SolveSettings):
            raise ValueError(f"settings must be SolveSettings, got {type(self.settings).__name__}")
        self._owns_backend = backend is None
        self.backend = backend if backend is not None else make_backend(self.settings.num_workers)
        self.phase = SolverPhase.INITIALIZING

    # ------------------------------------------------------------------
    # resources
    # ------------------------------------------------------------------

    def close(self):
        if self._owns_backend:
            self.backend.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _backend_for(self, settings: SolveSettings):
        if self._owns_backend and settings.num_workers != self.backend.num_workers:
            logger.info("resizing worker pool: %d -> %d workers", self.backend.num_workers, settings.num_workers)
            self.backend.close()
            self.backend = make_backend(settings.num_workers)
        return self.backend

    def _set_phase(self, phase: SolverPhase):
        if phase is not self.phase:
            logger.debug("phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    # ------------------------------------------------------------------
    # input handling
    # ------------------------------------------------------------------

    def _initial_guess(self, x0: np.ndarray, guess, horizon: Optional[int]) -> Trajectory:
        n, m = self.system.state_dim, self.system.control_dim
        if guess is None:
            if horizon is None:
                raise ValueError("either an initial guess or a horizon is required")
            if int(horizon) < 1:
                raise ValueError(f"horizon must be >= 1, got {horizon}")
            return Trajectory.zeros(x0, int(horizon), m)

        if isinstance(guess, Trajectory):
            traj = guess.copy()
        else:
            U = np.asarray(guess, dtype=float)
            if U.ndim == 1 and m == 1:
                U = U.reshape(-1, 1)
            if U.ndim != 2:
                raise ValueError(f"control guess must have shape (N, {m}), got {U.shape}")
            traj = Trajectory.zeros(x0, U.shape[0], m)
            traj.controls = U.copy()

        if traj.horizon < 1:
            raise ValueError(f"horizon must be >= 1, got {traj.horizon}")
        if traj.control_dim != m or traj.state_dim != n:
            raise ValueError(
                f"guess has (n, m) = ({traj.state_dim}, {traj.control_dim}), model expects ({n}, {m})"
            )
        if horizon is not None and int(horizon) != traj.horizon:
            raise ValueError(f"guess horizon {traj.horizon} does not match horizon={horizon}")
        return traj

    # ------------------------------------------------------------------
    # main loop
    # ------------------------------------------------------------------

    def solve(
        self,
        initial_state,
        initial_guess=None,
        settings: Optional[SolveSettings] = None,
        *,
        horizon: Optional[int] = None,
        policy: Optional[FeedbackPolicy] = None,
        time_offset: int = 0,
    ) -> SolveResult:
        """Optimize controls from `initial_state`.

        Args:
            initial_state: True initial state x0.
            initial_guess: A Trajectory, an (N, m) control array, or None for
                all-zero controls over `horizon` steps.
            settings: Overrides the solver's settings for this call.
            horizon: Required when `initial_guess` is None.
            policy: Warm-start feedback policy; the first nominal is then the
                closed-loop rollout of x0 under it instead of an open-loop one.
            time_offset: Absolute time index of x0, passed on to the models.
        """
        settings = settings if settings is not None else self.settings
        if not isinstance(settings, SolveSettings):
            raise ValueError(f"settings must be SolveSettings, got {type(settings).__name__}")
        x0 = as_vector(initial_state, self.system.state_dim, "initial_state")
        guess = self._initial_guess(x0, initial_guess, horizon)
        if policy is not None and policy.horizon != guess.horizon:
            raise ValueError(f"warm-start policy horizon {policy.horizon} != guess horizon {guess.horizon}")
        backend = self._backend_for(settings)
        t0 = int(time_offset)

        timers = {"linearize": 0.0, "backward": 0.0, "forward": 0.0}
        cost_history = []
        self._set_phase(SolverPhase.INITIALIZING)

        def result(traj, pol, iterations, J, status, **kw):
            self._set_phase(SolverPhase(status.value))
            logger.info(
                "iLQR %s after %d iteration(s): J=%.6g, mu=%.3g, warnings=%d, line-search failures=%d",
                status.value, iterations, J, kw.get("regularization", 0.0),
                kw.get("curvature_warnings", 0), kw.get("line_search_failures", 0),
            )
            return SolveResult(
                trajectory=traj, policy=pol, iterations=iterations, cost=float(J), status=status,
                cost_history=list(cost_history), timers=dict(timers), **kw,
            )

        # initial nominal
        try:
            if policy is not None:
                traj = closed_loop_rollout(self.system, x0, policy, t0)
            else:
                traj = rollout(self.system, x0, guess.controls, t0)
        except ModelEvaluationError as e:
            logger.warning("initial rollout failed: %s", e)
            return result(guess, FeedbackPolicy.open_loop(guess), 0, float("inf"), SolveStatus.DIVERGED, error=str(e))

        J = trajectory_cost(self.cost, traj, t0)
        cost_history.append(J)
        pol = FeedbackPolicy.open_loop(traj)
        if not np.isfinite(J):
            return result(traj, pol, 0, J, SolveStatus.DIVERGED, error="initial trajectory cost is not finite")

        mu = float(settings.regularization_init)
        iterations = 0
        consecutive_failures = 0
        line_search_failures = 0
        curvature_warnings = 0
        lq = None
        status = SolveStatus.MAX_ITERATIONS
        error = None

        for it in range(int(settings.max_iterations)):
            # 1) linearize
            if lq is None:
                self._set_phase(SolverPhase.LINEARIZING)
                t = time.perf_counter()
                try:
                    lq = approximate(self.system, self.cost, traj, backend, t0)
                except ModelEvaluationError as e:
                    timers["linearize"] += time.perf_counter() - t
                    status, error = SolveStatus.DIVERGED, str(e)
                    break
                timers["linearize"] += time.perf_counter() - t

            # 2) backward pass
            self._set_phase(SolverPhase.BACKWARD_SOLVING)
            t = time.perf_counter()
            try:
                bp = backward_pass(lq, mu, settings)
            except CurvatureSingularity as e:
                timers["backward"] += time.perf_counter() - t
                curvature_warnings += e.curvature_warnings
                status, error = SolveStatus.DIVERGED, str(e)
                break
            timers["backward"] += time.perf_counter() - t
            curvature_warnings += bp.curvature_warnings
            mu = bp.regularization

            expected_decrease = -bp.expected_change(1.0)
            if expected_decrease <= settings.cost_tolerance_abs or expected_decrease <= settings.cost_tolerance_rel * abs(J):
                self._set_phase(SolverPhase.CONVERGENCE_CHECK)
                pol = _policy_from_step(traj, bp)
                logger.debug("iter %d: expected decrease %.3g below tolerance", it, expected_decrease)
                status = SolveStatus.CONVERGED
                break

            # 3) forward line search
            self._set_phase(SolverPhase.FORWARD_SEARCHING)
            t = time.perf_counter()
            try:
                ls = line_search(
                    self.system, self.cost, x0, traj, J, bp, settings.line_search_steps, backend,
                    armijo_fraction=settings.armijo_fraction, time_offset=t0,
                )
            except LineSearchExhausted as e:
                timers["forward"] += time.perf_counter() - t
                consecutive_failures += 1
                line_search_failures += 1
                mu = max(mu * settings.regularization_factor, settings.regularization_min)
                logger.debug("iter %d: %s; damping -> %.3g", it, e, mu)
                if consecutive_failures >= settings.max_line_search_failures or mu > settings.regularization_cap:
                    status = SolveStatus.DIVERGED
                    error = f"line search failed {consecutive_failures} time(s) in a row: {e}"
                    break
                continue
            timers["forward"] += time.perf_counter() - t

            # 4) accept + convergence check
            self._set_phase(SolverPhase.CONVERGENCE_CHECK)
            consecutive_failures = 0
            decrease = J - ls.cost
            J_prev = J
            traj, J = ls.trajectory, ls.cost
            pol = FeedbackPolicy(traj.controls.copy(), bp.gains.copy(), traj.states.copy())
            cost_history.append(J)
            iterations += 1
            lq = None

            mu_down = mu / settings.regularization_factor
            mu = mu_down if mu_down >= settings.regularization_min else float(settings.regularization_init)

            logger.debug("iter %d: alpha=%g, J=%.6g, decrease=%.3g, mu=%.3g", it, ls.alpha, J, decrease, mu)

            if decrease <= settings.cost_tolerance_abs or decrease <= settings.cost_tolerance_rel * max(abs(J_prev), 1e-12):
                status = SolveStatus.CONVERGED
                break

        return result(
            traj, pol, iterations, J, status,
            curvature_warnings=curvature_warnings,
            line_search_failures=line_search_failures,
            regularization=mu,
            error=error,
        )
