# -*- coding: utf-8 -*-
"""Rollouts, trajectory cost and the forward line search."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .errors import LineSearchExhausted, ModelEvaluationError
from .trajectory import FeedbackPolicy, Trajectory
from .utils import wrap_error

logger = logging.getLogger(__name__)


# =============================================================================
# Rollout & objective
# =============================================================================

def rollout(system, x0, controls, time_offset: int = 0) -> Trajectory:
    """Open-loop rollout of `controls` from x0; ModelEvaluationError propagates."""
    U = np.asarray(controls, dtype=float)
    if U.ndim == 1:
        U = U.reshape(-1, 1)
    x0 = np.asarray(x0, dtype=float).reshape(-1)

    N = U.shape[0]
    X = np.zeros((N + 1, x0.size), dtype=float)
    X[0] = x0
    for k in range(N):
        X[k + 1] = system.propagate(X[k], U[k], int(time_offset) + k)
    return Trajectory(X, U.copy())


def closed_loop_rollout(system, x0, policy: FeedbackPolicy, time_offset: int = 0) -> Trajectory:
    """Rollout of x0 under u = u_ff[k] + K[k] (x - x_nom[k])."""
    x0 = np.asarray(x0, dtype=float).reshape(-1)
    N = policy.horizon
    wrap_idx = getattr(system, "wrap_idx", None)
    X = np.zeros((N + 1, x0.size), dtype=float)
    U = np.zeros_like(policy.feedforward)
    X[0] = x0
    for k in range(N):
        dx = wrap_error(X[k] - policy.nominal_states[k], wrap_idx)
        U[k] = policy.feedforward[k] + policy.gains[k] @ dx
        X[k + 1] = system.propagate(X[k], U[k], int(time_offset) + k)
    return Trajectory(X, U)


def trajectory_cost(cost, trajectory: Trajectory, time_offset: int = 0) -> float:
    """Sum of stage costs plus terminal cost; inf if anything is non-finite."""
    X, U = trajectory.states, trajectory.controls
    if not (np.all(np.isfinite(X)) and np.all(np.isfinite(U))):
        return float("inf")
    t0 = int(time_offset)
    N = trajectory.horizon
    c = 0.0
    for k in range(N):
        c += float(cost.stage_cost(X[k], U[k], t0 + k))
    c += float(cost.terminal_cost(X[N], t0 + N))
    return float(c) if np.isfinite(c) else float("inf")


# =============================================================================
# Line search
# =============================================================================

@dataclass
class Candidate:
    alpha: float
    trajectory: Optional[Trajectory]
    cost: float
    error: Optional[str] = None


@dataclass
class LineSearchResult:
    trajectory: Trajectory
    cost: float
    alpha: float
    expected_change: float
    candidates: List[Candidate]


def evaluate_candidate(system, cost, x0, nominal: Trajectory, feedforward, gains, alpha: float, time_offset: int = 0) -> Candidate:
    """Roll out u = u_bar + alpha * k_ff + K (x - x_bar) and cost it.

    A rollout that leaves the model's valid domain yields an infinite cost.
    """
    X, U = nominal.states, nominal.controls
    N = nominal.horizon
    wrap_idx = getattr(system, "wrap_idx", None)
    X_new = np.zeros_like(X)
    U_new = np.zeros_like(U)
    X_new[0] = np.asarray(x0, dtype=float).reshape(-1)
    t0 = int(time_offset)
    try:
        for k in range(N):
            dx = wrap_error(X_new[k] - X[k], wrap_idx)
            U_new[k] = U[k] + float(alpha) * feedforward[k] + gains[k] @ dx
            X_new[k + 1] = system.propagate(X_new[k], U_new[k], t0 + k)
    except ModelEvaluationError as e:
        return Candidate(float(alpha), None, float("inf"), str(e))

    traj = Trajectory(X_new, U_new)
    return Candidate(float(alpha), traj, trajectory_cost(cost, traj, t0))


def _accepts(candidate: Candidate, reference_cost: float, expected_change: float, armijo_fraction: float) -> bool:
    J = candidate.cost
    if not np.isfinite(J) or J > reference_cost:
        return False
    return (J - reference_cost) <= armijo_fraction * expected_change


def line_search(
    system,
    cost,
    x0,
    nominal: Trajectory,
    reference_cost: float,
    backward_result,
    steps: Sequence[float],
    backend,
    *,
    armijo_fraction: float = 1e-4,
    time_offset: int = 0,
) -> LineSearchResult:
    """Pick the largest step size with sufficient decrease.

    Sufficient decrease:  J(alpha) - J_old <= armijo_fraction * (alpha dV1 + alpha^2 dV2),
    together with J(alpha) <= J_old.

    On a parallel backend every candidate is rolled out concurrently and the
    first accepted one in `steps` order wins; sequentially the search stops at
    that same candidate. Raises LineSearchExhausted if none is accepted.
    """
    k_ff, K = backward_result.feedforward, backward_result.gains

    def task(alpha):
        return evaluate_candidate(system, cost, x0, nominal, k_ff, K, alpha, time_offset)

    evaluated: List[Candidate] = []
    if getattr(backend, "parallel", False):
        evaluated = backend.map(task, list(steps))
        candidates = evaluated
    else:
        candidates = (task(a) for a in steps)

    tried: List[Candidate] = []
    for cand in candidates:
        tried.append(cand)
        expected = backward_result.expected_change(cand.alpha)
        if _accepts(cand, reference_cost, expected, armijo_fraction):
            logger.debug(
                "line search accepted alpha=%g: J %.6g -> %.6g (expected change %.3g)",
                cand.alpha, reference_cost, cand.cost, expected,
            )
            return LineSearchResult(cand.trajectory, float(cand.cost), cand.alpha, expected, evaluated or tried)
        if cand.error:
            logger.debug("line search alpha=%g rejected: %s", cand.alpha, cand.error)

    costs = [c.cost for c in (evaluated or tried)]
    raise LineSearchExhausted(
        f"no step size in {tuple(steps)} decreased the cost below {reference_cost:.6g}",
        reference_cost,
        costs,
    )
