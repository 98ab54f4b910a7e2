# -*- coding: utf-8 -*-
"""LQ approximation of the control problem along a nominal trajectory.

For every stage k the nonlinear problem is replaced by

    dx_{k+1} = A_k dx_k + B_k du_k + c_k
    l_k(dx, du) ~ l + lx^T dx + lu^T du
                  + 0.5 dx^T lxx dx + 0.5 du^T luu du + du^T lux dx

with the affine residual c_k = f(x_k, u_k) - x_{k+1}. Stages are independent
of each other and are mapped over the execution backend; the terminal
expansion is computed on the calling thread.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

import numpy as np

from .errors import ModelEvaluationError
from .utils import _finite, _sym

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinearizedStep:
    k: int
    A: np.ndarray
    B: np.ndarray
    c: np.ndarray
    l: float
    lx: np.ndarray
    lu: np.ndarray
    lxx: np.ndarray
    luu: np.ndarray
    lux: np.ndarray


@dataclass(frozen=True)
class TerminalExpansion:
    l: float
    lx: np.ndarray
    lxx: np.ndarray


@dataclass(frozen=True)
class LQApproximation:
    steps: List[LinearizedStep]
    terminal: TerminalExpansion

    @property
    def horizon(self) -> int:
        return len(self.steps)


def linearize_step(system, cost, x, u, x_next, k: int) -> LinearizedStep:
    """Linearized dynamics + quadratic cost at one (x, u, k)."""
    A, B = system.linearize(x, u, k)
    c = system.propagate(x, u, k) - np.asarray(x_next, dtype=float).reshape(-1)
    lx, lu, lxx, luu, lux = cost.stage_cost_derivatives(x, u, k)
    step = LinearizedStep(
        k=int(k),
        A=np.asarray(A, dtype=float),
        B=np.asarray(B, dtype=float),
        c=np.asarray(c, dtype=float).reshape(-1),
        l=float(cost.stage_cost(x, u, k)),
        lx=np.asarray(lx, dtype=float).reshape(-1),
        lu=np.asarray(lu, dtype=float).reshape(-1),
        lxx=_sym(np.asarray(lxx, dtype=float)),
        luu=_sym(np.asarray(luu, dtype=float)),
        lux=np.asarray(lux, dtype=float).reshape(len(u), len(x)),
    )
    for name in ("A", "B", "c", "lx", "lu", "lxx", "luu", "lux"):
        if not _finite(getattr(step, name)):
            raise ModelEvaluationError(f"non-finite {name} in LQ approximation at k={k}", [k])
    return step


def terminal_expansion(cost, x, k: int) -> TerminalExpansion:
    lx, lxx = cost.terminal_cost_derivatives(x, k)
    term = TerminalExpansion(
        l=float(cost.terminal_cost(x, k)),
        lx=np.asarray(lx, dtype=float).reshape(-1),
        lxx=_sym(np.asarray(lxx, dtype=float)),
    )
    if not (_finite(term.lx) and _finite(term.lxx) and np.isfinite(term.l)):
        raise ModelEvaluationError(f"non-finite terminal expansion at k={k}", [k])
    return term


def approximate(system, cost, trajectory, backend, time_offset: int = 0) -> LQApproximation:
    """One `LinearizedStep` per timestep of `trajectory` (absolute index = time_offset + k).

    Raises ModelEvaluationError naming every failing timestep once all stage
    tasks have reported.
    """
    X, U = trajectory.states, trajectory.controls
    N = trajectory.horizon
    t0 = int(time_offset)

    def task(k):
        return linearize_step(system, cost, X[k], U[k], X[k + 1], t0 + k)

    results = backend.map(task, range(N), return_exceptions=True)

    failed = [(t0 + k, r) for k, r in enumerate(results) if isinstance(r, BaseException)]
    if failed:
        for _, r in failed:
            if not isinstance(r, ModelEvaluationError):
                raise r
        bad = [k for k, _ in failed]
        logger.warning("LQ approximation invalid at %d timestep(s): %s", len(bad), bad[:10])
        raise ModelEvaluationError(f"model evaluation failed at timesteps {bad}: {failed[0][1]}", bad)

    terminal = terminal_expansion(cost, X[N], t0 + N)
    return LQApproximation(steps=list(results), terminal=terminal)
