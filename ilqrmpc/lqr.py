# -*- coding: utf-8 -*-
"""Reference discrete-time LQR.

    minimize  sum_k 0.5 (x_k^T Q x_k + u_k^T R u_k) + 0.5 x_N^T Qf x_N
    s.t.      x_{k+1} = A x_k + B u_k

Gains follow the u = -K x convention; the iLQR feedback gain of the same
problem is -K.
"""

from __future__ import annotations

import logging
from typing import List, Tuple

import numpy as np

from .utils import _sym, as_weight_matrix, chol_solve

logger = logging.getLogger(__name__)


def _check_system(A, B):
    A = np.atleast_2d(np.asarray(A, dtype=float))
    B = np.asarray(B, dtype=float)
    n = A.shape[0]
    if A.shape != (n, n):
        raise ValueError(f"A has shape {A.shape}, expected square")
    if B.ndim == 1:
        B = B.reshape(n, -1)
    if B.shape[0] != n:
        raise ValueError(f"B has shape {B.shape}, expected ({n}, m)")
    return A, B


def lqr_gain(A, B, Q, R, P) -> np.ndarray:
    """K = (R + B^T P B)^{-1} B^T P A."""
    A, B = _check_system(A, B)
    R = as_weight_matrix(R, B.shape[1], "R")
    P = np.asarray(P, dtype=float)
    return chol_solve(R + B.T @ P @ B, B.T @ P @ A)


def _riccati_step(A, B, Q, R, P) -> Tuple[np.ndarray, np.ndarray]:
    K = chol_solve(R + B.T @ P @ B, B.T @ P @ A)
    P_prev = _sym(Q + A.T @ P @ A - A.T @ P @ B @ K)
    return K, P_prev


def finite_horizon_lqr(A, B, Q, R, Qf, horizon: int) -> Tuple[List[np.ndarray], List[np.ndarray]]:
    """Backward Riccati recursion.

    Returns (K, P) with K[k] for k = 0..N-1 and P[k] for k = 0..N; the optimal
    cost from x at step k is 0.5 x^T P[k] x.
    """
    horizon = int(horizon)
    if horizon < 1:
        raise ValueError(f"horizon must be >= 1, got {horizon}")
    A, B = _check_system(A, B)
    n, m = B.shape
    Q = as_weight_matrix(Q, n, "Q")
    R = as_weight_matrix(R, m, "R")

    P = [None] * (horizon + 1)
    K = [None] * horizon
    P[horizon] = as_weight_matrix(Qf, n, "Qf")
    for k in reversed(range(horizon)):
        K[k], P[k] = _riccati_step(A, B, Q, R, P[k + 1])
    return K, P


def solve_dare(A, B, Q, R, tol: float = 1e-10, max_iter: int = 10000) -> np.ndarray:
    """Discrete algebraic Riccati equation by fixed-point iteration from P = Q."""
    A, B = _check_system(A, B)
    n, m = B.shape
    Q = as_weight_matrix(Q, n, "Q")
    R = as_weight_matrix(R, m, "R")

    P = Q.copy()
    for it in range(int(max_iter)):
        _, P_next = _riccati_step(A, B, Q, R, P)
        if np.max(np.abs(P_next - P)) <= tol * max(1.0, float(np.max(np.abs(P_next)))):
            logger.debug("DARE converged after %d iterations", it + 1)
            return P_next
        P = P_next
    logger.warning("DARE did not converge within %d iterations", max_iter)
    return P
