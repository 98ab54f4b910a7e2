# -*- coding: utf-8 -*-
"""Utilities (linear algebra + angle wrapping).

Numerical robustness note
------------------------
The backward pass must know when the control Hessian Q_uu stops being positive
definite, because that is the signal to raise the Levenberg-Marquardt damping.
`chol_solve` therefore never falls back to SVD or LU: a failed factorization
raises `LinAlgError` and the caller decides how much damping to add.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np


# =============================================================================
# Small helpers
# =============================================================================

def _sym(A: np.ndarray) -> np.ndarray:
    """Symmetrize a matrix."""
    return 0.5 * (A + A.T)


def _finite(x) -> bool:
    return bool(np.all(np.isfinite(x)))


def _assert_finite(name: str, X: np.ndarray):
    if not _finite(X):
        raise FloatingPointError(f"Non-finite values in {name}")


def as_vector(x, size: Optional[int] = None, name: str = "vector") -> np.ndarray:
    """Flatten `x` into a float vector, optionally checking its length."""
    v = np.asarray(x, dtype=float).reshape(-1)
    if size is not None and v.size != int(size):
        raise ValueError(f"{name} has size {v.size}, expected {int(size)}")
    return v


def as_weight_matrix(W, n: int, name: str = "weight") -> np.ndarray:
    """Convert scalar/diag/vector/matrix weight into an (n,n) matrix."""
    A = np.asarray(W, dtype=float)
    if A.ndim == 0:
        return float(A) * np.eye(n)
    if A.ndim == 1:
        if A.shape[0] != n:
            raise ValueError(f"{name} vector has shape {A.shape}, expected ({n},)")
        return np.diag(A)
    if A.ndim == 2:
        if A.shape != (n, n):
            raise ValueError(f"{name} matrix has shape {A.shape}, expected ({n},{n})")
        return _sym(A)
    raise ValueError(f"unsupported {name} ndim={A.ndim}")


# =============================================================================
# Cholesky-based linear algebra
# =============================================================================

def chol_factor(A: np.ndarray) -> np.ndarray:
    """Lower Cholesky factor of a symmetric matrix; raises LinAlgError if not PD."""
    A = _sym(np.asarray(A, dtype=float))
    _assert_finite("chol_factor(A)", A)
    return np.linalg.cholesky(A)


def chol_solve(A: np.ndarray, B: np.ndarray) -> np.ndarray:
    """Solve A X = B for symmetric positive definite A.

    IMPORTANT: no jitter and no fallback. If A is not PD this raises
    `np.linalg.LinAlgError`.
    """
    B = np.asarray(B, dtype=float)
    _assert_finite("chol_solve(B)", B)
    L = chol_factor(A)
    Y = np.linalg.solve(L, B)
    return np.linalg.solve(L.T, Y)


# =============================================================================
# Angle wrapping
# =============================================================================

def angle_normalize(a: float) -> float:
    return (a + np.pi) % (2.0 * np.pi) - np.pi


def wrap_error(e: np.ndarray, wrap_idx: Optional[Sequence[int]] = None) -> np.ndarray:
    if not wrap_idx:
        return e
    e = np.asarray(e, dtype=float).copy()
    for i in wrap_idx:
        e[i] = angle_normalize(float(e[i]))
    return e


def is_grid_aligned(t: float, dt: float, tol: float = 1e-9) -> bool:
    """True if `t` is (numerically) an integer multiple of `dt`."""
    steps = float(t) / float(dt)
    return abs(steps - round(steps)) <= tol * max(1.0, abs(steps))
