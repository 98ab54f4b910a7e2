# -*- coding: utf-8 -*-
"""System models (discrete-time dynamics + sensitivities).

The solver only talks to the `SystemModel` capability:

    propagate(x, u, k)  -> x_next
    linearize(x, u, k)  -> (A, B)

Both raise `ModelEvaluationError` outside the model's valid domain. Three
variants are provided and picked at construction:

- `DiscreteSystem`   wraps a map F(x, u) and differentiates it numerically.
- `LinearSystem`     x_next = A x + B u + c with exact sensitivities.
- `ContinuousSystem` wraps xdot = f(x, u) and discretizes it with explicit
  Euler substeps; sensitivities are taken on the discretized map.

Models must be stateless: the worker-pool backend calls them concurrently.
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol, Sequence, Tuple

import numpy as np

from .errors import ModelEvaluationError
from .utils import _finite, as_vector


class SystemModel(Protocol):
    state_dim: int
    control_dim: int

    def propagate(self, x: np.ndarray, u: np.ndarray, k: int) -> np.ndarray:
        ...

    def linearize(self, x: np.ndarray, u: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        ...


# =============================================================================
# Finite-difference sensitivities
# =============================================================================

def finite_difference_jacobians(
    F: Callable[[np.ndarray, np.ndarray], np.ndarray],
    x: np.ndarray,
    u: np.ndarray,
    *,
    central: bool = True,
    epsx: float = 1e-5,
    epsu: float = 1e-5,
    relx: float = 1e-6,
    relu: float = 1e-6,
) -> Tuple[np.ndarray, np.ndarray]:
    """A = dF/dx, B = dF/du at (x, u).

    Step sizes are *relative* per dimension,
      h_i = max(eps, rel * max(1, |x_i|)),
    which stays stable for strongly nonlinear maps where a fixed tiny step
    gives noisy Jacobians.
    """
    x = np.asarray(x, dtype=float).reshape(-1)
    u = np.asarray(u, dtype=float).reshape(-1)
    n, m = x.size, u.size
    A = np.zeros((n, n), dtype=float)
    B = np.zeros((n, m), dtype=float)
    I_n, I_m = np.eye(n), np.eye(m)

    if central:
        for i in range(n):
            hi = max(float(epsx), float(relx) * max(1.0, abs(float(x[i]))))
            A[:, i] = (F(x + hi * I_n[i], u) - F(x - hi * I_n[i], u)) / (2.0 * hi)
        for j in range(m):
            hj = max(float(epsu), float(relu) * max(1.0, abs(float(u[j]))))
            B[:, j] = (F(x, u + hj * I_m[j]) - F(x, u - hj * I_m[j])) / (2.0 * hj)
        return A, B

    f0 = F(x, u)
    for i in range(n):
        hi = max(float(epsx), float(relx) * max(1.0, abs(float(x[i]))))
        A[:, i] = (F(x + hi * I_n[i], u) - f0) / hi
    for j in range(m):
        hj = max(float(epsu), float(relu) * max(1.0, abs(float(u[j]))))
        B[:, j] = (F(x, u + hj * I_m[j]) - f0) / hj
    return A, B


def _checked_next_state(xn, n: int, k: int, max_state_norm: float) -> np.ndarray:
    xn = np.asarray(xn, dtype=float).reshape(-1)
    if xn.size != n:
        raise ModelEvaluationError(f"dynamics returned shape {xn.shape} at k={k}, expected ({n},)", [k])
    if not _finite(xn):
        raise ModelEvaluationError(f"non-finite next state at k={k}", [k])
    if float(np.linalg.norm(xn)) > max_state_norm:
        raise ModelEvaluationError(
            f"state norm {float(np.linalg.norm(xn)):.3g} exceeds {max_state_norm:.3g} at k={k}", [k]
        )
    return xn


# =============================================================================
# Variants
# =============================================================================

class DiscreteSystem:
    """x_next = F(x, u) with numerical (or user supplied) sensitivities.

    `F` may return NaNs to flag states outside its validity region (e.g. an
    Euler-angle singularity); that and any state whose norm exceeds
    `max_state_norm` is reported as a `ModelEvaluationError`. `wrap_idx` lists
    angle components; rollouts wrap their deviations into [-pi, pi).
    """

    def __init__(
        self,
        F: Callable[[np.ndarray, np.ndarray], np.ndarray],
        state_dim: int,
        control_dim: int,
        *,
        jacobians: Optional[Callable[[np.ndarray, np.ndarray], Tuple[np.ndarray, np.ndarray]]] = None,
        central_diff: bool = True,
        max_state_norm: float = 1e6,
        wrap_idx: Optional[Sequence[int]] = None,
        dt: Optional[float] = None,
    ):
        self.F = F
        self.wrap_idx = list(wrap_idx) if wrap_idx else []
        self.state_dim = int(state_dim)
        self.control_dim = int(control_dim)
        self.jacobians = jacobians
        self.central_diff = bool(central_diff)
        self.max_state_norm = float(max_state_norm)
        self.dt = dt

    def _step(self, x, u):
        return np.asarray(self.F(x, u), dtype=float).reshape(-1)

    def propagate(self, x, u, k: int = 0) -> np.ndarray:
        x = as_vector(x, self.state_dim, "state")
        u = as_vector(u, self.control_dim, "control")
        if not (_finite(x) and _finite(u)):
            raise ModelEvaluationError(f"non-finite state/control at k={k}", [k])
        return _checked_next_state(self._step(x, u), self.state_dim, k, self.max_state_norm)

    def linearize(self, x, u, k: int = 0) -> Tuple[np.ndarray, np.ndarray]:
        x = as_vector(x, self.state_dim, "state")
        u = as_vector(u, self.control_dim, "control")
        if self.jacobians is not None:
            A, B = self.jacobians(x, u)
        else:
            A, B = finite_difference_jacobians(self._step, x, u, central=self.central_diff)
        A = np.asarray(A, dtype=float).reshape(self.state_dim, self.state_dim)
        B = np.asarray(B, dtype=float).reshape(self.state_dim, self.control_dim)
        if not (_finite(A) and _finite(B)):
            raise ModelEvaluationError(f"non-finite sensitivities at k={k}", [k])
        return A, B


class LinearSystem:
    """x_next = A x + B u + c."""

    def __init__(self, A, B, c=None, *, max_state_norm: float = np.inf, dt: Optional[float] = None):
        self.A = np.atleast_2d(np.asarray(A, dtype=float))
        self.B = np.asarray(B, dtype=float)
        n = self.A.shape[0]
        if self.A.shape != (n, n):
            raise ValueError(f"A has shape {self.A.shape}, expected square")
        if self.B.ndim == 1:
            self.B = self.B.reshape(n, -1)
        if self.B.shape[0] != n:
            raise ValueError(f"B has shape {self.B.shape}, expected ({n}, m)")
        self.c = np.zeros(n) if c is None else as_vector(c, n, "c")
        self.state_dim = n
        self.control_dim = self.B.shape[1]
        self.max_state_norm = float(max_state_norm)
        self.dt = dt

    def propagate(self, x, u, k: int = 0) -> np.ndarray:
        x = as_vector(x, self.state_dim, "state")
        u = as_vector(u, self.control_dim, "control")
        return _checked_next_state(self.A @ x + self.B @ u + self.c, self.state_dim, k, self.max_state_norm)

    def linearize(self, x, u, k: int = 0) -> Tuple[np.ndarray, np.ndarray]:
        return self.A.copy(), self.B.copy()


class ContinuousSystem:
    """xdot = f(x, u) discretized with `substeps` explicit Euler steps over `dt`."""

    def __init__(
        self,
        f: Callable[[np.ndarray, np.ndarray], np.ndarray],
        state_dim: int,
        control_dim: int,
        dt: float,
        *,
        substeps: int = 1,
        central_diff: bool = True,
        max_state_norm: float = 1e6,
    ):
        if dt <= 0.0:
            raise ValueError(f"dt must be positive, got {dt}")
        if int(substeps) < 1:
            raise ValueError(f"substeps must be >= 1, got {substeps}")
        self.f = f
        self.state_dim = int(state_dim)
        self.control_dim = int(control_dim)
        self.dt = float(dt)
        self.substeps = int(substeps)
        self.central_diff = bool(central_diff)
        self.max_state_norm = float(max_state_norm)

    def _step(self, x, u):
        h = self.dt / self.substeps
        for _ in range(self.substeps):
            x = x + h * np.asarray(self.f(x, u), dtype=float).reshape(-1)
        return x

    def propagate(self, x, u, k: int = 0) -> np.ndarray:
        x = as_vector(x, self.state_dim, "state")
        u = as_vector(u, self.control_dim, "control")
        if not (_finite(x) and _finite(u)):
            raise ModelEvaluationError(f"non-finite state/control at k={k}", [k])
        return _checked_next_state(self._step(x, u), self.state_dim, k, self.max_state_norm)

    def linearize(self, x, u, k: int = 0) -> Tuple[np.ndarray, np.ndarray]:
        x = as_vector(x, self.state_dim, "state")
        u = as_vector(u, self.control_dim, "control")
        A, B = finite_difference_jacobians(self._step, x, u, central=self.central_diff)
        if not (_finite(A) and _finite(B)):
            raise ModelEvaluationError(f"non-finite sensitivities at k={k}", [k])
        return A, B
