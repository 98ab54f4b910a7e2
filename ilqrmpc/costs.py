# -*- coding: utf-8 -*-
"""Cost models.

The solver consumes the `CostModel` capability:

    stage_cost(x, u, k)                -> l
    stage_cost_derivatives(x, u, k)    -> (lx, lu, lxx, luu, lux)
    terminal_cost(x, k)                -> lf
    terminal_cost_derivatives(x, k)    -> (lfx, lfxx)

`QuadraticCost` is the tracking cost used by the benchmark systems:

    l(x,u,k)  = 0.5 e^T Q e + 0.5 du^T R du (+ extra(x,u))
    lf(x,N)   = 0.5 e^T Qf e

with e = wrap(x - x_ref[k]) and du = u - u_ref[k].
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol, Sequence, Tuple

import numpy as np

from .utils import _sym, as_weight_matrix, wrap_error

StageDerivatives = Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]
ExtraStageCost = Callable[[np.ndarray, np.ndarray], Tuple[float, np.ndarray, np.ndarray]]


class CostModel(Protocol):
    def stage_cost(self, x: np.ndarray, u: np.ndarray, k: int) -> float:
        ...

    def stage_cost_derivatives(self, x: np.ndarray, u: np.ndarray, k: int) -> StageDerivatives:
        ...

    def terminal_cost(self, x: np.ndarray, k: int) -> float:
        ...

    def terminal_cost_derivatives(self, x: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        ...


def _as_reference(ref, dim: int, name: str) -> np.ndarray:
    """A single row (constant reference) or one row per time index."""
    R = np.asarray(ref, dtype=float)
    if R.ndim <= 1:
        R = R.reshape(1, -1)
    if R.shape[1] != dim:
        raise ValueError(f"{name} has {R.shape[1]} columns, expected {dim}")
    return R


class QuadraticCost:
    """Quadratic tracking cost toward a goal state or a reference trajectory.

    `x_ref` / `u_ref` are either a single vector or an array with one row per
    time index; indices beyond the last row reuse the last row, so a receding
    horizon can run past the end of a finite reference.

    `extra_stage_cost(x, u) -> (c, cx, cxx)` optionally adds a smooth state
    cost (e.g. soft obstacle penalties) together with its gradient and Hessian.
    """

    def __init__(
        self,
        Q,
        R,
        Qf,
        x_ref,
        u_ref=None,
        *,
        wrap_idx: Optional[Sequence[int]] = None,
        extra_stage_cost: Optional[ExtraStageCost] = None,
    ):
        self.x_ref = _as_reference(x_ref, np.asarray(x_ref).shape[-1], "x_ref")
        n = self.x_ref.shape[1]
        self.Q = as_weight_matrix(Q, n, "Q")
        self.Qf = as_weight_matrix(Qf, n, "Qf")
        R_arr = np.asarray(R, dtype=float)
        m = 1 if R_arr.ndim == 0 else R_arr.shape[0]
        self.R = as_weight_matrix(R, m, "R")
        self.u_ref = _as_reference(np.zeros(m) if u_ref is None else u_ref, m, "u_ref")
        self.wrap_idx = list(wrap_idx) if wrap_idx else []
        self.extra_stage_cost = extra_stage_cost
        self.state_dim = n
        self.control_dim = m

    def _x_ref(self, k: int) -> np.ndarray:
        return self.x_ref[min(max(int(k), 0), self.x_ref.shape[0] - 1)]

    def _u_ref(self, k: int) -> np.ndarray:
        return self.u_ref[min(max(int(k), 0), self.u_ref.shape[0] - 1)]

    def _errors(self, x, u, k):
        e = wrap_error(np.asarray(x, dtype=float).reshape(-1) - self._x_ref(k), self.wrap_idx)
        du = np.asarray(u, dtype=float).reshape(-1) - self._u_ref(k)
        return e, du

    def stage_cost(self, x, u, k: int = 0) -> float:
        e, du = self._errors(x, u, k)
        c = 0.5 * float(e @ (self.Q @ e)) + 0.5 * float(du @ (self.R @ du))
        if self.extra_stage_cost is not None:
            c_extra, _, _ = self.extra_stage_cost(x, u)
            c += float(c_extra)
        return float(c)

    def stage_cost_derivatives(self, x, u, k: int = 0) -> StageDerivatives:
        e, du = self._errors(x, u, k)
        lx = self.Q @ e
        lu = self.R @ du
        lxx = self.Q.copy()
        luu = self.R.copy()
        lux = np.zeros((self.control_dim, self.state_dim), dtype=float)
        if self.extra_stage_cost is not None:
            _, cx_extra, cxx_extra = self.extra_stage_cost(x, u)
            lx = lx + np.asarray(cx_extra, dtype=float).reshape(-1)
            lxx = _sym(lxx + np.asarray(cxx_extra, dtype=float))
        return lx, lu, lxx, luu, lux

    def terminal_cost(self, x, k: int = 0) -> float:
        e = wrap_error(np.asarray(x, dtype=float).reshape(-1) - self._x_ref(k), self.wrap_idx)
        return 0.5 * float(e @ (self.Qf @ e))

    def terminal_cost_derivatives(self, x, k: int = 0) -> Tuple[np.ndarray, np.ndarray]:
        e = wrap_error(np.asarray(x, dtype=float).reshape(-1) - self._x_ref(k), self.wrap_idx)
        return self.Qf @ e, self.Qf.copy()
