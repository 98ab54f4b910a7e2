# -*- coding: utf-8 -*-
"""Backward Riccati recursion (iLQR backward pass).

Starting from the terminal expansion, for k = N-1 .. 0:

    Qx  = lx  + A^T (Vx + Vxx c)          Qu  = lu  + B^T (Vx + Vxx c)
    Qxx = lxx + A^T Vxx A                 Quu = luu + B^T Vxx B
    Qux = lux + B^T Vxx A

    k_ff = -(Quu + mu I)^{-1} Qu          K = -(Quu + mu I)^{-1} Qux

    Vx  = Qx  + K^T Quu k_ff + K^T Qu  + Qux^T k_ff
    Vxx = Qxx + K^T Quu K    + K^T Qux + Qux^T K

The expected cost change of a step of size alpha is alpha*dV1 + alpha^2*dV2
with dV1 = sum k_ff^T Qu and dV2 = 0.5 sum k_ff^T Quu k_ff.

If (Quu + mu I) is not positive definite somewhere, mu grows geometrically
and the whole sweep restarts. The recursion is inherently sequential: stage k
needs the value function of stage k+1.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

import numpy as np

from .errors import CurvatureSingularity
from .linearization import LQApproximation
from .utils import _finite, _sym, chol_solve

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValueFunction:
    """Quadratic cost-to-go  v + Vx^T dx + 0.5 dx^T Vxx dx."""

    Vxx: np.ndarray
    Vx: np.ndarray
    v: float


@dataclass
class BackwardPassResult:
    feedforward: np.ndarray  # (N, m) step directions k_ff
    gains: np.ndarray  # (N, m, n)
    values: List[ValueFunction]
    dV1: float
    dV2: float
    regularization: float
    curvature_warnings: int = 0

    def expected_change(self, alpha: float) -> float:
        """Predicted cost change for step size alpha (<= 0 for a descent direction)."""
        a = float(alpha)
        return a * self.dV1 + a * a * self.dV2


def _sweep(lq: LQApproximation, mu: float) -> BackwardPassResult:
    """One backward sweep at fixed damping; raises CurvatureSingularity on a non-PD Quu."""
    N = lq.horizon
    n = lq.steps[0].A.shape[0]
    m = lq.steps[0].B.shape[1]

    k_ff = np.zeros((N, m), dtype=float)
    K = np.zeros((N, m, n), dtype=float)
    values: List[ValueFunction] = [None] * (N + 1)

    Vx = lq.terminal.lx.copy()
    Vxx = lq.terminal.lxx.copy()
    v = float(lq.terminal.l)
    values[N] = ValueFunction(Vxx.copy(), Vx.copy(), v)
    dV1 = 0.0
    dV2 = 0.0
    I_m = np.eye(m)

    for k in reversed(range(N)):
        s = lq.steps[k]
        Vx_c = Vx + Vxx @ s.c

        Qx = s.lx + s.A.T @ Vx_c
        Qu = s.lu + s.B.T @ Vx_c
        Qxx = s.lxx + s.A.T @ Vxx @ s.A
        Quu = _sym(s.luu + s.B.T @ Vxx @ s.B)
        Qux = s.lux + s.B.T @ Vxx @ s.A

        try:
            sol = chol_solve(Quu + float(mu) * I_m, np.column_stack([Qu, Qux]))
        except (np.linalg.LinAlgError, FloatingPointError) as e:
            raise CurvatureSingularity(f"Q_uu + {mu:g} I not positive definite at k={k}", mu, k) from e
        kk = -sol[:, 0]
        Kk = -sol[:, 1:]

        k_ff[k] = kk
        K[k] = Kk

        dv1 = float(kk @ Qu)
        dv2 = 0.5 * float(kk @ (Quu @ kk))
        dV1 += dv1
        dV2 += dv2

        v = v + s.l + float(Vx @ s.c) + 0.5 * float(s.c @ (Vxx @ s.c)) + dv1 + dv2
        Vx = Qx + Kk.T @ Quu @ kk + Kk.T @ Qu + Qux.T @ kk
        Vxx = _sym(Qxx + Kk.T @ Quu @ Kk + Kk.T @ Qux + Qux.T @ Kk)

        if not (_finite(Vx) and _finite(Vxx)):
            raise CurvatureSingularity(f"non-finite value function at k={k}", mu, k)
        values[k] = ValueFunction(Vxx.copy(), Vx.copy(), float(v))

    return BackwardPassResult(
        feedforward=k_ff,
        gains=K,
        values=values,
        dV1=float(dV1),
        dV2=float(dV2),
        regularization=float(mu),
    )


def backward_pass(lq: LQApproximation, regularization: float, settings) -> BackwardPassResult:
    """Riccati recursion with Levenberg-Marquardt damping on Q_uu.

    Raises CurvatureSingularity if the damping needed exceeds
    `settings.regularization_cap`.
    """
    if lq.horizon < 1:
        raise ValueError("backward pass needs a horizon of at least one step")

    mu = float(regularization)
    cap = settings.regularization_cap
    warnings = 0

    while True:
        try:
            result = _sweep(lq, mu)
        except CurvatureSingularity as e:
            mu_next = max(mu * settings.regularization_factor, settings.regularization_min)
            warnings += 1
            if mu_next > cap:
                logger.warning("%s; damping cap %.3g reached", e, cap)
                raise CurvatureSingularity(
                    f"Q_uu not positive definite with damping up to {cap:g} (k={e.time_index})",
                    mu_next,
                    e.time_index,
                    warnings,
                ) from e
            logger.warning("%s; damping %.3g -> %.3g", e, mu, mu_next)
            mu = mu_next
            continue

        result.curvature_warnings = warnings
        return result
