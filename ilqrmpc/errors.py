# -*- coding: utf-8 -*-
"""Exceptions raised by models and solver stages.

None of these escape `ILQRSolver.solve`: a `ModelEvaluationError` becomes a
DIVERGED result with its message attached, the other two are raised between
stages and turned into counters / status by the iteration controller.
"""

from __future__ import annotations

from typing import Optional, Sequence


class ModelEvaluationError(RuntimeError):
    """A system or cost model was evaluated outside its valid domain."""

    def __init__(self, message: str, time_indices: Optional[Sequence[int]] = None):
        super().__init__(message)
        self.time_indices = tuple(int(k) for k in time_indices) if time_indices else ()


class CurvatureSingularity(ArithmeticError):
    """Q_uu stayed indefinite even at the largest allowed damping."""

    def __init__(self, message: str, regularization: float, time_index: int, curvature_warnings: int = 0):
        super().__init__(message)
        self.regularization = float(regularization)
        self.time_index = int(time_index)
        self.curvature_warnings = int(curvature_warnings)


class LineSearchExhausted(ArithmeticError):
    """No candidate step size produced sufficient cost decrease."""

    def __init__(self, message: str, reference_cost: float, candidate_costs: Sequence[float] = ()):
        super().__init__(message)
        self.reference_cost = float(reference_cost)
        self.candidate_costs = tuple(float(c) for c in candidate_costs)
