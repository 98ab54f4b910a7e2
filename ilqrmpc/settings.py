# -*- coding: utf-8 -*-
"""Solve settings, status and result containers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .trajectory import FeedbackPolicy, Trajectory


@dataclass(frozen=True)
class SolveSettings:
    """Immutable configuration for one `ILQRSolver.solve` call.

    Args:
        max_iterations: Outer iterations (linearize -> backward -> forward).
        cost_tolerance_abs: Stop when the predicted or accepted cost decrease
            falls below this value.
        cost_tolerance_rel: Same, relative to the current cost.
        line_search_steps: Candidate step sizes, strictly decreasing, starting
            at 1.0, each in (0, 1].
        regularization_init: Damping added to Q_uu at the start of a solve.
        regularization_max_growth: Largest damping allowed, as a multiple of
            max(regularization_init, regularization_min). Needing more marks
            the iteration diverged.
        num_workers: 1 runs linearization and rollouts on the calling thread,
            more uses a thread pool of that size.
        regularization_factor: Geometric growth (and decay) of the damping.
        regularization_min: First non-zero damping when growing from zero.
        armijo_fraction: Fraction of the predicted decrease a step must
            realize to be accepted.
        max_line_search_failures: Consecutive failed line searches tolerated
            before the solve is declared diverged.
    """

    max_iterations: int = 50
    cost_tolerance_abs: float = 1e-8
    cost_tolerance_rel: float = 1e-6
    line_search_steps: Tuple[float, ...] = (1.0, 0.5, 0.25, 0.1, 0.05)
    regularization_init: float = 0.0
    regularization_max_growth: float = 1e10
    num_workers: int = 1
    regularization_factor: float = 10.0
    regularization_min: float = 1e-6
    armijo_fraction: float = 1e-4
    max_line_search_failures: int = 8

    def __post_init__(self):
        steps = tuple(float(a) for a in self.line_search_steps)
        object.__setattr__(self, "line_search_steps", steps)

        if int(self.max_iterations) < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.cost_tolerance_abs < 0.0 or self.cost_tolerance_rel < 0.0:
            raise ValueError("cost tolerances must be non-negative")
        if not steps:
            raise ValueError("line_search_steps must not be empty")
        if steps[0] != 1.0:
            raise ValueError(f"line_search_steps must start at 1.0, got {steps[0]}")
        if any(not (0.0 < a <= 1.0) for a in steps):
            raise ValueError(f"line_search_steps must lie in (0, 1], got {steps}")
        if any(b >= a for a, b in zip(steps, steps[1:])):
            raise ValueError(f"line_search_steps must be strictly decreasing, got {steps}")
        if self.regularization_init < 0.0:
            raise ValueError(f"regularization_init must be >= 0, got {self.regularization_init}")
        if self.regularization_min <= 0.0:
            raise ValueError(f"regularization_min must be > 0, got {self.regularization_min}")
        if self.regularization_max_growth < 1.0:
            raise ValueError(f"regularization_max_growth must be >= 1, got {self.regularization_max_growth}")
        if self.regularization_factor <= 1.0:
            raise ValueError(f"regularization_factor must be > 1, got {self.regularization_factor}")
        if int(self.num_workers) < 1:
            raise ValueError(f"num_workers must be >= 1, got {self.num_workers}")
        if not (0.0 <= self.armijo_fraction < 1.0):
            raise ValueError(f"armijo_fraction must lie in [0, 1), got {self.armijo_fraction}")
        if int(self.max_line_search_failures) < 1:
            raise ValueError(f"max_line_search_failures must be >= 1, got {self.max_line_search_failures}")

    @property
    def regularization_cap(self) -> float:
        return max(self.regularization_init, self.regularization_min) * self.regularization_max_growth


class SolveStatus(enum.Enum):
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    DIVERGED = "diverged"


class SolverPhase(enum.Enum):
    INITIALIZING = "initializing"
    LINEARIZING = "linearizing"
    BACKWARD_SOLVING = "backward_solving"
    FORWARD_SEARCHING = "forward_searching"
    CONVERGENCE_CHECK = "convergence_check"
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    DIVERGED = "diverged"

    @property
    def terminal(self) -> bool:
        return self in (SolverPhase.CONVERGED, SolverPhase.MAX_ITERATIONS, SolverPhase.DIVERGED)


@dataclass
class SolveResult:
    trajectory: Trajectory
    policy: FeedbackPolicy
    iterations: int
    cost: float
    status: SolveStatus
    cost_history: List[float] = field(default_factory=list)
    curvature_warnings: int = 0
    line_search_failures: int = 0
    regularization: float = 0.0
    timers: Dict[str, float] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def converged(self) -> bool:
        return self.status is SolveStatus.CONVERGED
