# -*- coding: utf-8 -*-
"""Iterative LQ trajectory optimization with receding-horizon control."""

from .backend import SequentialBackend, ThreadPoolBackend, make_backend
from .costs import QuadraticCost
from .dynamics import ContinuousSystem, DiscreteSystem, LinearSystem
from .errors import CurvatureSingularity, LineSearchExhausted, ModelEvaluationError
from .mpc import MPCSettings, RecedingHorizonController, run_closed_loop
from .settings import SolveResult, SolverPhase, SolveSettings, SolveStatus
from .solver import ILQRSolver
from .trajectory import FeedbackPolicy, Trajectory

__version__ = "0.1.0"

__all__ = [
    "ContinuousSystem",
    "CurvatureSingularity",
    "DiscreteSystem",
    "FeedbackPolicy",
    "ILQRSolver",
    "LinearSystem",
    "LineSearchExhausted",
    "MPCSettings",
    "ModelEvaluationError",
    "QuadraticCost",
    "RecedingHorizonController",
    "SequentialBackend",
    "SolveResult",
    "SolveSettings",
    "SolveStatus",
    "SolverPhase",
    "ThreadPoolBackend",
    "Trajectory",
    "make_backend",
    "run_closed_loop",
]
