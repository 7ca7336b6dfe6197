"""Public exports for the compartment trajectory runtime."""

from .analytical import AnalyticalTwoCompartmentSolver
from .entities import SEMANTICS_VERSION, Event, EventKind, SolverStrategy, Trajectory
from .errors import (
    ClosedFormSingularity,
    ConfigError,
    NumericsError,
    ParameterDomainError,
    PmxError,
    ScheduleError,
)
from .matrix_exp import MatrixExponentialSolver
from .models import MODEL_REGISTRY, CompartmentModel, build_model
from .segment_integrator import SEGMENT_LOG_FIELDS, run_event_schedule, validate_schedule
from .simulation import schedule_from_frame, simulate, simulate_draws
from .stiff_ode import FallbackPolicy, SolverConfig, integrate

__all__ = [
    "MODEL_REGISTRY",
    "SEGMENT_LOG_FIELDS",
    "SEMANTICS_VERSION",
    "AnalyticalTwoCompartmentSolver",
    "ClosedFormSingularity",
    "CompartmentModel",
    "ConfigError",
    "Event",
    "EventKind",
    "FallbackPolicy",
    "MatrixExponentialSolver",
    "NumericsError",
    "ParameterDomainError",
    "PmxError",
    "ScheduleError",
    "SolverConfig",
    "SolverStrategy",
    "Trajectory",
    "build_model",
    "integrate",
    "run_event_schedule",
    "schedule_from_frame",
    "simulate",
    "simulate_draws",
    "validate_schedule",
]
