"""Domain-specific exceptions for the compartment runtime."""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np


class PmxError(RuntimeError):
    """Base class for compartment runtime errors."""


class ConfigError(PmxError):
    """Raised when model, strategy or solver configuration is invalid."""


class ParameterDomainError(PmxError):
    """Raised when a parameter is missing, non-finite or outside its domain."""


class ScheduleError(PmxError):
    """Raised when an event schedule is malformed."""


class ClosedFormSingularity(PmxError):
    """Raised when closed-form coefficients hit a near-zero denominator."""


class NumericsError(PmxError):
    """Raised when a trajectory cannot be advanced to a finite state."""

    def __init__(
        self,
        message: str,
        *,
        interval: Optional[Tuple[float, float]] = None,
        last_state: Optional[np.ndarray] = None,
    ):
        super().__init__(message)
        self.interval = interval
        self.last_state = None if last_state is None else np.array(last_state, dtype=float, copy=True)


__all__ = [
    "PmxError",
    "ConfigError",
    "ParameterDomainError",
    "ScheduleError",
    "ClosedFormSingularity",
    "NumericsError",
]
