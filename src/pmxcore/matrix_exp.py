"""Matrix-exponential solution of constant-coefficient compartment systems."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .errors import ConfigError
from .linalg import expm_action


def two_compartment_rate_matrix(k10: float, k12: float, k21: float, ka: float) -> np.ndarray:
    """Rate matrix of the gut -> central <-> peripheral system, ``dx/dt = K x``."""
    return np.array(
        [
            [-ka, 0.0, 0.0],
            [ka, -(k10 + k12), k21],
            [0.0, k12, -k21],
        ],
        dtype=float,
    )


def effect_compartment_rate_matrix(
    k10: float,
    k12: float,
    k21: float,
    ka: float,
    ke0: float,
) -> np.ndarray:
    """Two-compartment rate matrix extended with an effect compartment fed by the central one."""
    rates = np.zeros((4, 4), dtype=float)
    rates[:3, :3] = two_compartment_rate_matrix(k10, k12, k21, ka)
    rates[3, 1] = ke0
    rates[3, 3] = -ke0
    return rates


def solve_linear(dt: float, rate_matrix: np.ndarray, state: np.ndarray) -> np.ndarray:
    """Return ``exp(dt * K) @ state``."""
    if dt < 0.0:
        raise ValueError(f"elapsed time must be non-negative, got {dt}")
    return expm_action(rate_matrix, dt, state)


@dataclass(frozen=True, eq=False)
class MatrixExponentialSolver:
    rate_matrix: np.ndarray

    def __post_init__(self) -> None:
        rates = np.array(self.rate_matrix, dtype=float, copy=True)
        if rates.ndim != 2 or rates.shape[0] != rates.shape[1]:
            raise ConfigError(f"rate matrix must be square, got shape {rates.shape}")
        rates.setflags(write=False)
        object.__setattr__(self, "rate_matrix", rates)

    @property
    def n_states(self) -> int:
        return int(self.rate_matrix.shape[0])

    def solve(self, dt: float, state: np.ndarray) -> np.ndarray:
        vec = np.asarray(state, dtype=float)
        if vec.shape != (self.n_states,):
            raise ConfigError(f"state has shape {vec.shape}; expected ({self.n_states},)")
        return solve_linear(dt, self.rate_matrix, vec)


__all__ = [
    "MatrixExponentialSolver",
    "effect_compartment_rate_matrix",
    "solve_linear",
    "two_compartment_rate_matrix",
]
