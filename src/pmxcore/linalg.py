"""Small dense linear algebra shared by the linear solving strategies."""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np
from scipy.linalg import expm

SINGULARITY_RTOL = 1e-6


def matrix_exponential(matrix: np.ndarray, t: float) -> np.ndarray:
    """Return the propagator ``exp(t * matrix)``."""
    rate = np.asarray(matrix, dtype=float)
    if t == 0.0:
        return np.eye(rate.shape[0], dtype=float)
    return expm(float(t) * rate)


def expm_action(matrix: np.ndarray, t: float, vector: np.ndarray) -> np.ndarray:
    """Return ``exp(t * matrix) @ vector``.

    Compartment systems here are at most 8x8, so the propagator is formed densely with
    the scaling-and-squaring Padé approximant. A zero span skips it entirely. Non-finite
    entries are not trapped; they surface in the returned vector.
    """
    state = np.asarray(vector, dtype=float)
    if t == 0.0:
        return state.copy()
    return matrix_exponential(matrix, t) @ state


def two_compartment_eigenvalues(k10: float, k12: float, k21: float) -> Tuple[float, float]:
    """Disposition rates ``alpha1 >= alpha2 >= 0`` of the central/peripheral pair.

    Roots of ``s^2 - (k10 + k12 + k21) s + k10 * k21``. The smaller root is taken from the
    product of roots so that it keeps full precision when ``k10 * k21`` is small.
    """
    ksum = k10 + k12 + k21
    disc = max(ksum * ksum - 4.0 * k10 * k21, 0.0)
    alpha1 = 0.5 * (ksum + math.sqrt(disc))
    if alpha1 == 0.0:
        return 0.0, 0.0
    alpha2 = (k10 * k21) / alpha1
    return alpha1, alpha2


def nearly_equal(a: float, b: float, rtol: float = SINGULARITY_RTOL) -> bool:
    """True when ``a - b`` is too small to divide by without losing the result."""
    scale = max(abs(a), abs(b))
    return abs(a - b) <= rtol * scale


__all__ = [
    "SINGULARITY_RTOL",
    "expm_action",
    "matrix_exponential",
    "nearly_equal",
    "two_compartment_eigenvalues",
]
