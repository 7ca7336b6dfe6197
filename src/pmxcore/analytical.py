"""Closed-form solution of the two-compartment model with first-order absorption.

States are ordered ``(gut, central, peripheral)``. The central/peripheral pair has
disposition rates ``alpha1`` and ``alpha2`` (see :func:`two_compartment_eigenvalues`) and
the gut empties at ``ka``. Every initial amount contributes a sum of exponentials whose
partial-fraction coefficients depend on the compartment it starts in; contributions
add by linearity.

The coefficients divide by ``ka - alpha_i`` and ``alpha1 - alpha2``. When one of those
collapses the closed form raises :class:`ClosedFormSingularity` and the solver computes
that step with the matrix exponential of the same system instead.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Mapping, Tuple

import numpy as np

from .errors import ClosedFormSingularity
from .linalg import SINGULARITY_RTOL, nearly_equal, two_compartment_eigenvalues
from .matrix_exp import solve_linear, two_compartment_rate_matrix
from .param_graph import resolve_parameters

logger = logging.getLogger(__name__)

CLOSED_FORM = "closed_form"
MATRIX_EXPONENTIAL = "matrix_exponential"


def two_compartment_closed_form(
    dt: float,
    state: np.ndarray,
    k10: float,
    k12: float,
    k21: float,
    ka: float,
    *,
    rtol: float = SINGULARITY_RTOL,
) -> np.ndarray:
    gut0, central0, periph0 = (float(value) for value in state)
    alpha1, alpha2 = two_compartment_eigenvalues(k10, k12, k21)
    if nearly_equal(alpha1, alpha2, rtol):
        raise ClosedFormSingularity(f"coincident disposition rates alpha1={alpha1:g}, alpha2={alpha2:g}")

    e1 = math.exp(-alpha1 * dt)
    e2 = math.exp(-alpha2 * dt)
    d12 = alpha2 - alpha1
    result = np.zeros(3, dtype=float)

    if gut0 != 0.0:
        if nearly_equal(ka, alpha1, rtol) or nearly_equal(ka, alpha2, rtol):
            raise ClosedFormSingularity(
                f"absorption rate ka={ka:g} coincides with a disposition rate ({alpha1:g}, {alpha2:g})"
            )
        ea = math.exp(-ka * dt)
        denom1 = (ka - alpha1) * d12
        denom2 = (ka - alpha2) * -d12
        result[0] += gut0 * ea

        a1 = ka * (k21 - alpha1) / denom1
        a2 = ka * (k21 - alpha2) / denom2
        result[1] += gut0 * (a1 * e1 + a2 * e2 - (a1 + a2) * ea)

        a1 = ka * k12 / denom1
        a2 = ka * k12 / denom2
        result[2] += gut0 * (a1 * e1 + a2 * e2 - (a1 + a2) * ea)

    if central0 != 0.0:
        a1 = (k21 - alpha1) / d12
        a2 = (k21 - alpha2) / -d12
        result[1] += central0 * (a1 * e1 + a2 * e2)
        a1 = k12 / d12
        result[2] += central0 * a1 * (e1 - e2)

    if periph0 != 0.0:
        a1 = k21 / d12
        result[1] += periph0 * a1 * (e1 - e2)
        a1 = (k10 + k12 - alpha1) / d12
        a2 = (k10 + k12 - alpha2) / -d12
        result[2] += periph0 * (a1 * e1 + a2 * e2)

    return result


@dataclass(frozen=True)
class AnalyticalTwoCompartmentSolver:
    k10: float
    k12: float
    k21: float
    ka: float
    rtol: float = SINGULARITY_RTOL

    @classmethod
    def from_parameters(cls, parameters: Mapping[str, float]) -> "AnalyticalTwoCompartmentSolver":
        resolved = resolve_parameters(parameters)
        return cls(
            k10=resolved["k10"],
            k12=resolved["k12"],
            k21=resolved["k21"],
            ka=resolved["ka"],
        )

    def rate_matrix(self) -> np.ndarray:
        return two_compartment_rate_matrix(self.k10, self.k12, self.k21, self.ka)

    def solve(self, dt: float, state: np.ndarray) -> np.ndarray:
        """Advance ``state`` by ``dt`` hours; ``dt`` must be non-negative."""
        return self.solve_with_method(dt, state)[0]

    def solve_with_method(self, dt: float, state: np.ndarray) -> Tuple[np.ndarray, str]:
        """Like :meth:`solve`, also naming the path that produced the result.

        The label is ``"closed_form"`` or ``"matrix_exponential"`` when the closed form
        hit a singularity for this particular state.
        """
        if dt < 0.0:
            raise ValueError(f"elapsed time must be non-negative, got {dt}")
        vec = np.asarray(state, dtype=float)
        if dt == 0.0:
            return vec.copy(), CLOSED_FORM
        try:
            result = two_compartment_closed_form(
                dt, vec, self.k10, self.k12, self.k21, self.ka, rtol=self.rtol
            )
        except ClosedFormSingularity as exc:
            logger.debug("closed form singular (%s); using matrix exponential for dt=%g", exc, dt)
            return solve_linear(dt, self.rate_matrix(), vec), MATRIX_EXPONENTIAL
        return result, CLOSED_FORM

    def is_singular(self) -> bool:
        alpha1, alpha2 = two_compartment_eigenvalues(self.k10, self.k12, self.k21)
        return (
            nearly_equal(alpha1, alpha2, self.rtol)
            or nearly_equal(self.ka, alpha1, self.rtol)
            or nearly_equal(self.ka, alpha2, self.rtol)
        )


__all__ = ["AnalyticalTwoCompartmentSolver", "two_compartment_closed_form"]
