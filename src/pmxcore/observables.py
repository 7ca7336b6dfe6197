"""Projections from compartment states onto observable quantities."""

from __future__ import annotations

import numpy as np

from .entities import Trajectory


def central_concentration(trajectory: Trajectory, V1: float) -> np.ndarray:
    """Plasma concentration, central amount over central volume."""
    return trajectory.state("central") / float(V1)


def effect_concentration(trajectory: Trajectory, V1: float) -> np.ndarray:
    # The effect compartment is fed at ke0 * central amount, so it shares V1.
    return trajectory.state("effect") / float(V1)


def emax_response(concentration: np.ndarray, emax: float, ec50: float, e0: float = 0.0) -> np.ndarray:
    """Saturating Michaelis-Menten (Emax) response ``e0 + emax * C / (ec50 + C)``."""
    conc = np.asarray(concentration, dtype=float)
    return e0 + emax * conc / (ec50 + conc)


def neutrophil_count(trajectory: Trajectory, circ0: float) -> np.ndarray:
    """Absolute circulating neutrophils from the stored deviation from ``circ0``."""
    return trajectory.state("circ") + float(circ0)


__all__ = [
    "central_concentration",
    "effect_concentration",
    "emax_response",
    "neutrophil_count",
]
