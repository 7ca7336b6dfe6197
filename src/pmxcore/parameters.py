"""Parameter domain checks for the compartment model variants."""

from __future__ import annotations

import math
from typing import Dict, Mapping, Sequence

from .errors import ParameterDomainError

# Volumes, absorption/equilibration rates, transit time and baseline must be > 0.
STRICTLY_POSITIVE = frozenset({"V1", "V2", "ka", "ke0", "mtt", "circ0"})
# Zero clearance or zero drug effect switches the pathway off.
NON_NEGATIVE = frozenset({"CL", "Q", "gamma", "alpha"})

TWO_CPT_PARAMETERS = ("CL", "Q", "V1", "V2", "ka")
EFFECT_CPT_PARAMETERS = TWO_CPT_PARAMETERS + ("ke0",)
FRIBERG_KARLSSON_PARAMETERS = TWO_CPT_PARAMETERS + ("mtt", "circ0", "gamma", "alpha")


def validate_parameters(names: Sequence[str], parameters: Mapping[str, float]) -> Dict[str, float]:
    """Return the required parameters as floats or raise :class:`ParameterDomainError`.

    Every name in ``names`` must be present and finite. Members of
    :data:`STRICTLY_POSITIVE` must be ``> 0`` and members of :data:`NON_NEGATIVE` must be
    ``>= 0``. Extra entries in ``parameters`` are ignored.
    """
    missing = [name for name in names if name not in parameters]
    if missing:
        raise ParameterDomainError(f"missing parameters: {', '.join(missing)}")

    validated: Dict[str, float] = {}
    problems = []
    for name in names:
        try:
            value = float(parameters[name])
        except (TypeError, ValueError):
            problems.append(f"{name}={parameters[name]!r} is not a number")
            continue
        if not math.isfinite(value):
            problems.append(f"{name}={value} is not finite")
        elif name in STRICTLY_POSITIVE and value <= 0.0:
            problems.append(f"{name}={value} must be > 0")
        elif name in NON_NEGATIVE and value < 0.0:
            problems.append(f"{name}={value} must be >= 0")
        validated[name] = value
    if problems:
        raise ParameterDomainError("invalid parameters: " + "; ".join(problems))
    return validated


__all__ = [
    "EFFECT_CPT_PARAMETERS",
    "FRIBERG_KARLSSON_PARAMETERS",
    "NON_NEGATIVE",
    "STRICTLY_POSITIVE",
    "TWO_CPT_PARAMETERS",
    "validate_parameters",
]
