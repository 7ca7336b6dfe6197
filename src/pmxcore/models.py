"""Compartment models that bind a parameter set to one solving strategy."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple, Union

import numpy as np

from .analytical import AnalyticalTwoCompartmentSolver
from .entities import SolverStrategy, is_compartment_index
from .errors import ConfigError, ScheduleError
from .matrix_exp import (
    MatrixExponentialSolver,
    effect_compartment_rate_matrix,
    two_compartment_rate_matrix,
)
from .param_graph import resolve_parameters
from .parameters import (
    EFFECT_CPT_PARAMETERS,
    FRIBERG_KARLSSON_PARAMETERS,
    TWO_CPT_PARAMETERS,
    validate_parameters,
)
from .stiff_ode import FallbackPolicy, RhsFn, integrate_interval

logger = logging.getLogger(__name__)

TWO_CPT_STATES = ("gut", "central", "peripheral")
EFFECT_CPT_STATES = TWO_CPT_STATES + ("effect",)
FRIBERG_KARLSSON_STATES = TWO_CPT_STATES + ("prol", "transit1", "transit2", "transit3", "circ")

_EPS = float(np.finfo(float).eps)


class CompartmentModel(Protocol):
    """Uniform interface the event scheduler drives."""

    variant: str
    strategy: SolverStrategy
    state_names: Tuple[str, ...]

    @property
    def n_states(self) -> int:
        ...

    def advance(self, state: np.ndarray, t0: float, t1: float) -> Tuple[np.ndarray, str]:
        ...

    def apply_dose(self, state: np.ndarray, cmt: int, amount: float) -> None:
        ...

    def describe(self) -> Dict[str, str]:
        ...


class _ModelBase:
    variant: str
    state_names: Tuple[str, ...]

    @property
    def n_states(self) -> int:
        return len(self.state_names)

    def apply_dose(self, state: np.ndarray, cmt: int, amount: float) -> None:
        if not is_compartment_index(cmt):
            raise ScheduleError(f"compartment {cmt!r} is not an integer index")
        cmt = int(cmt)
        if not 1 <= cmt <= self.n_states:
            raise ScheduleError(f"compartment {cmt} out of range 1..{self.n_states} for '{self.variant}'")
        state[cmt - 1] += amount


@dataclass(frozen=True)
class AnalyticalModel(_ModelBase):
    variant: str
    state_names: Tuple[str, ...]
    solver: AnalyticalTwoCompartmentSolver
    strategy: SolverStrategy = SolverStrategy.ANALYTICAL

    def advance(self, state: np.ndarray, t0: float, t1: float) -> Tuple[np.ndarray, str]:
        return self.solver.solve_with_method(t1 - t0, state)

    def describe(self) -> Dict[str, str]:
        return {"variant": self.variant, "strategy": self.strategy.value, "solver": "closed_form"}


@dataclass(frozen=True, eq=False)
class LinearModel(_ModelBase):
    variant: str
    state_names: Tuple[str, ...]
    solver: MatrixExponentialSolver
    strategy: SolverStrategy = SolverStrategy.MATRIX_EXPONENTIAL

    def advance(self, state: np.ndarray, t0: float, t1: float) -> Tuple[np.ndarray, str]:
        return self.solver.solve(t1 - t0, state), "matrix_exponential"

    def describe(self) -> Dict[str, str]:
        return {"variant": self.variant, "strategy": self.strategy.value, "solver": "matrix_exponential"}


@dataclass(frozen=True, eq=False)
class NonlinearModel(_ModelBase):
    variant: str
    state_names: Tuple[str, ...]
    rhs: RhsFn
    parameters: Any
    policy: FallbackPolicy = field(default_factory=FallbackPolicy)
    strategy: SolverStrategy = SolverStrategy.NONLINEAR

    def advance(self, state: np.ndarray, t0: float, t1: float) -> Tuple[np.ndarray, str]:
        result = integrate_interval(self.rhs, state, t0, t1, self.parameters, self.policy)
        return np.array(result.final_state, dtype=float, copy=True), result.method

    def describe(self) -> Dict[str, str]:
        return {
            "variant": self.variant,
            "strategy": self.strategy.value,
            "solver": f"{self.policy.primary.method}->{self.policy.robust.method}",
            "solver_identity": self.policy.identity(),
        }


@dataclass(frozen=True)
class FribergKarlssonParams:
    """Two-compartment PK driving a Friberg-Karlsson neutrophil chain."""

    ka: float
    k10: float
    k12: float
    k21: float
    V1: float
    ktr: float
    circ0: float
    gamma: float
    alpha: float

    @classmethod
    def from_mapping(cls, parameters: Mapping[str, float]) -> "FribergKarlssonParams":
        resolved = resolve_parameters(validate_parameters(FRIBERG_KARLSSON_PARAMETERS, parameters))
        return cls(**{item.name: resolved[item.name] for item in fields(cls)})


def linear_rhs(t: float, y: np.ndarray, rate_matrix: np.ndarray) -> np.ndarray:
    return rate_matrix @ y


def friberg_karlsson_rhs(t: float, y: np.ndarray, params: FribergKarlssonParams) -> np.ndarray:
    """Right-hand side of the 8-state myelosuppression system.

    States 0-2 are drug amounts (gut, central, peripheral). States 3-7 (proliferating,
    three transit pools, circulating) are stored as deviations from ``circ0`` and are
    re-based here. The circulating pool is floored at machine epsilon because it is
    raised to the fractional power ``gamma``.
    """
    p = params
    dydt = np.empty(8, dtype=float)
    dydt[0] = -p.ka * y[0]
    dydt[1] = p.ka * y[0] - (p.k10 + p.k12) * y[1] + p.k21 * y[2]
    dydt[2] = p.k12 * y[1] - p.k21 * y[2]

    e_drug = p.alpha * y[1] / p.V1
    prol = y[3] + p.circ0
    transit1 = y[4] + p.circ0
    transit2 = y[5] + p.circ0
    transit3 = y[6] + p.circ0
    circ = max(_EPS, y[7] + p.circ0)
    feedback = (p.circ0 / circ) ** p.gamma

    dydt[3] = p.ktr * prol * ((1.0 - e_drug) * feedback - 1.0)
    dydt[4] = p.ktr * (prol - transit1)
    dydt[5] = p.ktr * (transit1 - transit2)
    dydt[6] = p.ktr * (transit2 - transit3)
    dydt[7] = p.ktr * (transit3 - circ)
    return dydt


ModelBuilder = Callable[[Dict[str, float], FallbackPolicy], CompartmentModel]


def _two_cpt_rates(values: Mapping[str, float]) -> np.ndarray:
    resolved = resolve_parameters(values)
    return two_compartment_rate_matrix(resolved["k10"], resolved["k12"], resolved["k21"], resolved["ka"])


def _effect_cpt_rates(values: Mapping[str, float]) -> np.ndarray:
    resolved = resolve_parameters(values)
    return effect_compartment_rate_matrix(
        resolved["k10"], resolved["k12"], resolved["k21"], resolved["ka"], resolved["ke0"]
    )


def _build_two_cpt_analytical(values: Dict[str, float], policy: FallbackPolicy) -> CompartmentModel:
    return AnalyticalModel(
        variant="two_cpt",
        state_names=TWO_CPT_STATES,
        solver=AnalyticalTwoCompartmentSolver.from_parameters(values),
    )


def _build_two_cpt_linear(values: Dict[str, float], policy: FallbackPolicy) -> CompartmentModel:
    return LinearModel(
        variant="two_cpt",
        state_names=TWO_CPT_STATES,
        solver=MatrixExponentialSolver(_two_cpt_rates(values)),
    )


def _build_two_cpt_ode(values: Dict[str, float], policy: FallbackPolicy) -> CompartmentModel:
    return NonlinearModel(
        variant="two_cpt",
        state_names=TWO_CPT_STATES,
        rhs=linear_rhs,
        parameters=_two_cpt_rates(values),
        policy=policy,
    )


def _build_effect_cpt_linear(values: Dict[str, float], policy: FallbackPolicy) -> CompartmentModel:
    return LinearModel(
        variant="effect_cpt",
        state_names=EFFECT_CPT_STATES,
        solver=MatrixExponentialSolver(_effect_cpt_rates(values)),
    )


def _build_effect_cpt_ode(values: Dict[str, float], policy: FallbackPolicy) -> CompartmentModel:
    return NonlinearModel(
        variant="effect_cpt",
        state_names=EFFECT_CPT_STATES,
        rhs=linear_rhs,
        parameters=_effect_cpt_rates(values),
        policy=policy,
    )


def _build_friberg_karlsson(values: Dict[str, float], policy: FallbackPolicy) -> CompartmentModel:
    return NonlinearModel(
        variant="friberg_karlsson",
        state_names=FRIBERG_KARLSSON_STATES,
        rhs=friberg_karlsson_rhs,
        parameters=FribergKarlssonParams.from_mapping(values),
        policy=policy,
    )


@dataclass(frozen=True)
class ModelSpec:
    """Descriptor for a registered model variant."""

    state_names: Tuple[str, ...]
    parameter_names: Tuple[str, ...]
    default_strategy: SolverStrategy
    builders: Mapping[SolverStrategy, ModelBuilder]

    @property
    def strategies(self) -> Tuple[SolverStrategy, ...]:
        return tuple(self.builders)


MODEL_REGISTRY: Dict[str, ModelSpec] = {
    "two_cpt": ModelSpec(
        state_names=TWO_CPT_STATES,
        parameter_names=TWO_CPT_PARAMETERS,
        default_strategy=SolverStrategy.ANALYTICAL,
        builders={
            SolverStrategy.ANALYTICAL: _build_two_cpt_analytical,
            SolverStrategy.MATRIX_EXPONENTIAL: _build_two_cpt_linear,
            SolverStrategy.NONLINEAR: _build_two_cpt_ode,
        },
    ),
    "effect_cpt": ModelSpec(
        state_names=EFFECT_CPT_STATES,
        parameter_names=EFFECT_CPT_PARAMETERS,
        default_strategy=SolverStrategy.MATRIX_EXPONENTIAL,
        builders={
            SolverStrategy.MATRIX_EXPONENTIAL: _build_effect_cpt_linear,
            SolverStrategy.NONLINEAR: _build_effect_cpt_ode,
        },
    ),
    "friberg_karlsson": ModelSpec(
        state_names=FRIBERG_KARLSSON_STATES,
        parameter_names=FRIBERG_KARLSSON_PARAMETERS,
        default_strategy=SolverStrategy.NONLINEAR,
        builders={SolverStrategy.NONLINEAR: _build_friberg_karlsson},
    ),
}


def _resolve_strategy(value: Union[SolverStrategy, str, None], spec: ModelSpec) -> SolverStrategy:
    if value is None:
        return spec.default_strategy
    try:
        return SolverStrategy(value)
    except ValueError:
        known = ", ".join(item.value for item in SolverStrategy)
        raise ConfigError(f"unknown solver strategy '{value}'; expected one of {known}") from None


def build_model(
    variant: str,
    parameters: Mapping[str, float],
    *,
    strategy: Union[SolverStrategy, str, None] = None,
    policy: Optional[FallbackPolicy] = None,
) -> CompartmentModel:
    """Validate ``parameters`` and bind them to ``variant`` under one solving strategy."""
    spec = MODEL_REGISTRY.get(variant)
    if spec is None:
        known = ", ".join(sorted(MODEL_REGISTRY))
        raise ConfigError(f"unknown model variant '{variant}'; expected one of {known}")
    chosen = _resolve_strategy(strategy, spec)
    builder = spec.builders.get(chosen)
    if builder is None:
        supported = ", ".join(item.value for item in spec.strategies)
        raise ConfigError(f"variant '{variant}' does not support strategy '{chosen.value}' (supported: {supported})")
    values = validate_parameters(spec.parameter_names, parameters)
    model = builder(values, policy or FallbackPolicy())
    logger.debug("built %s model with %s strategy", variant, chosen.value)
    return model


__all__ = [
    "EFFECT_CPT_STATES",
    "FRIBERG_KARLSSON_STATES",
    "MODEL_REGISTRY",
    "TWO_CPT_STATES",
    "AnalyticalModel",
    "CompartmentModel",
    "FribergKarlssonParams",
    "LinearModel",
    "ModelSpec",
    "NonlinearModel",
    "build_model",
    "friberg_karlsson_rhs",
    "linear_rhs",
]
