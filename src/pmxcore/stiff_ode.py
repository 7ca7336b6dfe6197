"""Adaptive ODE integration with a non-stiff to stiff fallback.

Every call runs at most two attempts over the same interval: the primary (explicit)
method first, then the robust (implicit) one. An attempt fails when scipy reports a
failure, when the configured step budget runs out, when the right-hand side raises an
arithmetic error, or when the state stops being finite. Two failures raise
:class:`NumericsError`.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.integrate import BDF, DOP853, LSODA, RK23, RK45, Radau

from .errors import ConfigError, NumericsError

logger = logging.getLogger(__name__)

StateVector = np.ndarray
RhsFn = Callable[[float, StateVector, Any], StateVector]

_METHODS = {
    "RK45": RK45,
    "RK23": RK23,
    "DOP853": DOP853,
    "BDF": BDF,
    "Radau": Radau,
    "LSODA": LSODA,
}
STIFF_METHODS = frozenset({"BDF", "Radau", "LSODA"})


def _looks_like_step_failure(message: str) -> bool:
    text = (message or "").lower()
    return ("step size" in text) or ("strictly increasing" in text)


@dataclass(frozen=True)
class SolverConfig:
    """Configuration of one integration method."""

    method: str
    rtol: float = 1e-6
    atol: float = 1e-6
    max_step: float = np.inf
    max_num_steps: int = 10_000

    def __post_init__(self) -> None:
        if self.method not in _METHODS:
            known = ", ".join(sorted(_METHODS))
            raise ConfigError(f"unknown integration method '{self.method}'; expected one of {known}")
        if not (self.rtol > 0.0 and self.atol > 0.0):
            raise ConfigError(f"tolerances must be positive (rtol={self.rtol}, atol={self.atol})")
        if not self.max_step > 0.0:
            raise ConfigError(f"max_step must be positive, got {self.max_step}")
        if int(self.max_num_steps) < 1:
            raise ConfigError(f"max_num_steps must be at least 1, got {self.max_num_steps}")

    def as_dict(self) -> Dict[str, object]:
        return {
            "method": self.method,
            "rtol": self.rtol,
            "atol": self.atol,
            "max_step": self.max_step,
            "max_num_steps": int(self.max_num_steps),
        }

    def identity(self) -> str:
        payload = json.dumps(self.as_dict(), sort_keys=True)
        return hashlib.sha256(payload.encode("utf8")).hexdigest()


@dataclass(frozen=True)
class FallbackPolicy:
    """Primary method tried first, robust method used when the primary fails."""

    primary: SolverConfig = field(default_factory=lambda: SolverConfig(method="RK45"))
    robust: SolverConfig = field(default_factory=lambda: SolverConfig(method="BDF"))

    def __post_init__(self) -> None:
        if self.robust.method not in STIFF_METHODS:
            logger.warning("fallback method %s is not stiff-capable", self.robust.method)

    @classmethod
    def from_tolerances(
        cls,
        rtol: float = 1e-6,
        atol: float = 1e-6,
        max_num_steps: int = 10_000,
        *,
        primary: str = "RK45",
        robust: str = "BDF",
    ) -> "FallbackPolicy":
        return cls(
            primary=SolverConfig(method=primary, rtol=rtol, atol=atol, max_num_steps=max_num_steps),
            robust=SolverConfig(method=robust, rtol=rtol, atol=atol, max_num_steps=max_num_steps),
        )

    def as_dict(self) -> Dict[str, object]:
        return {"primary": self.primary.as_dict(), "robust": self.robust.as_dict()}

    def identity(self) -> str:
        payload = json.dumps(self.as_dict(), sort_keys=True)
        return hashlib.sha256(payload.encode("utf8")).hexdigest()


@dataclass(frozen=True)
class IntegrationAttempt:
    method: str
    success: bool
    message: str
    n_steps: int
    t_reached: float
    failure: Optional[str] = None  # {"solver","step_size","step_budget","non_finite","arithmetic"}


@dataclass(frozen=True, eq=False)
class IntegrationResult:
    times: np.ndarray
    states: np.ndarray
    method: str
    attempts: Tuple[IntegrationAttempt, ...]

    @property
    def used_fallback(self) -> bool:
        return any(not attempt.success for attempt in self.attempts)

    @property
    def final_state(self) -> np.ndarray:
        return self.states[-1]


def _run_attempt(
    fun: Callable[[float, np.ndarray], np.ndarray],
    t0: float,
    times: np.ndarray,
    y0: np.ndarray,
    solver: SolverConfig,
) -> Tuple[IntegrationAttempt, np.ndarray, np.ndarray]:
    """Step ``solver.method`` from ``t0`` through ``times``.

    Returns the attempt record, the states at ``times`` (valid only on success) and the
    last finite state reached.
    """
    out = np.empty((times.size, y0.size), dtype=float)
    idx = 0
    while idx < times.size and times[idx] <= t0:
        out[idx] = y0
        idx += 1
    last_good = y0.copy()
    t_good = t0

    def _failed(kind: str, message: str, n_steps: int) -> Tuple[IntegrationAttempt, np.ndarray, np.ndarray]:
        attempt = IntegrationAttempt(
            method=solver.method,
            success=False,
            message=message,
            n_steps=n_steps,
            t_reached=t_good,
            failure=kind,
        )
        return attempt, out, last_good

    if idx == times.size:
        return IntegrationAttempt(solver.method, True, "zero-length span", 0, t0), out, last_good

    try:
        stepper = _METHODS[solver.method](
            fun,
            t0,
            y0.copy(),
            float(times[-1]),
            rtol=solver.rtol,
            atol=solver.atol,
            max_step=solver.max_step,
        )
    except ArithmeticError as exc:
        return _failed("arithmetic", f"right-hand side failed at t={t0:g}: {exc}", 0)

    n_steps = 0
    while idx < times.size:
        if n_steps >= solver.max_num_steps:
            return _failed(
                "step_budget",
                f"step budget of {solver.max_num_steps} exhausted at t={t_good:g}",
                n_steps,
            )
        try:
            message = stepper.step()
        except ArithmeticError as exc:
            return _failed("arithmetic", f"right-hand side failed near t={t_good:g}: {exc}", n_steps)
        n_steps += 1
        if stepper.status == "failed":
            text = message or "solver failed"
            kind = "step_size" if _looks_like_step_failure(text) else "solver"
            return _failed(kind, text, n_steps)
        if not np.all(np.isfinite(stepper.y)):
            return _failed("non_finite", f"non-finite state at t={stepper.t:g}", n_steps)
        last_good = np.array(stepper.y, dtype=float, copy=True)
        t_good = float(stepper.t)
        if times[idx] <= stepper.t:
            dense = stepper.dense_output()
            while idx < times.size and times[idx] <= stepper.t:
                if times[idx] == stepper.t:
                    out[idx] = stepper.y
                else:
                    out[idx] = dense(times[idx])
                idx += 1
        if stepper.status == "finished":
            break

    if idx < times.size or not np.all(np.isfinite(out)):
        return _failed("non_finite", "requested output could not be evaluated", n_steps)
    attempt = IntegrationAttempt(
        method=solver.method,
        success=True,
        message="ok",
        n_steps=n_steps,
        t_reached=t_good,
    )
    return attempt, out, last_good


def integrate(
    rhs: RhsFn,
    t0: float,
    times: Sequence[float],
    y0: StateVector,
    parameters: Any = None,
    policy: Optional[FallbackPolicy] = None,
) -> IntegrationResult:
    """Integrate ``dy/dt = rhs(t, y, parameters)`` from ``t0`` and report ``y`` at ``times``."""
    policy = policy or FallbackPolicy()
    start = float(t0)
    request = np.atleast_1d(np.asarray(times, dtype=float))
    if request.ndim != 1 or request.size == 0:
        raise ConfigError("requested times must be a non-empty 1-D sequence")
    if not np.all(np.isfinite(request)) or request[0] < start or np.any(np.diff(request) < 0.0):
        raise ConfigError("requested times must be finite, non-decreasing and not precede t0")
    state0 = np.array(y0, dtype=float, copy=True)
    if state0.ndim != 1:
        raise ConfigError(f"initial state must be a vector, got shape {state0.shape}")
    if not np.all(np.isfinite(state0)):
        raise NumericsError(
            f"initial state at t={start:g} is not finite",
            interval=(start, float(request[-1])),
            last_state=state0,
        )

    def fun(t: float, y: np.ndarray) -> np.ndarray:
        return rhs(t, y, parameters)

    stop = float(request[-1])
    attempts: List[IntegrationAttempt] = []
    best_state = state0
    best_time = start
    for config in (policy.primary, policy.robust):
        attempt, states, last_good = _run_attempt(fun, start, request, state0, config)
        attempts.append(attempt)
        if attempt.success:
            return IntegrationResult(
                times=request,
                states=states,
                method=config.method,
                attempts=tuple(attempts),
            )
        if attempt.t_reached >= best_time:
            best_state, best_time = last_good, attempt.t_reached
        if config is policy.primary:
            logger.warning(
                "integration with %s failed on [%g, %g] (%s: %s); retrying with %s",
                config.method,
                start,
                stop,
                attempt.failure,
                attempt.message,
                policy.robust.method,
            )

    details = "; ".join(f"{item.method}: {item.message}" for item in attempts)
    raise NumericsError(
        f"integration failed on [{start:g}, {stop:g}] after {len(attempts)} attempts "
        f"(last good state at t={best_time:g}): {details}",
        interval=(start, stop),
        last_state=best_state,
    )


def integrate_interval(
    rhs: RhsFn,
    y0: StateVector,
    t0: float,
    t1: float,
    parameters: Any = None,
    policy: Optional[FallbackPolicy] = None,
) -> IntegrationResult:
    """Integrate a system from ``t0`` to the single end point ``t1``."""
    return integrate(rhs, t0, [t1], y0, parameters, policy)


__all__ = [
    "STIFF_METHODS",
    "FallbackPolicy",
    "IntegrationAttempt",
    "IntegrationResult",
    "SolverConfig",
    "integrate",
    "integrate_interval",
]
