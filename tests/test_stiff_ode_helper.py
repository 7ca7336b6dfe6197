from __future__ import annotations

import math

import numpy as np
import pytest

from pmxcore.errors import ConfigError, NumericsError
from pmxcore.models import FribergKarlssonParams, friberg_karlsson_rhs
from pmxcore.stiff_ode import FallbackPolicy, SolverConfig, integrate, integrate_interval

STIFF_FRIBERG = {
    "CL": 10.0,
    "Q": 15.0,
    "V1": 35.0,
    "V2": 105.0,
    "ka": 2.0,
    "mtt": 1e-4,
    "circ0": 5.0,
    "gamma": 0.17,
    "alpha": 2e-4,
}


def _decay(_: float, y: np.ndarray, rates: np.ndarray) -> np.ndarray:
    return -rates * y


def test_integrate_returns_initial_state_for_zero_span() -> None:
    y0 = np.array([1.0, 2.0])

    result = integrate_interval(_decay, y0, 0.5, 0.5, np.array([1.0, 1.0]))

    assert np.allclose(result.final_state, y0)
    assert result.final_state is not y0
    assert result.method == "RK45"


def test_integrate_matches_linear_system_solution() -> None:
    fast_rate = 75.0
    slow_rate = 0.1
    span = 0.05
    y0 = np.array([2.0, 4.0])
    policy = FallbackPolicy.from_tolerances(rtol=1e-10, atol=1e-12)

    result = integrate(_decay, 0.0, [span / 2.0, span], y0, np.array([fast_rate, slow_rate]), policy)

    expected = np.array(
        [
            y0[0] * math.exp(-fast_rate * span),
            y0[1] * math.exp(-slow_rate * span),
        ]
    )
    assert result.times.tolist() == [span / 2.0, span]
    assert result.final_state == pytest.approx(expected, rel=1e-6)
    assert not result.used_fallback


def test_requested_times_at_t0_are_reported_verbatim() -> None:
    y0 = np.array([3.0])

    result = integrate(_decay, 1.0, [1.0, 1.0, 2.0], y0, np.array([0.5]))

    assert result.states[0] == pytest.approx(y0)
    assert result.states[1] == pytest.approx(y0)
    assert result.states[2] == pytest.approx(y0 * math.exp(-0.5), rel=1e-4)


def test_stiff_friberg_system_falls_back_to_robust_method() -> None:
    params = FribergKarlssonParams.from_mapping(STIFF_FRIBERG)
    y0 = np.zeros(8)
    y0[0] = 1000.0
    policy = FallbackPolicy.from_tolerances(rtol=1e-6, atol=1e-8, max_num_steps=2000)

    result = integrate(friberg_karlsson_rhs, 0.0, [0.5, 1.0], y0, params, policy)

    assert result.method == "BDF"
    assert result.used_fallback
    first = result.attempts[0]
    assert first.method == "RK45"
    assert not first.success
    assert first.failure == "step_budget"
    assert np.all(np.isfinite(result.states))
    # Drug effect pulls the circulating pool below its baseline.
    assert result.states[-1, 7] < -1e-3
    assert result.states[-1, 0] == pytest.approx(1000.0 * math.exp(-2.0), rel=1e-4)


def test_second_failure_raises_with_interval_and_last_state() -> None:
    policy = FallbackPolicy.from_tolerances(rtol=1e-6, atol=1e-9, max_num_steps=3)
    y0 = np.array([1.0, 1.0])

    with pytest.raises(NumericsError) as info:
        integrate(_decay, 0.0, [10.0], y0, np.array([1000.0, 1000.0]), policy)

    assert info.value.interval == (0.0, 10.0)
    assert info.value.last_state is not None
    assert info.value.last_state.shape == (2,)
    assert np.all(np.isfinite(info.value.last_state))
    assert "RK45" in str(info.value) and "BDF" in str(info.value)


def test_arithmetic_error_in_rhs_counts_as_failed_attempt() -> None:
    def rhs(t: float, y: np.ndarray, _) -> np.ndarray:
        if t > 0.5:
            raise ZeroDivisionError("collapsed pool")
        return -y

    with pytest.raises(NumericsError) as info:
        integrate(rhs, 0.0, [1.0], np.array([1.0]))

    assert "collapsed pool" in str(info.value)


def test_invalid_requests_are_rejected() -> None:
    with pytest.raises(ConfigError):
        integrate(_decay, 1.0, [0.5], np.array([1.0]), np.array([1.0]))
    with pytest.raises(ConfigError):
        integrate(_decay, 0.0, [2.0, 1.0], np.array([1.0]), np.array([1.0]))
    with pytest.raises(ConfigError):
        SolverConfig(method="Euler")
    with pytest.raises(ConfigError):
        SolverConfig(method="BDF", rtol=0.0)


def test_solver_identity_tracks_configuration() -> None:
    base = SolverConfig(method="BDF", rtol=1e-6, atol=1e-9)
    same = SolverConfig(method="BDF", rtol=1e-6, atol=1e-9)
    other = SolverConfig(method="BDF", rtol=1e-8, atol=1e-9)

    assert base.identity() == same.identity()
    assert base.identity() != other.identity()
    assert FallbackPolicy().identity() == FallbackPolicy.from_tolerances().identity()
