from __future__ import annotations

import json
import logging
import math

import numpy as np
import pandas as pd
import pytest

from pmxcore import Event, EventKind, NumericsError, ParameterDomainError, ScheduleError
from pmxcore.observables import central_concentration, effect_concentration, neutrophil_count
from pmxcore.simulation import DRAW_COLUMN, schedule_from_frame, simulate, simulate_draws
from pmxcore.stiff_ode import FallbackPolicy

TWO_CPT = {"CL": 5.0, "Q": 8.0, "V1": 20.0, "V2": 70.0, "ka": 1.2}
FRIBERG = {
    "CL": 10.0,
    "Q": 15.0,
    "V1": 35.0,
    "V2": 105.0,
    "ka": 2.0,
    "mtt": 125.0,
    "circ0": 5.0,
    "gamma": 0.17,
    "alpha": 2e-3,
}
OBSERVATION_TIMES = (1.0, 2.0, 4.0, 8.0, 24.0)


def _single_dose(amount: float = 1000.0, times=OBSERVATION_TIMES):
    return [Event.dose(0.0, amount)] + [Event.observation(t) for t in times]


def test_oral_dose_absorbs_then_eliminates() -> None:
    traj = simulate("two_cpt", TWO_CPT, _single_dose())

    gut = traj.state("gut")
    central = traj.state("central")
    assert gut[0] == 1000.0
    assert central[0] == 0.0
    assert gut[1:] == pytest.approx(1000.0 * np.exp(-1.2 * np.array(OBSERVATION_TIMES)), rel=1e-9)
    assert np.all(np.diff(gut) < 0.0)
    peak = int(np.argmax(central))
    assert 0 < peak < len(central) - 1
    assert np.all(np.diff(central[peak:]) < 0.0)
    totals = traj.states.sum(axis=1)
    assert np.all(np.diff(totals) < 0.0)
    assert traj.provenance["solver"] == "closed_form"


def test_strategies_agree_for_two_compartment_model() -> None:
    events = _single_dose() + [Event.dose(24.0, 500.0), Event.observation(30.0)]

    closed = simulate("two_cpt", TWO_CPT, events, strategy="analytical")
    expm = simulate("two_cpt", TWO_CPT, events, strategy="matrix_exponential")
    ode = simulate("two_cpt", TWO_CPT, events, strategy="nonlinear")

    assert closed.states == pytest.approx(expm.states, rel=1e-8, abs=1e-9)
    assert closed.states == pytest.approx(ode.states, rel=1e-4, abs=1e-3)


def test_zero_clearance_conserves_mass() -> None:
    params = dict(TWO_CPT, CL=0.0)
    traj = simulate("two_cpt", params, [Event.dose(0.0, 250.0), Event.dose(5.0, 250.0), Event.observation(48.0)])

    assert traj.states[0].sum() == pytest.approx(250.0)
    assert traj.states[-1].sum() == pytest.approx(500.0, rel=1e-9)


def test_initial_state_carries_prior_amounts() -> None:
    initial = np.array([0.0, 100.0, 0.0])
    traj = simulate("two_cpt", TWO_CPT, [Event.observation(0.0), Event.observation(6.0)], initial_state=initial)

    assert traj.states[0].tolist() == [0.0, 100.0, 0.0]
    assert traj.states[1, 1] < 100.0
    assert traj.states[1, 2] > 0.0


def test_effect_compartment_lags_plasma() -> None:
    params = dict(TWO_CPT, ke0=0.1)
    times = np.arange(0.5, 24.5, 0.5)
    traj = simulate("effect_cpt", params, _single_dose(times=times)).observations()

    plasma = central_concentration(traj, params["V1"])
    effect = effect_concentration(traj, params["V1"])
    assert int(np.argmax(effect)) > int(np.argmax(plasma))
    assert effect.max() < plasma.max()


def test_effect_compartment_ode_matches_matrix_exponential() -> None:
    params = dict(TWO_CPT, ke0=0.3)
    events = _single_dose()

    expm = simulate("effect_cpt", params, events)
    ode = simulate("effect_cpt", params, events, strategy="nonlinear")

    assert ode.states == pytest.approx(expm.states, rel=1e-4, abs=1e-3)


@pytest.mark.slow
def test_friberg_karlsson_neutrophil_nadir() -> None:
    times = np.arange(24.0, 24.0 * 25, 24.0)
    segment_log = []
    traj = simulate("friberg_karlsson", FRIBERG, _single_dose(times=times), segment_log=segment_log)

    counts = neutrophil_count(traj.observations(), FRIBERG["circ0"])
    assert np.all(np.isfinite(counts))
    assert np.all(counts > 0.0)
    assert counts.min() < FRIBERG["circ0"]
    assert {entry["method"] for entry in segment_log if entry["method"] is not None} == {"RK45"}


def test_friberg_karlsson_pk_matches_closed_form() -> None:
    events = _single_dose()
    pk = {name: FRIBERG[name] for name in ("CL", "Q", "V1", "V2", "ka")}

    nonlinear = simulate("friberg_karlsson", FRIBERG, events)
    closed = simulate("two_cpt", pk, events)

    assert nonlinear.states[:, :3] == pytest.approx(closed.states, rel=1e-4, abs=1e-3)


def test_step_budget_exhaustion_surfaces_numerics_error() -> None:
    policy = FallbackPolicy.from_tolerances(rtol=1e-8, atol=1e-10, max_num_steps=2)

    with pytest.raises(NumericsError) as info:
        simulate("friberg_karlsson", FRIBERG, _single_dose(), policy=policy)

    assert info.value.interval == (0.0, 1.0)
    assert info.value.last_state is not None


def test_diagnostics_banner_is_logged(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="pmxcore"):
        simulate("two_cpt", TWO_CPT, _single_dose(), emit_diagnostics=True)

    banners = [record.getMessage() for record in caplog.records if record.getMessage().startswith("solver_config ")]
    assert len(banners) == 1
    payload = json.loads(banners[0][len("solver_config ") :])
    assert payload["variant"] == "two_cpt"
    assert payload["n_events"] == 1 + len(OBSERVATION_TIMES)


def test_simulate_draws_stacks_trajectories() -> None:
    draws = [TWO_CPT, dict(TWO_CPT, CL=10.0)]
    events = _single_dose()

    frame = simulate_draws("two_cpt", draws, events)

    assert list(frame.columns) == [DRAW_COLUMN, "time", "kind", "gut", "central", "peripheral"]
    assert frame[DRAW_COLUMN].tolist() == [0] * len(events) + [1] * len(events)
    first = frame[frame[DRAW_COLUMN] == 0]["central"].to_numpy()
    second = frame[frame[DRAW_COLUMN] == 1]["central"].to_numpy()
    assert np.all(second[1:] < first[1:])


def test_simulate_draws_names_the_failing_draw() -> None:
    draws = [TWO_CPT, dict(TWO_CPT, V1=-1.0)]

    with pytest.raises(ParameterDomainError, match="draw 1"):
        simulate_draws("two_cpt", draws, _single_dose())


def test_schedule_from_frame_reads_nonmem_columns() -> None:
    table = pd.DataFrame(
        {
            "TIME": [0.0, 0.0, 12.0, 24.0],
            "AMT": [100.0, float("nan"), 50.0, 0.0],
            "CMT": [1, 2, 2, 2],
            "EVID": [1, 0, 1, 0],
        }
    )

    events = schedule_from_frame(table)

    assert [event.kind for event in events] == [
        EventKind.DOSE,
        EventKind.OBSERVATION,
        EventKind.DOSE,
        EventKind.OBSERVATION,
    ]
    assert events[1].amount == 0.0
    assert events[2] == Event.dose(12.0, 50.0, cmt=2)


def test_schedule_from_frame_defaults_and_errors() -> None:
    events = schedule_from_frame(pd.DataFrame({"time": [0.0, 1.0], "evid": [1, 0]}))
    assert events[0] == Event(time=0.0, amount=0.0, cmt=1, kind=EventKind.DOSE)

    with pytest.raises(ScheduleError, match="evid"):
        schedule_from_frame(pd.DataFrame({"time": [0.0]}))
    with pytest.raises(ScheduleError, match="row 1"):
        schedule_from_frame(pd.DataFrame({"time": [0.0, 1.0], "evid": [1, 4]}))


def test_trajectory_export(tmp_path) -> None:
    traj = simulate("two_cpt", TWO_CPT, _single_dose())
    path = tmp_path / "out" / "trajectory.csv"

    traj.save_csv(path)

    frame = pd.read_csv(path)
    assert list(frame.columns) == ["time", "kind", "gut", "central", "peripheral"]
    assert frame["kind"].tolist()[:2] == ["dose", "observation"]
    assert frame["central"].to_numpy() == pytest.approx(traj.state("central"))
    header = path.with_suffix(".csv.header.txt").read_text(encoding="utf8").splitlines()
    assert header == list(traj.column_order())
    assert traj.to_frame().attrs["provenance"]["variant"] == "two_cpt"


def test_dose_into_central_compartment_skips_absorption() -> None:
    traj = simulate("two_cpt", TWO_CPT, [Event.dose(0.0, 100.0, cmt=2), Event.observation(1e-9)])

    assert traj.states[-1, 1] == pytest.approx(100.0, rel=1e-6)
    k = (TWO_CPT["CL"] + TWO_CPT["Q"]) / TWO_CPT["V1"]
    later = simulate("two_cpt", TWO_CPT, [Event.dose(0.0, 100.0, cmt=2), Event.observation(0.01)])
    assert later.states[-1, 1] == pytest.approx(100.0 * math.exp(-k * 0.01), rel=1e-3)


def test_schedule_from_frame_rejects_missing_compartment() -> None:
    table = pd.DataFrame({"time": [0.0, 1.0], "amt": [1.0, 0.0], "cmt": [1, float("nan")], "evid": [1, 0]})

    with pytest.raises(ScheduleError, match="row 1"):
        schedule_from_frame(table)
    with pytest.raises(ScheduleError, match="row 0"):
        schedule_from_frame(pd.DataFrame({"time": [0.0], "amt": [1.0], "cmt": [1.5], "evid": [1]}))


def test_fractional_compartment_is_rejected_before_dosing() -> None:
    with pytest.raises(ScheduleError, match="integer"):
        simulate("two_cpt", TWO_CPT, [Event(time=0.0, amount=5.0, cmt=1.7, kind=EventKind.DOSE)])


@pytest.mark.parametrize("strategy", ["analytical", "matrix_exponential", "nonlinear"])
def test_reference_oral_dose_concentrations(strategy) -> None:
    params = {"CL": 10.0, "Q": 20.0, "V1": 70.0, "V2": 70.0, "ka": 2.0}
    events = [Event.dose(0.0, 1000.0, cmt=1)] + [Event.observation(t) for t in (0.0, 1.0, 2.0, 4.0, 8.0, 24.0)]

    traj = simulate("two_cpt", params, events, strategy=strategy).observations()

    assert traj.time.tolist() == [0.0, 1.0, 2.0, 4.0, 8.0, 24.0]
    conc = central_concentration(traj, params["V1"])
    expected = [0.0, 9.5699, 8.1603, 5.3126, 3.4557, 1.2422]
    assert conc == pytest.approx(expected, rel=1e-4, abs=1e-4)
    assert int(np.argmax(conc)) == 1
    assert np.all(np.diff(conc[1:]) < 0.0)
