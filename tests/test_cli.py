from __future__ import annotations

import json

import pandas as pd

from scripts.simulate_schedule import main


def _write_inputs(tmp_path, parameters):
    params_path = tmp_path / "params.json"
    params_path.write_text(json.dumps(parameters), encoding="utf8")
    events_path = tmp_path / "events.csv"
    pd.DataFrame(
        {
            "time": [0.0, 1.0, 4.0, 12.0],
            "amt": [1000.0, 0.0, 0.0, 0.0],
            "cmt": [1, 1, 1, 1],
            "evid": [1, 0, 0, 0],
        }
    ).to_csv(events_path, index=False)
    return params_path, events_path


def test_cli_writes_trajectory_for_each_draw(tmp_path) -> None:
    draws = [
        {"CL": 10.0, "Q": 15.0, "V1": 35.0, "V2": 105.0, "ka": 2.0, "ke0": 0.5},
        {"CL": 5.0, "Q": 15.0, "V1": 35.0, "V2": 105.0, "ka": 2.0, "ke0": 0.5},
    ]
    params_path, events_path = _write_inputs(tmp_path, draws)
    output = tmp_path / "result" / "trajectory.csv"

    status = main(
        [
            "--variant",
            "effect_cpt",
            "--parameters",
            str(params_path),
            "--events",
            str(events_path),
            "--output",
            str(output),
            "--log-level",
            "WARNING",
        ]
    )

    assert status == 0
    frame = pd.read_csv(output)
    assert list(frame.columns) == ["draw", "time", "kind", "gut", "central", "peripheral", "effect"]
    assert len(frame) == 8
    assert frame["effect"].iloc[-1] > 0.0


def test_cli_reports_invalid_parameters(tmp_path) -> None:
    params_path, events_path = _write_inputs(tmp_path, {"CL": 10.0, "Q": 15.0, "V1": 0.0, "V2": 105.0, "ka": 2.0})

    status = main(
        [
            "--variant",
            "two_cpt",
            "--parameters",
            str(params_path),
            "--events",
            str(events_path),
            "--output",
            str(tmp_path / "never.csv"),
        ]
    )

    assert status == 1
    assert not (tmp_path / "never.csv").exists()
