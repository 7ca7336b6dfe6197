"""Top-level entry points: one trajectory, many parameter draws, tabular schedules."""

from __future__ import annotations

import json
import logging
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .entities import Event, EventKind, SolverStrategy, Trajectory, is_compartment_index
from .errors import NumericsError, PmxError, ScheduleError
from .models import CompartmentModel, build_model
from .segment_integrator import run_event_schedule
from .stiff_ode import FallbackPolicy

logger = logging.getLogger(__name__)

SCHEDULE_COLUMNS = ("time", "amt", "cmt", "evid")
DRAW_COLUMN = "draw"


def schedule_from_frame(frame: pd.DataFrame) -> List[Event]:
    """Convert a NONMEM-style table (``time, amt, cmt, evid``) into events.

    Column names are matched case-insensitively. ``amt`` defaults to 0 and ``cmt`` to 1
    when absent. Rows keep their order; ordering is validated when the schedule runs.
    """
    table = frame.rename(columns=lambda name: str(name).lower())
    for required in ("time", "evid"):
        if required not in table.columns:
            raise ScheduleError(f"schedule table lacks a '{required}' column")
    if "amt" not in table.columns:
        table = table.assign(amt=0.0)
    if "cmt" not in table.columns:
        table = table.assign(cmt=1)
    table = table.assign(amt=table["amt"].fillna(0.0))

    events: List[Event] = []
    for row_number, row in enumerate(table[list(SCHEDULE_COLUMNS)].itertuples(index=False)):
        try:
            kind = EventKind.from_evid(row.evid)
            if not is_compartment_index(row.cmt):
                raise ValueError(f"cmt {row.cmt!r} is not an integer compartment index")
            event = Event(time=float(row.time), amount=float(row.amt), cmt=int(row.cmt), kind=kind)
        except (TypeError, ValueError) as exc:
            raise ScheduleError(f"row {row_number}: {exc}") from exc
        events.append(event)
    return events


def _log_solver_banner(model: CompartmentModel, n_events: int, emit: bool) -> None:
    if not emit:
        return
    meta = dict(model.describe())
    meta["n_events"] = n_events
    logger.info("solver_config %s", json.dumps(meta, sort_keys=True))


def simulate(
    variant: str,
    parameters: Mapping[str, float],
    events: Sequence[Event],
    *,
    strategy: Union[SolverStrategy, str, None] = None,
    policy: Optional[FallbackPolicy] = None,
    initial_state: Optional[np.ndarray] = None,
    segment_log: Optional[List[Dict[str, object]]] = None,
    emit_diagnostics: bool = False,
) -> Trajectory:
    """Replay ``events`` for one parameter set of ``variant``."""
    model = build_model(variant, parameters, strategy=strategy, policy=policy)
    _log_solver_banner(model, len(events), emit_diagnostics)
    return run_event_schedule(model, events, initial_state=initial_state, segment_log=segment_log)


def simulate_draws(
    variant: str,
    draws: Sequence[Mapping[str, float]],
    events: Sequence[Event],
    **kwargs,
) -> pd.DataFrame:
    """Evaluate one schedule for every parameter draw and stack the trajectories.

    Draws are independent; the result is a long table with a ``draw`` column holding the
    position of each draw in ``draws``. A failing draw re-raises its error type with the
    draw index in the message.
    """
    frames: List[pd.DataFrame] = []
    for index, parameters in enumerate(draws):
        try:
            trajectory = simulate(variant, parameters, events, **kwargs)
        except NumericsError as exc:
            raise NumericsError(f"draw {index}: {exc}", interval=exc.interval, last_state=exc.last_state) from exc
        except PmxError as exc:
            raise type(exc)(f"draw {index}: {exc}") from exc
        frame = trajectory.to_frame()
        frame.insert(0, DRAW_COLUMN, index)
        frames.append(frame)
    if not frames:
        return pd.DataFrame(columns=[DRAW_COLUMN])
    return pd.concat(frames, ignore_index=True)


__all__ = ["DRAW_COLUMN", "SCHEDULE_COLUMNS", "schedule_from_frame", "simulate", "simulate_draws"]
