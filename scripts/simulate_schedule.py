"""Replay a NONMEM-style dosing table for one parameter set from the command line.

Typical usage::

    python scripts/simulate_schedule.py --variant two_cpt \
        --parameters params.json --events doses.csv --output trajectory.csv

``params.json`` holds a flat ``{"CL": 10, "Q": 20, ...}`` object, or a list of such
objects to evaluate several draws. ``doses.csv`` needs ``time`` and ``evid`` columns and
optionally ``amt`` and ``cmt``.
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Iterable

import pandas as pd

from pmxcore import MODEL_REGISTRY, FallbackPolicy, PmxError, SolverStrategy
from pmxcore.simulation import schedule_from_frame, simulate_draws

LOGGER = logging.getLogger("simulate_schedule")


def _configure_logging(level_name: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format="%(levelname)s:%(name)s:%(message)s",
    )


def _parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay a dosing/observation schedule through a compartment model")
    parser.add_argument("--variant", choices=sorted(MODEL_REGISTRY), required=True, help="Model variant")
    parser.add_argument(
        "--parameters",
        type=Path,
        required=True,
        help="JSON object (one draw) or list of objects (several draws) of named parameters",
    )
    parser.add_argument("--events", type=Path, required=True, help="CSV with time, amt, cmt, evid columns")
    parser.add_argument(
        "--strategy",
        choices=[item.value for item in SolverStrategy],
        default=None,
        help="Solving strategy (default: the variant's preferred one)",
    )
    parser.add_argument("--rtol", type=float, default=1e-6, help="Relative tolerance for ODE strategies")
    parser.add_argument("--atol", type=float, default=1e-6, help="Absolute tolerance for ODE strategies")
    parser.add_argument(
        "--max-num-steps",
        type=int,
        default=10_000,
        help="Step budget per integration attempt (default: 10000)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Optional destination CSV.  When omitted the result is printed to stdout",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.log_level)

    payload = json.loads(args.parameters.read_text(encoding="utf8"))
    draws = payload if isinstance(payload, list) else [payload]
    events = schedule_from_frame(pd.read_csv(args.events))
    policy = FallbackPolicy.from_tolerances(args.rtol, args.atol, args.max_num_steps)

    try:
        frame = simulate_draws(
            args.variant,
            draws,
            events,
            strategy=args.strategy,
            policy=policy,
            emit_diagnostics=True,
        )
    except PmxError as exc:
        LOGGER.error("%s", exc)
        return 1

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        frame.to_csv(args.output, index=False)
        LOGGER.info("wrote %d rows to %s", len(frame), args.output)
    else:
        pd.set_option("display.max_rows", 40)
        print(frame)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
