"""Core dataclasses shared across the compartment runtime."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, Tuple

import numpy as np
import pandas as pd


SEMANTICS_VERSION = "1.0"
TIME_COLUMN = "time"
KIND_COLUMN = "kind"


class EventKind(str, Enum):
    DOSE = "dose"
    OBSERVATION = "observation"

    @classmethod
    def from_evid(cls, evid: int) -> "EventKind":
        """Map a NONMEM ``evid`` code (0 observation, 1 dose) onto an event kind."""
        code = int(evid)
        if code == 0:
            return cls.OBSERVATION
        if code == 1:
            return cls.DOSE
        raise ValueError(f"unsupported evid {evid!r}; expected 0 (observation) or 1 (dose)")


class SolverStrategy(str, Enum):
    ANALYTICAL = "analytical"
    MATRIX_EXPONENTIAL = "matrix_exponential"
    NONLINEAR = "nonlinear"


def is_compartment_index(value: Any) -> bool:
    """True when ``value`` is a finite whole number, e.g. ``2`` or ``2.0`` but not ``1.7``."""
    if isinstance(value, bool):
        return False
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number) and number == int(number)


@dataclass(frozen=True)
class Event:
    """A dose or observation at ``time``; ``cmt`` is 1-based as in NONMEM data sets."""

    time: float
    amount: float
    cmt: int
    kind: EventKind = EventKind.OBSERVATION

    @classmethod
    def dose(cls, time: float, amount: float, cmt: int = 1) -> "Event":
        return cls(time=float(time), amount=float(amount), cmt=int(cmt), kind=EventKind.DOSE)

    @classmethod
    def observation(cls, time: float, cmt: int = 1) -> "Event":
        return cls(time=float(time), amount=0.0, cmt=int(cmt), kind=EventKind.OBSERVATION)

    @property
    def is_dose(self) -> bool:
        return self.kind is EventKind.DOSE


@dataclass(frozen=True)
class Trajectory:
    """State of every compartment at each event of a replayed schedule."""

    time: np.ndarray
    states: np.ndarray
    kinds: Tuple[EventKind, ...]
    state_names: Tuple[str, ...]
    provenance: Dict[str, str] = field(default_factory=dict)
    semantics_version: str = SEMANTICS_VERSION

    def __len__(self) -> int:
        return int(self.time.size)

    def __iter__(self) -> Iterator[Tuple[float, np.ndarray]]:
        for idx in range(len(self)):
            yield float(self.time[idx]), self.states[idx]

    def state(self, name: str) -> np.ndarray:
        """Return the column of the named compartment."""
        try:
            idx = self.state_names.index(name)
        except ValueError:
            raise KeyError(f"unknown state '{name}'; available: {', '.join(self.state_names)}") from None
        return self.states[:, idx]

    def observations(self) -> "Trajectory":
        mask = np.array([kind is EventKind.OBSERVATION for kind in self.kinds], dtype=bool)
        return Trajectory(
            time=self.time[mask],
            states=self.states[mask],
            kinds=tuple(kind for kind, keep in zip(self.kinds, mask) if keep),
            state_names=self.state_names,
            provenance=dict(self.provenance),
            semantics_version=self.semantics_version,
        )

    def column_order(self) -> Tuple[str, ...]:
        return (TIME_COLUMN, KIND_COLUMN) + tuple(self.state_names)

    def to_frame(self) -> pd.DataFrame:
        data = {
            TIME_COLUMN: self.time,
            KIND_COLUMN: [kind.value for kind in self.kinds],
        }
        for idx, name in enumerate(self.state_names):
            data[name] = self.states[:, idx]
        frame = pd.DataFrame(data, columns=list(self.column_order()))
        frame.attrs["semantics_version"] = self.semantics_version
        if self.provenance:
            frame.attrs["provenance"] = self.provenance
        return frame

    def save_csv(
        self,
        path: Path,
        *,
        include_header_manifest: bool = True,
        **to_csv_kwargs,
    ) -> None:
        frame = self.to_frame()
        path.parent.mkdir(parents=True, exist_ok=True)
        frame.to_csv(path, index=False, **to_csv_kwargs)
        if include_header_manifest:
            manifest_path = path.with_suffix(path.suffix + ".header.txt")
            manifest_path.write_text("\n".join(self.column_order()), encoding="utf8")


__all__ = [
    "SEMANTICS_VERSION",
    "Event",
    "EventKind",
    "SolverStrategy",
    "Trajectory",
    "is_compartment_index",
]
