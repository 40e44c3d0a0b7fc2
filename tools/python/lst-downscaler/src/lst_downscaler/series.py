"""
series.py
=========
Time-step outcomes and the Series Assembler.

A requested time unit ends in exactly one of two terminal states:

  ValidStep   -- a predicted single-band field plus the number of source
                 images that went into its composite (> 0)
  NoDataStep  -- no usable imagery; carries the timestamp, a count of 0
                 and a short reason, never a field

``PredictionSeries`` orders the outcomes by timestamp and exposes the full
series (QA reporting) and the Valid-only view (charts, animation, export).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Iterator, Optional, Sequence, Union

import numpy as np
import pandas as pd

from shared.python.exceptions import InputValidationError

from .raster import RasterField

logger = logging.getLogger("lst_downscaler.series")


@dataclass(frozen=True)
class ValidStep:
    timestamp: date
    field: RasterField
    source_image_count: int

    @property
    def is_valid(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"<ValidStep {self.timestamp.isoformat()} images={self.source_image_count}>"


@dataclass(frozen=True)
class NoDataStep:
    timestamp: date
    source_image_count: int = 0
    reason: str = "no source imagery"

    @property
    def is_valid(self) -> bool:
        return False

    @property
    def field(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"<NoDataStep {self.timestamp.isoformat()} ({self.reason})>"


TimeStep = Union[ValidStep, NoDataStep]


def _field_stats(step: TimeStep) -> tuple[float, float, float]:
    if not step.is_valid:
        return float("nan"), float("nan"), float("nan")
    values = step.field.band(step.field.band_names[0])
    finite = values[np.isfinite(values)]
    if finite.size == 0:
        return float("nan"), float("nan"), float("nan")
    return float(finite.mean()), float(finite.min()), float(finite.max())


class PredictionSeries:
    """Strictly increasing, duplicate-free sequence of time steps.

    Build it with :meth:`assemble`; the constructor only checks order.
    """

    def __init__(self, steps: Sequence[TimeStep]) -> None:
        steps = tuple(steps)
        for prev, nxt in zip(steps, steps[1:]):
            if not prev.timestamp < nxt.timestamp:
                raise InputValidationError(
                    "Series timestamps must be strictly increasing: "
                    f"{prev.timestamp.isoformat()} then {nxt.timestamp.isoformat()}."
                )
        self._steps = steps

    @classmethod
    def assemble(cls, steps: Iterable[TimeStep], units: Optional[Sequence] = None) -> "PredictionSeries":
        """Sort *steps* by timestamp and check completeness.

        Args:
            steps: Outcomes in any order.
            units: The requested time units (anything with a
                ``timestamp``).  When given, the series must hold exactly
                one step per unit.

        Raises:
            InputValidationError: On duplicate timestamps, or on missing or
                unrequested units.
        """
        ordered = sorted(steps, key=lambda s: s.timestamp)
        seen: set = set()
        for step in ordered:
            if step.timestamp in seen:
                raise InputValidationError(f"Duplicate time step for {step.timestamp.isoformat()}.")
            seen.add(step.timestamp)

        if units is not None:
            expected = {u.timestamp for u in units}
            missing = sorted(expected - seen)
            extra = sorted(seen - expected)
            if missing or extra:
                raise InputValidationError(
                    "Series does not cover the requested units: "
                    f"missing {[d.isoformat() for d in missing]}, "
                    f"unexpected {[d.isoformat() for d in extra]}."
                )

        series = cls(ordered)
        logger.info("Assembled series: %d step(s), %d valid.", len(series), len(series.valid()))
        return series

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def steps(self) -> tuple[TimeStep, ...]:
        return self._steps

    @property
    def timestamps(self) -> list[date]:
        return [s.timestamp for s in self._steps]

    @property
    def source_counts(self) -> list[int]:
        return [s.source_image_count for s in self._steps]

    def valid(self) -> "PredictionSeries":
        return PredictionSeries([s for s in self._steps if s.is_valid])

    def iter_valid(self) -> Iterator[ValidStep]:
        """Lazily yield Valid steps in timestamp order."""
        for step in self._steps:
            if step.is_valid:
                yield step

    def summary_frame(self) -> pd.DataFrame:
        """One QA row per step: date, validity, image count and LST stats."""
        rows = []
        for step in self._steps:
            mean, lo, hi = _field_stats(step)
            rows.append(
                {
                    "date": step.timestamp.isoformat(),
                    "valid": step.is_valid,
                    "source_image_count": step.source_image_count,
                    "mean": mean,
                    "min": lo,
                    "max": hi,
                    "reason": "" if step.is_valid else step.reason,
                }
            )
        return pd.DataFrame(
            rows, columns=["date", "valid", "source_image_count", "mean", "min", "max", "reason"]
        )

    # ------------------------------------------------------------------
    # Sequence protocol
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[TimeStep]:
        return iter(self._steps)

    def __getitem__(self, index: int) -> TimeStep:
        return self._steps[index]

    def __repr__(self) -> str:
        if not self._steps:
            return "<PredictionSeries empty>"
        return (
            f"<PredictionSeries {self._steps[0].timestamp.isoformat()}.."
            f"{self._steps[-1].timestamp.isoformat()} "
            f"{len(self)} steps, {sum(s.is_valid for s in self._steps)} valid>"
        )
